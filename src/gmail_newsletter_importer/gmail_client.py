"""Rate-limited Gmail API client used by both the scan and the import."""

from __future__ import annotations

import base64
import binascii
import html
import logging
import time
from typing import Any, Callable

from googleapiclient.errors import HttpError
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from gmail_newsletter_importer.constants import (
    FETCH_CHUNK_DELAY,
    FETCH_CHUNK_SIZE,
    LIST_PAGE_SIZE,
    METADATA_HEADERS,
    RATE_LIMIT_RETRIES,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from gmail_newsletter_importer.errors import (
    ForbiddenError,
    GmailApiError,
    NotFoundError,
    RateLimitedError,
    TokenExpiredError,
    UpstreamError,
)
from gmail_newsletter_importer.models import EmailHeaders, FullMessage, MessageList

logger = logging.getLogger(__name__)


def map_http_error(exc: HttpError) -> GmailApiError:
    """Translate a googleapiclient HttpError into the importer's taxonomy."""
    status = exc.resp.status
    if status == 401:
        return TokenExpiredError("Gmail token expired. Please reconnect your Gmail account.")
    if status == 403:
        return ForbiddenError("Access denied. Please ensure you granted Gmail read permission.")
    if status == 404:
        return NotFoundError("Gmail resource not found.")
    if status == 429:
        return RateLimitedError("Too many requests. Please try again in a few minutes.")
    reason = getattr(exc, "reason", None) or exc.resp.reason or "unknown error"
    return UpstreamError(f"Gmail API error: {reason}")


def parse_headers(raw_headers: list[dict] | None) -> EmailHeaders:
    """Build an EmailHeaders record from a Gmail ``payload.headers`` list.

    Header names are matched case-insensitively; headers the pipelines do
    not use are ignored.
    """
    headers = EmailHeaders()
    for h in raw_headers or []:
        name = str(h.get("name", "")).lower()
        value = str(h.get("value", ""))
        if name == "from":
            headers.from_ = value
        elif name == "subject":
            headers.subject = value
        elif name == "list-unsubscribe":
            headers.list_unsubscribe = value
        elif name == "list-id":
            headers.list_id = value
        elif name == "precedence":
            headers.precedence = value
        elif name == "message-id":
            headers.message_id = value
        elif name == "date":
            headers.date = value
    return headers


def decode_base64url(data: str) -> str | None:
    """Decode Gmail's unpadded base64url body data as UTF-8."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        logger.warning("Could not decode base64url body (%d chars)", len(data))
        return None
    return raw.decode("utf-8", errors="replace")


def find_body_parts(payload: dict | None) -> tuple[str | None, str | None]:
    """Walk the MIME tree depth-first and return the first (html, text) bodies."""
    html_body: str | None = None
    text_body: str | None = None

    stack = [payload] if payload else []
    while stack:
        part = stack.pop()
        mime_type = part.get("mimeType", "")
        data = part.get("body", {}).get("data")

        if data and mime_type == "text/html" and html_body is None:
            html_body = decode_base64url(data)
        elif data and mime_type == "text/plain" and text_body is None:
            text_body = decode_base64url(data)

        # reversed so the stack pops parts in document order
        stack.extend(reversed(part.get("parts", [])))

    return html_body, text_body


def extract_html_body(payload: dict | None) -> str | None:
    """Return displayable HTML: the html part, or the text part escaped in <pre>."""
    html_body, text_body = find_body_parts(payload)
    if html_body:
        return html_body
    if text_body:
        return f"<pre>{html.escape(text_body)}</pre>"
    return None


def parse_full_message(response: dict) -> FullMessage:
    payload = response.get("payload", {})
    html_body, text_body = find_body_parts(payload)
    return FullMessage(
        gmail_id=response.get("id", ""),
        headers=parse_headers(payload.get("headers")),
        received_at=int(response.get("internalDate") or 0),
        html_content=html_body,
        text_content=text_body,
    )


def sender_query(email: str) -> str:
    return f"from:{email}"


class GmailClient:
    """Gmail API wrapper with rate-limit retries and chunked batch fetches.

    ``service`` is a Gmail ``Resource`` from ``googleapiclient.discovery.build``.
    ``sleep`` is used both for retry backoff and the pause between chunks.
    """

    def __init__(self, service, sleep: Callable[[float], None] = time.sleep) -> None:
        self.service = service
        self._sleep = sleep
        self._retrying = Retrying(
            retry=retry_if_exception_type(RateLimitedError),
            wait=wait_exponential(multiplier=RETRY_BASE_DELAY, max=RETRY_MAX_DELAY),
            stop=stop_after_attempt(RATE_LIMIT_RETRIES + 1),
            sleep=sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    # --- plumbing ---

    @staticmethod
    def _execute(request) -> Any:
        try:
            return request.execute()
        except HttpError as exc:
            raise map_http_error(exc) from exc

    def _call(self, request) -> Any:
        return self._retrying(self._execute, request)

    def _metadata_request(self, message_id: str):
        return self.service.users().messages().get(
            userId="me",
            id=message_id,
            format="metadata",
            metadataHeaders=METADATA_HEADERS,
        )

    def _full_request(self, message_id: str):
        return self.service.users().messages().get(userId="me", id=message_id, format="full")

    # --- single calls ---

    def list_messages(
        self,
        query: str,
        page_token: str | None = None,
        max_results: int = LIST_PAGE_SIZE,
    ) -> MessageList:
        kwargs: dict = {"userId": "me", "maxResults": max_results, "q": query}
        if page_token:
            kwargs["pageToken"] = page_token

        resp = self._call(self.service.users().messages().list(**kwargs))
        return MessageList(
            message_ids=[m["id"] for m in resp.get("messages", [])],
            next_page_token=resp.get("nextPageToken"),
            total_estimate=resp.get("resultSizeEstimate"),
        )

    def get_metadata(self, message_id: str) -> EmailHeaders:
        resp = self._call(self._metadata_request(message_id))
        return parse_headers(resp.get("payload", {}).get("headers"))

    def get_full_content(self, message_id: str) -> FullMessage:
        return parse_full_message(self._call(self._full_request(message_id)))

    def check_access(self) -> str:
        """Return the mailbox address the credentials belong to."""
        profile = self._call(self.service.users().getProfile(userId="me"))
        return profile["emailAddress"]

    # --- pagination ---

    def list_message_ids(self, query: str, max_pages: int | None = None) -> MessageList:
        """Collect IDs across pages. The estimate comes from the first page."""
        result = MessageList()
        page_token: str | None = None
        pages = 0

        while True:
            page = self.list_messages(query, page_token=page_token)
            pages += 1
            if pages == 1:
                result.total_estimate = page.total_estimate
            result.message_ids.extend(page.message_ids)
            page_token = page.next_page_token
            logger.debug("Listed page %d (%d ids) for %r", pages, len(page.message_ids), query)

            if not page_token:
                break
            if max_pages is not None and pages >= max_pages:
                result.next_page_token = page_token
                break

        return result

    def list_message_ids_from_sender(self, email: str) -> list[str]:
        return self.list_message_ids(sender_query(email)).message_ids

    # --- batches ---

    def _execute_chunk(self, chunk: list[str], make_request) -> dict[int, Any]:
        outcomes: dict[int, Any] = {}

        def _make_callback(index: int):
            def _cb(request_id, response, exception):
                if exception is None:
                    outcomes[index] = response
                elif isinstance(exception, HttpError):
                    outcomes[index] = map_http_error(exception)
                else:
                    outcomes[index] = exception

            return _cb

        batch = self.service.new_batch_http_request()
        for index, msg_id in enumerate(chunk):
            batch.add(make_request(msg_id), callback=_make_callback(index))
        self._call(batch)
        return outcomes

    def _batch_get(
        self,
        message_ids: list[str],
        make_request,
        parse,
        item_errors: tuple[type[GmailApiError], ...] = (),
    ) -> list[tuple[str, Any]]:
        """Fetch ``message_ids`` chunk by chunk as ``(message_id, result)`` pairs.

        Per-message errors listed in ``item_errors`` are returned in place of
        the result; any other error fails the whole call.
        """
        results: list[tuple[str, Any]] = []

        for start in range(0, len(message_ids), FETCH_CHUNK_SIZE):
            chunk = message_ids[start : start + FETCH_CHUNK_SIZE]
            outcomes = self._execute_chunk(chunk, make_request)

            for index, msg_id in enumerate(chunk):
                outcome = outcomes.get(index)
                try:
                    if isinstance(outcome, RateLimitedError):
                        logger.info("Message %s was rate limited in batch, retrying alone", msg_id)
                        outcome = self._call(make_request(msg_id))
                    elif isinstance(outcome, Exception):
                        raise outcome
                    elif outcome is None:
                        raise UpstreamError(f"Gmail API error: no response for message {msg_id}")
                except item_errors as exc:
                    logger.debug("Could not fetch message %s: %s", msg_id, exc)
                    results.append((msg_id, exc))
                    continue
                results.append((msg_id, parse(outcome)))

            if start + FETCH_CHUNK_SIZE < len(message_ids):
                self._sleep(FETCH_CHUNK_DELAY)

        return results

    def batch_get_metadata(self, message_ids: list[str]) -> list[EmailHeaders]:
        """Fetch metadata headers for many messages, 10 per batch request."""
        pairs = self._batch_get(
            message_ids,
            self._metadata_request,
            lambda resp: parse_headers(resp.get("payload", {}).get("headers")),
        )
        return [headers for _, headers in pairs]

    def batch_get_full_content(self, message_ids: list[str]) -> list[FullMessage]:
        """Fetch full messages, 10 per batch request."""
        return [message for _, message in self._batch_get(message_ids, self._full_request, parse_full_message)]

    def fetch_full_content(self, message_ids: list[str]) -> list[tuple[str, FullMessage | GmailApiError]]:
        """Like ``batch_get_full_content``, but a message that is gone (404) or
        not readable (403) comes back as its error instead of failing the batch.
        """
        return self._batch_get(
            message_ids, self._full_request, parse_full_message, item_errors=(NotFoundError, ForbiddenError)
        )
