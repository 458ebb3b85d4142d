"""Shared fixtures for tests."""

from __future__ import annotations

import base64

import httplib2
import pytest
from googleapiclient.errors import HttpError

from gmail_newsletter_importer.gmail_client import GmailClient
from gmail_newsletter_importer.library import SQLiteLibrary
from gmail_newsletter_importer.models import Connection, SenderAggregate
from gmail_newsletter_importer.store import ProgressStore


def http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"{}")


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_message(
    gmail_id: str,
    from_: str = "Weekly Digest <digest@substack.com>",
    subject: str = "Issue #1",
    html: str | None = "<p>Hello readers</p>",
    text: str | None = None,
    internal_date: int = 1_700_000_000_000,
    message_id: str | None = None,
    list_unsubscribe: str | None = "<https://example.com/unsub>",
    list_id: str | None = None,
    precedence: str | None = None,
) -> dict:
    """A Gmail API ``messages.get`` response with a multipart body."""
    headers = [{"name": "From", "value": from_}, {"name": "Subject", "value": subject}]
    if list_unsubscribe:
        headers.append({"name": "List-Unsubscribe", "value": list_unsubscribe})
    if list_id:
        headers.append({"name": "List-Id", "value": list_id})
    if precedence:
        headers.append({"name": "Precedence", "value": precedence})
    if message_id:
        headers.append({"name": "Message-ID", "value": message_id})

    parts = []
    if text is not None:
        parts.append({"mimeType": "text/plain", "body": {"data": b64url(text)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": b64url(html)}})

    return {
        "id": gmail_id,
        "internalDate": str(internal_date),
        "payload": {"mimeType": "multipart/alternative", "headers": headers, "parts": parts},
    }


class FakeRequest:
    def __init__(self, respond) -> None:
        self._respond = respond

    def execute(self):
        return self._respond()


class FakeBatch:
    """Runs every added request and reports each through its callback."""

    def __init__(self) -> None:
        self.requests: list[tuple[FakeRequest, object]] = []

    def add(self, request, callback) -> None:
        self.requests.append((request, callback))

    def execute(self) -> None:
        for index, (request, callback) in enumerate(self.requests):
            try:
                response = request.execute()
            except HttpError as exc:
                callback(str(index), None, exc)
            else:
                callback(str(index), response, None)


class FakeGmailService:
    """In-memory stand-in for the Gmail ``Resource`` used by GmailClient.

    ``failures`` maps a message ID (or ``"list"``) to HTTP statuses raised on
    successive calls before the request succeeds.
    """

    def __init__(self, email: str = "reader@example.com") -> None:
        self.email = email
        self.messages: dict[str, dict] = {}
        self.listings: dict[str, list[str]] = {}
        self.failures: dict[str, list[int]] = {}
        self.get_calls: list[tuple[str, str]] = []
        self.list_calls: list[dict] = []
        self.batches: list[FakeBatch] = []
        self.page_size = 100

    # --- setup ---

    def add_message(self, message: dict, *queries: str) -> None:
        self.messages[message["id"]] = message
        for query in queries:
            self.listings.setdefault(query, []).append(message["id"])

    def fail(self, key: str, *statuses: int) -> None:
        self.failures.setdefault(key, []).extend(statuses)

    def _maybe_fail(self, key: str) -> None:
        pending = self.failures.get(key)
        if pending:
            raise http_error(pending.pop(0))

    # --- Resource surface ---

    def users(self):
        return _Users(self)

    def new_batch_http_request(self) -> FakeBatch:
        batch = FakeBatch()
        self.batches.append(batch)
        return batch


class _Users:
    def __init__(self, service: FakeGmailService) -> None:
        self.service = service

    def messages(self):
        return _Messages(self.service)

    def getProfile(self, userId):  # noqa: N802
        return FakeRequest(lambda: {"emailAddress": self.service.email})


class _Messages:
    def __init__(self, service: FakeGmailService) -> None:
        self.service = service

    def list(self, userId, maxResults=100, q="", pageToken=None):  # noqa: N803
        service = self.service

        def respond():
            service.list_calls.append({"q": q, "pageToken": pageToken, "maxResults": maxResults})
            service._maybe_fail("list")
            ids = service.listings.get(q, [])
            start = int(pageToken or 0)
            page = ids[start : start + service.page_size]
            resp = {"resultSizeEstimate": len(ids)}
            if page:
                resp["messages"] = [{"id": i, "threadId": i} for i in page]
            if start + service.page_size < len(ids):
                resp["nextPageToken"] = str(start + service.page_size)
            return resp

        return FakeRequest(respond)

    def get(self, userId, id, format="full", metadataHeaders=None):  # noqa: A002, N803
        service = self.service

        def respond():
            service.get_calls.append((id, format))
            service._maybe_fail(id)
            if id not in service.messages:
                raise http_error(404)
            return service.messages[id]

        return FakeRequest(respond)


@pytest.fixture
def gmail() -> FakeGmailService:
    return FakeGmailService()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def client(gmail: FakeGmailService, sleeps: list[float]) -> GmailClient:
    return GmailClient(gmail, sleep=sleeps.append)


@pytest.fixture
def store(tmp_path):
    with ProgressStore(db_path=tmp_path / "importer.db") as s:
        yield s


@pytest.fixture
def library(tmp_path):
    with SQLiteLibrary(db_path=tmp_path / "library.db") as lib:
        yield lib


@pytest.fixture
def connection(store: ProgressStore) -> Connection:
    return store.add_connection("user-1", "reader@example.com")


@pytest.fixture
def approve(store: ProgressStore):
    """Record an approved detected sender for a connection."""

    def _approve(connection_id: int, email: str, email_count: int = 1, name: str | None = None) -> None:
        store.upsert_detected_sender(
            connection_id,
            SenderAggregate(email=email, domain=email.split("@")[1], name=name, email_count=email_count),
        )
        store.approve_senders(connection_id, [email])

    return _approve
