"""Scan orchestration - lists likely newsletters, classifies, groups by sender."""

from __future__ import annotations

import logging
from typing import Callable

from .constants import NEWSLETTER_SEARCH_QUERY, SAMPLE_SUBJECTS_LIMIT, SCAN_BATCH_SIZE, SCAN_MAX_PAGES
from .errors import AlreadyRunningError, NotConnectedError, describe_error
from .gmail_client import GmailClient
from .models import EmailHeaders, RunResult, ScanProgress, ScanStatus, SenderAggregate, now_ms
from .scorer import calculate_score, extract_domain, extract_sender_email, extract_sender_name, is_newsletter
from .store import ProgressStore

logger = logging.getLogger(__name__)


def aggregate_message(
    senders: dict[str, SenderAggregate],
    headers: EmailHeaders,
    score: int,
) -> SenderAggregate | None:
    """Fold one classified message into the per-sender aggregates."""
    email = extract_sender_email(headers.from_)
    if not email:
        return None

    profile = senders.get(email)
    if profile is None:
        profile = SenderAggregate(email=email, domain=extract_domain(email))
        senders[email] = profile

    profile.email_count += 1
    profile.confidence_score = max(profile.confidence_score, score)

    if len(profile.sample_subjects) < SAMPLE_SUBJECTS_LIMIT and headers.subject:
        profile.sample_subjects.append(headers.subject)

    if not profile.name:
        profile.name = extract_sender_name(headers.from_)

    return profile


class Scanner:
    """Runs the classification pass over one connection's mailbox.

    A scan moves ``scanning -> complete`` or ``scanning -> error`` and only
    one may be ``scanning`` per connection at a time.
    """

    def __init__(self, store: ProgressStore, client: GmailClient) -> None:
        self.store = store
        self.client = client

    def _admit(self, connection_id: int) -> None:
        connection = self.store.get_connection(connection_id)
        if connection is None or not connection.is_active:
            raise NotConnectedError("Gmail not connected. Please connect your Gmail account first.")

        existing = self.store.get_scan_progress(connection_id)
        if existing is not None and existing.status == ScanStatus.SCANNING:
            raise AlreadyRunningError("A scan is already in progress for this account.")

    def start_scan(
        self,
        connection_id: int,
        progress_callback: Callable[[ScanProgress], None] | None = None,
    ) -> RunResult:
        try:
            self._admit(connection_id)
        except (NotConnectedError, AlreadyRunningError) as exc:
            logger.info("Scan refused for connection %s: %s", connection_id, exc.code)
            return RunResult(success=False, error=exc.message, error_code=exc.code)

        logger.info("Starting scan for connection %s", connection_id)
        progress_created = False
        try:
            listing = self.client.list_message_ids(NEWSLETTER_SEARCH_QUERY, max_pages=SCAN_MAX_PAGES)
            ids = listing.message_ids

            self.store.create_scan_progress(
                ScanProgress(connection_id=connection_id, total_emails=listing.total_estimate or len(ids))
            )
            progress_created = True

            senders: dict[str, SenderAggregate] = {}
            processed = 0

            for start in range(0, len(ids), SCAN_BATCH_SIZE):
                batch = ids[start : start + SCAN_BATCH_SIZE]
                for headers in self.client.batch_get_metadata(batch):
                    if not is_newsletter(headers):
                        continue
                    aggregate_message(senders, headers, calculate_score(headers))

                processed += len(batch)
                self.store.update_scan_progress(connection_id, processed, len(senders))
                if progress_callback:
                    progress_callback(self.store.get_scan_progress(connection_id))

            for aggregate in senders.values():
                self.store.upsert_detected_sender(connection_id, aggregate)

            self.store.complete_scan(connection_id, senders_found=len(senders))
        except Exception as exc:  # noqa: BLE001
            message, code = describe_error(exc)
            logger.exception("Scan failed for connection %s", connection_id)
            if progress_created:
                self.store.complete_scan(connection_id, error=message)
            else:
                self.store.create_scan_progress(
                    ScanProgress(
                        connection_id=connection_id,
                        status=ScanStatus.ERROR,
                        completed_at=now_ms(),
                        error=message,
                    )
                )
            return RunResult(success=False, error=message, error_code=code)

        logger.info(
            "Scan complete for connection %s: %d senders from %d messages", connection_id, len(senders), processed
        )
        return RunResult(success=True, senders_found=len(senders))
