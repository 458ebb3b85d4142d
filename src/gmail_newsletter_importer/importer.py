"""Import orchestration - fetches approved senders' mail and stores it once."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from .constants import IMPORT_BATCH_SIZE, IMPORT_SOURCE_TAG, PLAN_FREE
from .dedup import DuplicateDetector
from .entitlements import PlanEntitlements
from .errors import (
    AlreadyRunningError,
    GmailApiError,
    ImporterError,
    NoApprovedSendersError,
    NotConnectedError,
    QuotaExceededError,
    describe_error,
)
from .gmail_client import GmailClient
from .library import SQLiteLibrary
from .models import (
    Connection,
    DetectedSender,
    FullMessage,
    ImportProgress,
    ImportStatus,
    ImportUsage,
    RunResult,
)
from .protocols import Entitlements
from .scorer import extract_sender_name
from .store import ProgressStore

logger = logging.getLogger(__name__)

_IMPORTED = "imported"
_SKIPPED = "skipped"
_FAILED = "failed"
_PLAN_LIMIT = "plan_limit"


@dataclass
class _ImportRun:
    """Admission result plus the counters of one import run."""

    connection: Connection
    senders: list[DetectedSender]
    capped: bool
    usage: ImportUsage
    sender_cap: int = 0
    email_cap: int = 0
    counts: dict[str, int] = field(default_factory=lambda: {_IMPORTED: 0, _SKIPPED: 0, _FAILED: 0})

    @property
    def remaining_emails(self) -> int:
        return max(0, self.email_cap - self.usage.imported_emails)

    @property
    def remaining_senders(self) -> int:
        return max(0, self.sender_cap - self.usage.imported_senders)

    def is_new_sender(self, email: str) -> bool:
        return email not in self.usage.imported_sender_emails


class Importer:
    """Imports every message from a connection's approved senders.

    An import moves ``importing -> complete`` or ``importing -> error``.
    Per-message failures are counted and never abort the run; reaching a
    free-tier quota ends the run as ``complete``.
    """

    def __init__(
        self,
        store: ProgressStore,
        client: GmailClient,
        library: SQLiteLibrary,
        entitlements: Entitlements | None = None,
        detector: DuplicateDetector | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.library = library
        self.entitlements = entitlements or PlanEntitlements()
        self.detector = detector or DuplicateDetector(library)

    # --- admission ---

    def _admit(self, connection_id: int, plan: str) -> _ImportRun:
        connection = self.store.get_connection(connection_id)
        if connection is None or not connection.is_active:
            raise NotConnectedError("Gmail not connected. Please connect your Gmail account first.")

        existing = self.store.get_import_progress(connection_id)
        if existing is not None and existing.status == ImportStatus.IMPORTING:
            raise AlreadyRunningError("An import is already in progress for this account.")

        senders = self.store.get_approved_senders(connection_id)
        if not senders:
            raise NoApprovedSendersError("No approved senders to import. Approve at least one sender first.")

        run = _ImportRun(
            connection=connection,
            senders=senders,
            capped=self.entitlements.is_under_cap(plan),
            usage=self.store.get_import_usage(connection.user_id),
            sender_cap=self.entitlements.sender_cap,
            email_cap=self.entitlements.email_cap,
        )
        if not run.capped:
            return run

        if run.remaining_emails <= 0:
            raise QuotaExceededError(
                f"Free preview limit reached: {run.email_cap} emails already imported. "
                "Upgrade to import more.",
                code="FREE_PREVIEW_EMAIL_LIMIT",
            )

        new_senders = [s for s in senders if run.is_new_sender(s.email)]
        if len(new_senders) == len(senders) and len(new_senders) > run.remaining_senders:
            raise QuotaExceededError(
                f"Free preview allows {run.sender_cap} senders and {run.remaining_senders} remain. "
                "Approve fewer senders or upgrade.",
                code="FREE_PREVIEW_SENDER_LIMIT",
            )
        return run

    # --- run ---

    def start_import(
        self,
        connection_id: int,
        plan: str = PLAN_FREE,
        progress_callback: Callable[[ImportProgress], None] | None = None,
    ) -> RunResult:
        try:
            run = self._admit(connection_id, plan)
        except ImporterError as exc:
            logger.info("Import refused for connection %s: %s", connection_id, exc.code)
            return RunResult(success=False, error=exc.message, error_code=exc.code)

        estimate = sum(s.email_count for s in run.senders)
        if run.capped:
            estimate = min(estimate, run.remaining_emails)
        self.store.create_import_progress(ImportProgress(connection_id=connection_id, total_emails=estimate))
        logger.info(
            "Starting import for connection %s: %d senders, ~%d emails", connection_id, len(run.senders), estimate
        )

        try:
            for sender in run.senders:
                if run.capped and run.remaining_emails <= 0:
                    logger.info("Import for connection %s stopped early: quota reached", connection_id)
                    break
                if run.capped and run.is_new_sender(sender.email) and run.remaining_senders <= 0:
                    logger.info("Skipping %s: free preview sender limit reached", sender.email)
                    continue
                if self._import_sender(run, sender, progress_callback):
                    logger.info("Import for connection %s stopped early: quota reached", connection_id)
                    break
        except Exception as exc:  # noqa: BLE001
            message, code = describe_error(exc)
            logger.exception("Import failed for connection %s", connection_id)
            self.store.complete_import(connection_id, error=message)
            return self._result(run, success=False, error=message, error_code=code)

        counts = run.counts
        if counts[_FAILED] > 0 and counts[_IMPORTED] == 0 and counts[_SKIPPED] == 0:
            message = "Import failed completely: no message could be imported."
            self.store.complete_import(connection_id, error=message)
            return self._result(run, success=False, error=message, error_code="IMPORT_FAILED")

        self.store.complete_import(connection_id)
        logger.info(
            "Import complete for connection %s: %d imported, %d skipped, %d failed",
            connection_id,
            counts[_IMPORTED],
            counts[_SKIPPED],
            counts[_FAILED],
        )
        return self._result(run, success=True)

    @staticmethod
    def _result(run: _ImportRun, success: bool, error: str | None = None, error_code: str | None = None) -> RunResult:
        return RunResult(
            success=success,
            error=error,
            error_code=error_code,
            imported_count=run.counts[_IMPORTED],
            skipped_count=run.counts[_SKIPPED],
            failed_count=run.counts[_FAILED],
        )

    def _import_sender(
        self,
        run: _ImportRun,
        sender: DetectedSender,
        progress_callback: Callable[[ImportProgress], None] | None,
    ) -> bool:
        """Import one sender's messages in page order. Returns True to stop the run."""
        connection_id = run.connection.id
        ids = self.client.list_message_ids_from_sender(sender.email)
        logger.debug("Importing %d messages from %s", len(ids), sender.email)

        for start in range(0, len(ids), IMPORT_BATCH_SIZE):
            batch = {_IMPORTED: 0, _SKIPPED: 0, _FAILED: 0}
            stop = False

            for gmail_id, message in self.client.fetch_full_content(ids[start : start + IMPORT_BATCH_SIZE]):
                if run.capped and run.remaining_emails <= 0:
                    stop = True
                    break
                if isinstance(message, GmailApiError):
                    logger.warning("Failed to fetch message %s from %s: %s", gmail_id, sender.email, message)
                    batch[_FAILED] += 1
                    continue
                outcome = self._import_message(run, sender, message)
                if outcome == _PLAN_LIMIT:
                    stop = True
                    break
                batch[outcome] += 1

            for key, value in batch.items():
                run.counts[key] += value
            self.store.add_import_counts(
                connection_id, imported=batch[_IMPORTED], failed=batch[_FAILED], skipped=batch[_SKIPPED]
            )
            if progress_callback:
                progress_callback(self.store.get_import_progress(connection_id))
            if stop:
                return True

        return False

    def _import_message(self, run: _ImportRun, sender: DetectedSender, message: FullMessage) -> str:
        user_id = run.connection.user_id
        subject = message.headers.subject
        try:
            duplicate = self.detector.check_phase1(user_id, sender.email, message.received_at, subject)
            if duplicate.is_duplicate:
                return _SKIPPED

            sender_name = extract_sender_name(message.headers.from_) or sender.name
            sender_id = self.library.get_or_create_sender(sender.email, sender_name)
            folder_id = self.library.get_or_create_folder(user_id, sender_id)

            result = self.library.store(
                owner_id=user_id,
                sender_id=sender_id,
                folder_id=folder_id,
                subject=subject,
                sender_email=sender.email,
                sender_name=sender_name,
                received_at=message.received_at,
                html_content=message.html_content,
                text_content=message.text_content,
                source=IMPORT_SOURCE_TAG,
                message_id=message.message_id,
            )
            if result.skipped:
                return _PLAN_LIMIT if result.reason == _PLAN_LIMIT else _SKIPPED

            # historical mail counts as already read
            self.library.mark_read(result.user_message_id)
            if run.capped:
                run.usage = self.store.record_imported_email(user_id, sender.email)
            return _IMPORTED
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to import message %s from %s: %s", message.gmail_id, sender.email, exc)
            return _FAILED
