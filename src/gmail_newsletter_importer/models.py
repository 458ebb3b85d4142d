"""Data models for Gmail Newsletter Importer."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field


def now_ms() -> int:
    return int(time.time() * 1000)


class ScanStatus(str, enum.Enum):
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"


class ImportStatus(str, enum.Enum):
    PENDING = "pending"
    IMPORTING = "importing"
    COMPLETE = "complete"
    ERROR = "error"


class SelectionState(str, enum.Enum):
    SELECTED = "selected"
    DESELECTED = "deselected"


@dataclass
class Connection:
    """A linked Gmail account belonging to one user."""

    id: int
    user_id: str
    email: str
    is_active: bool = True
    token_expires_at: int | None = None  # epoch ms
    created_at: int = field(default_factory=now_ms)


@dataclass
class EmailHeaders:
    """The headers the pipelines care about. Anything else is dropped."""

    from_: str = ""
    subject: str = ""
    list_unsubscribe: str | None = None
    list_id: str | None = None
    precedence: str | None = None
    message_id: str | None = None
    date: str | None = None


@dataclass
class MessageList:
    """One page of a messages.list call."""

    message_ids: list[str] = field(default_factory=list)
    next_page_token: str | None = None
    total_estimate: int | None = None


@dataclass
class FullMessage:
    """A message fetched with format=full, body already decoded."""

    gmail_id: str
    headers: EmailHeaders
    received_at: int  # epoch ms, from internalDate
    html_content: str | None = None
    text_content: str | None = None

    @property
    def message_id(self) -> str | None:
        """RFC 5322 Message-ID without angle brackets."""
        if not self.headers.message_id:
            return None
        value = self.headers.message_id.strip().strip("<>").strip()
        return value or None


@dataclass
class ScanProgress:
    connection_id: int
    status: ScanStatus = ScanStatus.SCANNING
    total_emails: int = 0
    processed_emails: int = 0
    senders_found: int = 0
    started_at: int = field(default_factory=now_ms)
    completed_at: int | None = None
    error: str | None = None


@dataclass
class ImportProgress:
    connection_id: int
    status: ImportStatus = ImportStatus.IMPORTING
    total_emails: int = 0
    imported_emails: int = 0
    failed_emails: int = 0
    skipped_emails: int = 0
    started_at: int = field(default_factory=now_ms)
    completed_at: int | None = None
    error: str | None = None


@dataclass
class SenderAggregate:
    """In-memory per-sender statistics collected during a scan."""

    email: str
    domain: str
    name: str | None = None
    email_count: int = 0
    confidence_score: int = 0
    sample_subjects: list[str] = field(default_factory=list)


@dataclass
class DetectedSender:
    """A candidate newsletter sender found by a scan, awaiting approval."""

    connection_id: int
    email: str
    domain: str
    name: str | None = None
    email_count: int = 0
    confidence_score: int = 0
    sample_subjects: list[str] = field(default_factory=list)
    selection: SelectionState = SelectionState.SELECTED
    is_approved: bool = False
    detected_at: int = field(default_factory=now_ms)
    id: int | None = None


@dataclass
class ImportUsage:
    """Free-tier usage counters for one user."""

    user_id: str
    imported_senders: int = 0
    imported_emails: int = 0
    imported_sender_emails: set[str] = field(default_factory=set)


@dataclass
class StoreResult:
    """Outcome of a storage write: either stored, or skipped with a reason."""

    user_message_id: int | None = None
    storage_key: str | None = None
    skipped: bool = False
    reason: str | None = None  # "duplicate" or "plan_limit"
    existing_id: int | None = None

    @classmethod
    def stored(cls, user_message_id: int, storage_key: str) -> StoreResult:
        return cls(user_message_id=user_message_id, storage_key=storage_key)

    @classmethod
    def skip(cls, reason: str, existing_id: int | None = None) -> StoreResult:
        return cls(skipped=True, reason=reason, existing_id=existing_id)


@dataclass
class RunResult:
    """What a scan or import call hands back to its caller."""

    success: bool
    error: str | None = None
    error_code: str | None = None
    senders_found: int = 0
    imported_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0


@dataclass
class UserMessage:
    """A newsletter already stored in one user's library."""

    id: int
    user_id: str
    sender_id: int
    subject: str
    received_at: int
    message_id: str | None = None
    content_id: int | None = None
    private_key: str | None = None
    is_private: bool = False
    is_read: bool = False


@dataclass
class SharedContent:
    """Deduplicated content referenced by every user who received it."""

    id: int
    content_hash: str
    storage_key: str
    reader_count: int = 1
