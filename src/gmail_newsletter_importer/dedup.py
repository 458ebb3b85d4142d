"""Two-phase duplicate detection for imported newsletters.

Phase 1 is a cheap metadata match (same sender, same received time, same
subject) run before anything is stored. Phase 2 normalizes and hashes the
content and is only used for shared (non-private) content.

Private content never reaches Phase 2, so for it duplicates are caught only
by Phase 1 and by an exact Message-ID match. Two private copies of the same
issue with different subjects or timestamps are both kept. That lower
recall is accepted in exchange for not hashing private mail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from .models import SharedContent, UserMessage
from .normalize import content_hash_for

logger = logging.getLogger(__name__)


class DuplicateLookup(Protocol):
    def find_sender_id(self, email: str) -> int | None: ...

    def find_user_messages(self, user_id: str, sender_id: int) -> list[UserMessage]: ...

    def find_user_message_by_message_id(self, user_id: str, message_id: str) -> UserMessage | None: ...

    def find_shared_content(self, content_hash: str) -> SharedContent | None: ...

    def find_user_message_for_content(self, user_id: str, content_id: int) -> UserMessage | None: ...


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    reason: str | None = None  # "metadata", "message_id" or "content_hash"
    existing_id: int | None = None


@dataclass
class ContentMatch:
    """Result of Phase 2: the hash, and the shared content it matched if any."""

    content_hash: str
    shared_content: SharedContent | None = None
    existing_id: int | None = None  # set when this user already has the content

    @property
    def is_duplicate(self) -> bool:
        return self.existing_id is not None


NOT_DUPLICATE = DuplicateCheck(is_duplicate=False)


class DuplicateDetector:
    def __init__(self, lookup: DuplicateLookup) -> None:
        self.lookup = lookup

    def check_phase1(self, user_id: str, sender_email: str, received_at: int, subject: str) -> DuplicateCheck:
        """Metadata match: same sender, exact received time and exact subject."""
        sender_id = self.lookup.find_sender_id(sender_email)
        if sender_id is None:
            return NOT_DUPLICATE

        for message in self.lookup.find_user_messages(user_id, sender_id):
            if message.received_at == received_at and message.subject == subject:
                logger.debug("Phase 1 duplicate for %s: existing message %s", sender_email, message.id)
                return DuplicateCheck(is_duplicate=True, reason="metadata", existing_id=message.id)
        return NOT_DUPLICATE

    def check_message_id(self, user_id: str, message_id: str | None) -> DuplicateCheck:
        """Exact match on the RFC 5322 Message-ID. Blank IDs never match."""
        if not message_id or not message_id.strip():
            return NOT_DUPLICATE
        existing = self.lookup.find_user_message_by_message_id(user_id, message_id.strip())
        if existing is None:
            return NOT_DUPLICATE
        return DuplicateCheck(is_duplicate=True, reason="message_id", existing_id=existing.id)

    def check_content(self, user_id: str, content: str | None, subject: str) -> ContentMatch:
        """Phase 2: hash the normalized content and look for shared content."""
        content_hash = content_hash_for(content, subject)
        shared = self.lookup.find_shared_content(content_hash)
        if shared is None:
            return ContentMatch(content_hash=content_hash)

        existing = self.lookup.find_user_message_for_content(user_id, shared.id)
        return ContentMatch(
            content_hash=content_hash,
            shared_content=shared,
            existing_id=existing.id if existing else None,
        )
