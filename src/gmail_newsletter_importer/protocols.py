"""Contracts for the collaborators the scan and import pipelines depend on.

``library.SQLiteLibrary``, ``entitlements.PlanEntitlements`` and
``auth.TokenFileCredentialProvider`` are the implementations shipped here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from google.oauth2.credentials import Credentials

    from .models import Connection, StoreResult


@runtime_checkable
class MessageStorage(Protocol):
    """Persists imported newsletters. Applies content-hash dedup to shared content."""

    def store(
        self,
        owner_id: str,
        sender_id: int,
        folder_id: int,
        subject: str,
        sender_email: str,
        sender_name: str | None,
        received_at: int,
        html_content: str | None,
        text_content: str | None,
        source: str,
        message_id: str | None = None,
    ) -> StoreResult: ...

    def mark_read(self, user_message_id: int) -> None: ...


@runtime_checkable
class SenderResolver(Protocol):
    """Canonical sender records and the folder each user files them under."""

    def get_or_create_sender(self, email: str, name: str | None = None) -> int: ...

    def get_or_create_folder(self, user_id: str, sender_id: int) -> int: ...


@runtime_checkable
class Entitlements(Protocol):
    sender_cap: int
    email_cap: int

    def is_under_cap(self, plan: str) -> bool: ...


@runtime_checkable
class CredentialProvider(Protocol):
    """Hands out valid (refreshed if needed) credentials for a connection."""

    def get_credentials(self, connection: Connection) -> Credentials: ...
