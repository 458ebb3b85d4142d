"""Authentication helpers for Gmail API."""

from __future__ import annotations

import logging
from datetime import timezone
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from . import constants
from .errors import TokenExpiredError
from .gmail_client import GmailClient
from .models import Connection
from .store import ProgressStore

logger = logging.getLogger(__name__)


def expiry_ms(creds: Credentials) -> int | None:
    """Token expiry as epoch milliseconds. google-auth keeps it as naive UTC."""
    if creds.expiry is None:
        return None
    return int(creds.expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)


def build_gmail_service(creds: Credentials) -> Resource:
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


class TokenFileCredentialProvider:
    """Keeps one authorized-user token file per connection.

    Expired tokens are refreshed on demand and written back. A token that
    cannot be refreshed means the user has to link the account again.
    """

    def __init__(self, tokens_dir: Path | None = None, store: ProgressStore | None = None) -> None:
        self.tokens_dir = Path(tokens_dir) if tokens_dir else constants.TOKENS_DIR
        self.store = store

    def token_path(self, connection_id: int) -> Path:
        return self.tokens_dir / f"{connection_id}.json"

    def save(self, connection_id: int, creds: Credentials) -> None:
        self.tokens_dir.mkdir(parents=True, exist_ok=True)
        self.token_path(connection_id).write_text(creds.to_json())

    def delete(self, connection_id: int) -> None:
        self.token_path(connection_id).unlink(missing_ok=True)

    def get_credentials(self, connection: Connection) -> Credentials:
        path = self.token_path(connection.id)
        if not path.exists():
            raise TokenExpiredError(f"No token stored for {connection.email}. Run 'auth' to link the account.")

        creds = Credentials.from_authorized_user_file(str(path), constants.SCOPES)

        if creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as exc:
                logger.warning("Token refresh failed for connection %s: %s", connection.id, exc)
                raise TokenExpiredError(
                    f"Gmail access for {connection.email} has expired. Run 'auth' to link the account again."
                ) from exc
            path.write_text(creds.to_json())
            if self.store is not None:
                self.store.update_token_expiry(connection.id, expiry_ms(creds))
        elif not creds.valid:
            raise TokenExpiredError(
                f"Gmail access for {connection.email} is no longer valid. Run 'auth' to link the account again."
            )

        return creds


def link_account(
    store: ProgressStore,
    provider: TokenFileCredentialProvider,
    user_id: str,
    client_secret_path: Path | None = None,
) -> Connection:
    """Run the OAuth browser flow and record a Connection for the mailbox.

    Requires the OAuth client secret downloaded from the Google Cloud
    Console. Linking an already known mailbox reactivates it and replaces
    its token.
    """
    secret = Path(client_secret_path) if client_secret_path else constants.CLIENT_SECRET_PATH
    if not secret.exists():
        raise FileNotFoundError(
            f"OAuth client secret not found at {secret}.\n"
            "Download your OAuth client credentials from the Google Cloud Console "
            "and save them as:\n"
            f"  {secret}"
        )

    flow = InstalledAppFlow.from_client_secrets_file(str(secret), constants.SCOPES)
    creds = flow.run_local_server(port=0)

    email = GmailClient(build_gmail_service(creds)).check_access()
    connection = store.add_connection(user_id, email, token_expires_at=expiry_ms(creds))
    provider.save(connection.id, creds)
    logger.info("Linked %s as connection %s", email, connection.id)
    return connection


def open_client(connection: Connection, provider: TokenFileCredentialProvider) -> GmailClient:
    """Gmail client for a connection, with freshly validated credentials."""
    return GmailClient(build_gmail_service(provider.get_credentials(connection)))
