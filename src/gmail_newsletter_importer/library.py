"""SQLite newsletter library: storage, sender registry and folders.

This is the storage and sender/folder collaborator the import writes
through. Content bodies live in a ``blobs`` table keyed by storage key.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from pathlib import Path

from gmail_newsletter_importer import constants
from gmail_newsletter_importer.dedup import DuplicateDetector
from gmail_newsletter_importer.models import SharedContent, StoreResult, UserMessage, now_ms
from gmail_newsletter_importer.normalize import effective_content
from gmail_newsletter_importer.scorer import extract_domain

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS senders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    domain TEXT NOT NULL,
    subscriber_count INTEGER NOT NULL DEFAULT 0,
    newsletter_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS folders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS user_sender_settings (
    user_id TEXT NOT NULL,
    sender_id INTEGER NOT NULL,
    is_private INTEGER NOT NULL DEFAULT 0,
    folder_id INTEGER,
    PRIMARY KEY (user_id, sender_id),
    FOREIGN KEY (sender_id) REFERENCES senders(id),
    FOREIGN KEY (folder_id) REFERENCES folders(id)
);

CREATE TABLE IF NOT EXISTS shared_content (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content_hash TEXT NOT NULL UNIQUE,
    storage_key TEXT NOT NULL,
    subject TEXT NOT NULL,
    sender_email TEXT NOT NULL,
    sender_name TEXT,
    first_received_at INTEGER NOT NULL,
    reader_count INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS user_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    sender_id INTEGER NOT NULL,
    folder_id INTEGER NOT NULL,
    content_id INTEGER,
    private_key TEXT,
    subject TEXT NOT NULL,
    sender_email TEXT NOT NULL,
    sender_name TEXT,
    received_at INTEGER NOT NULL,
    message_id TEXT,
    source TEXT NOT NULL,
    is_private INTEGER NOT NULL,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (sender_id) REFERENCES senders(id),
    FOREIGN KEY (content_id) REFERENCES shared_content(id)
);

CREATE INDEX IF NOT EXISTS idx_user_messages_user_sender ON user_messages (user_id, sender_id);
CREATE INDEX IF NOT EXISTS idx_user_messages_user_message_id ON user_messages (user_id, message_id);

CREATE TABLE IF NOT EXISTS blobs (
    key TEXT PRIMARY KEY,
    content_type TEXT NOT NULL,
    body TEXT NOT NULL
);
"""


def _message_from_row(row: sqlite3.Row) -> UserMessage:
    return UserMessage(
        id=row["id"],
        user_id=row["user_id"],
        sender_id=row["sender_id"],
        subject=row["subject"],
        received_at=row["received_at"],
        message_id=row["message_id"],
        content_id=row["content_id"],
        private_key=row["private_key"],
        is_private=bool(row["is_private"]),
        is_read=bool(row["is_read"]),
    )


class SQLiteLibrary:
    """Stores imported newsletters per user, sharing identical public content.

    ``hard_cap`` limits how many messages one user may store; writes past it
    are skipped with reason ``plan_limit``.
    """

    def __init__(self, db_path: Path | None = None, hard_cap: int | None = None) -> None:
        self.db_path = Path(db_path or constants.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.hard_cap = hard_cap
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_CREATE_TABLES_SQL)
        self.detector = DuplicateDetector(self)

    # --- senders and folders ---

    def find_sender_id(self, email: str) -> int | None:
        row = self._conn.execute(
            "SELECT id FROM senders WHERE email = ?", (email.strip().lower(),)
        ).fetchone()
        return row["id"] if row else None

    def get_or_create_sender(self, email: str, name: str | None = None) -> int:
        email = email.strip().lower()
        sender_id = self.find_sender_id(email)
        if sender_id is not None:
            if name:
                with self._conn:
                    self._conn.execute(
                        "UPDATE senders SET name = ? WHERE id = ? AND name IS NULL", (name, sender_id)
                    )
            return sender_id

        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO senders (email, name, domain) VALUES (?, ?, ?)",
                (email, name, extract_domain(email)),
            )
        return cursor.lastrowid

    def _get_settings(self, user_id: str, sender_id: int) -> sqlite3.Row:
        row = self._conn.execute(
            "SELECT * FROM user_sender_settings WHERE user_id = ? AND sender_id = ?",
            (user_id, sender_id),
        ).fetchone()
        if row is not None:
            return row

        with self._conn:
            self._conn.execute(
                "INSERT INTO user_sender_settings (user_id, sender_id) VALUES (?, ?)", (user_id, sender_id)
            )
            self._conn.execute(
                "UPDATE senders SET subscriber_count = subscriber_count + 1 WHERE id = ?", (sender_id,)
            )
        return self._get_settings(user_id, sender_id)

    def get_or_create_folder(self, user_id: str, sender_id: int) -> int:
        """Return the user's folder for a sender, creating it from the sender's name."""
        settings = self._get_settings(user_id, sender_id)
        if settings["folder_id"] is not None:
            return settings["folder_id"]

        sender = self._conn.execute("SELECT name, email FROM senders WHERE id = ?", (sender_id,)).fetchone()
        name = (sender["name"] or sender["email"]) if sender else None
        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO folders (user_id, name, created_at) VALUES (?, ?, ?)",
                (user_id, name or constants.UNKNOWN_SENDER_FOLDER, now_ms()),
            )
            self._conn.execute(
                "UPDATE user_sender_settings SET folder_id = ? WHERE user_id = ? AND sender_id = ?",
                (cursor.lastrowid, user_id, sender_id),
            )
        return cursor.lastrowid

    def get_folder_name(self, folder_id: int) -> str | None:
        row = self._conn.execute("SELECT name FROM folders WHERE id = ?", (folder_id,)).fetchone()
        return row["name"] if row else None

    def set_sender_private(self, user_id: str, sender_id: int, is_private: bool) -> None:
        self._get_settings(user_id, sender_id)
        with self._conn:
            self._conn.execute(
                "UPDATE user_sender_settings SET is_private = ? WHERE user_id = ? AND sender_id = ?",
                (int(is_private), user_id, sender_id),
            )

    def is_sender_private(self, user_id: str, sender_id: int) -> bool:
        return bool(self._get_settings(user_id, sender_id)["is_private"])

    # --- lookups used by the duplicate detector ---

    def find_user_messages(self, user_id: str, sender_id: int) -> list[UserMessage]:
        rows = self._conn.execute(
            "SELECT * FROM user_messages WHERE user_id = ? AND sender_id = ? ORDER BY id",
            (user_id, sender_id),
        ).fetchall()
        return [_message_from_row(r) for r in rows]

    def find_user_message_by_message_id(self, user_id: str, message_id: str) -> UserMessage | None:
        row = self._conn.execute(
            "SELECT * FROM user_messages WHERE user_id = ? AND message_id = ? LIMIT 1",
            (user_id, message_id),
        ).fetchone()
        return _message_from_row(row) if row else None

    def find_shared_content(self, content_hash: str) -> SharedContent | None:
        row = self._conn.execute(
            "SELECT * FROM shared_content WHERE content_hash = ?", (content_hash,)
        ).fetchone()
        if row is None:
            return None
        return SharedContent(
            id=row["id"],
            content_hash=row["content_hash"],
            storage_key=row["storage_key"],
            reader_count=row["reader_count"],
        )

    def find_user_message_for_content(self, user_id: str, content_id: int) -> UserMessage | None:
        row = self._conn.execute(
            "SELECT * FROM user_messages WHERE user_id = ? AND content_id = ? LIMIT 1",
            (user_id, content_id),
        ).fetchone()
        return _message_from_row(row) if row else None

    def get_user_message(self, user_message_id: int) -> UserMessage | None:
        row = self._conn.execute("SELECT * FROM user_messages WHERE id = ?", (user_message_id,)).fetchone()
        return _message_from_row(row) if row else None

    def count_user_messages(self, user_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) AS c FROM user_messages WHERE user_id = ?", (user_id,)
        ).fetchone()["c"]

    def count_shared_content(self) -> int:
        return self._conn.execute("SELECT COUNT(*) AS c FROM shared_content").fetchone()["c"]

    def get_blob(self, key: str) -> str | None:
        row = self._conn.execute("SELECT body FROM blobs WHERE key = ?", (key,)).fetchone()
        return row["body"] if row else None

    # --- storage ---

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
    ) -> StoreResult:
        """Store one newsletter for ``owner_id``.

        Checks, in order: exact Message-ID, content hash (shared content
        only), then the per-user hard cap.
        """
        by_message_id = self.detector.check_message_id(owner_id, message_id)
        if by_message_id.is_duplicate:
            logger.info("Duplicate by Message-ID %s, existing=%s", message_id, by_message_id.existing_id)
            return StoreResult.skip("duplicate", by_message_id.existing_id)

        is_html = bool(html_content and html_content.strip())
        content = effective_content(html_content if is_html else text_content, subject)
        content_type = "text/html" if is_html else "text/plain"
        ext = "html" if is_html else "txt"
        is_private = self.is_sender_private(owner_id, sender_id)

        match = None
        if not is_private:
            match = self.detector.check_content(owner_id, content, subject)
            if match.is_duplicate:
                logger.info(
                    "Duplicate by content hash %s..., existing=%s", match.content_hash[:8], match.existing_id
                )
                return StoreResult.skip("duplicate", match.existing_id)

        if self.hard_cap is not None and self.count_user_messages(owner_id) >= self.hard_cap:
            logger.info("Plan limit: user %s already stores %d messages", owner_id, self.hard_cap)
            return StoreResult.skip("plan_limit")

        now = now_ms()
        with self._conn:
            content_id = None
            private_key = None
            if is_private:
                private_key = f"private/{owner_id}/{now}-{uuid.uuid4()}.{ext}"
                storage_key = private_key
                self._put_blob(private_key, content_type, content)
            elif match.shared_content is not None:
                content_id = match.shared_content.id
                storage_key = match.shared_content.storage_key
                self._conn.execute(
                    "UPDATE shared_content SET reader_count = reader_count + 1 WHERE id = ?", (content_id,)
                )
            else:
                storage_key = f"shared/{match.content_hash}.{ext}"
                self._put_blob(storage_key, content_type, content)
                cursor = self._conn.execute(
                    "INSERT INTO shared_content (content_hash, storage_key, subject, sender_email, "
                    "sender_name, first_received_at, reader_count) VALUES (?, ?, ?, ?, ?, ?, 1)",
                    (match.content_hash, storage_key, subject, sender_email, sender_name, received_at),
                )
                content_id = cursor.lastrowid

            cursor = self._conn.execute(
                "INSERT INTO user_messages (user_id, sender_id, folder_id, content_id, private_key, subject, "
                "sender_email, sender_name, received_at, message_id, source, is_private, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    owner_id,
                    sender_id,
                    folder_id,
                    content_id,
                    private_key,
                    subject,
                    sender_email,
                    sender_name,
                    received_at,
                    message_id.strip() if message_id else None,
                    source,
                    int(is_private),
                    now,
                ),
            )
            self._conn.execute(
                "UPDATE senders SET newsletter_count = newsletter_count + 1 WHERE id = ?", (sender_id,)
            )

        return StoreResult.stored(cursor.lastrowid, storage_key)

    def _put_blob(self, key: str, content_type: str, body: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO blobs (key, content_type, body) VALUES (?, ?, ?)",
            (key, f"{content_type}; charset=utf-8", body),
        )

    def mark_read(self, user_message_id: int) -> None:
        with self._conn:
            self._conn.execute("UPDATE user_messages SET is_read = 1 WHERE id = ?", (user_message_id,))

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> SQLiteLibrary:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
