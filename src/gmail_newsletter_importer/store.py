"""SQLite store for connections, run progress, detected senders and usage."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from gmail_newsletter_importer import constants
from gmail_newsletter_importer.models import (
    Connection,
    DetectedSender,
    ImportProgress,
    ImportStatus,
    ImportUsage,
    ScanProgress,
    ScanStatus,
    SelectionState,
    SenderAggregate,
    now_ms,
)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS connections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    email TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    token_expires_at INTEGER,
    created_at INTEGER NOT NULL,
    UNIQUE (user_id, email)
);

CREATE TABLE IF NOT EXISTS scan_progress (
    connection_id INTEGER PRIMARY KEY,
    status TEXT NOT NULL,
    total_emails INTEGER NOT NULL,
    processed_emails INTEGER NOT NULL,
    senders_found INTEGER NOT NULL,
    started_at INTEGER NOT NULL,
    completed_at INTEGER,
    error TEXT,
    FOREIGN KEY (connection_id) REFERENCES connections(id)
);

CREATE TABLE IF NOT EXISTS import_progress (
    connection_id INTEGER PRIMARY KEY,
    status TEXT NOT NULL,
    total_emails INTEGER NOT NULL,
    imported_emails INTEGER NOT NULL,
    failed_emails INTEGER NOT NULL,
    skipped_emails INTEGER NOT NULL,
    started_at INTEGER NOT NULL,
    completed_at INTEGER,
    error TEXT,
    FOREIGN KEY (connection_id) REFERENCES connections(id)
);

CREATE TABLE IF NOT EXISTS detected_senders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    connection_id INTEGER NOT NULL,
    email TEXT NOT NULL,
    name TEXT,
    domain TEXT NOT NULL,
    email_count INTEGER NOT NULL,
    confidence_score INTEGER NOT NULL,
    sample_subjects_json TEXT NOT NULL,
    selection TEXT NOT NULL,
    is_approved INTEGER NOT NULL,
    detected_at INTEGER NOT NULL,
    UNIQUE (connection_id, email),
    FOREIGN KEY (connection_id) REFERENCES connections(id)
);

CREATE TABLE IF NOT EXISTS import_usage (
    user_id TEXT PRIMARY KEY,
    imported_senders INTEGER NOT NULL,
    imported_emails INTEGER NOT NULL,
    imported_sender_emails_json TEXT NOT NULL
);
"""


def _connection_from_row(row: sqlite3.Row) -> Connection:
    return Connection(
        id=row["id"],
        user_id=row["user_id"],
        email=row["email"],
        is_active=bool(row["is_active"]),
        token_expires_at=row["token_expires_at"],
        created_at=row["created_at"],
    )


def _sender_from_row(row: sqlite3.Row) -> DetectedSender:
    return DetectedSender(
        id=row["id"],
        connection_id=row["connection_id"],
        email=row["email"],
        name=row["name"],
        domain=row["domain"],
        email_count=row["email_count"],
        confidence_score=row["confidence_score"],
        sample_subjects=json.loads(row["sample_subjects_json"]),
        selection=SelectionState(row["selection"]),
        is_approved=bool(row["is_approved"]),
        detected_at=row["detected_at"],
    )


class ProgressStore:
    """Persistent SQLite store shared by the scan and import orchestrators.

    Every progress and detected-sender record is keyed by connection ID.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = Path(db_path or constants.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(_CREATE_TABLES_SQL)

    # --- connections ---

    def add_connection(self, user_id: str, email: str, token_expires_at: int | None = None) -> Connection:
        """Create a connection, or reactivate the existing one for (user, email)."""
        email = email.strip().lower()
        with self._conn:
            self._conn.execute(
                "INSERT INTO connections (user_id, email, is_active, token_expires_at, created_at) "
                "VALUES (?, ?, 1, ?, ?) "
                "ON CONFLICT (user_id, email) DO UPDATE SET is_active = 1, "
                "token_expires_at = excluded.token_expires_at",
                (user_id, email, token_expires_at, now_ms()),
            )
        row = self._conn.execute(
            "SELECT * FROM connections WHERE user_id = ? AND email = ?", (user_id, email)
        ).fetchone()
        return _connection_from_row(row)

    def get_connection(self, connection_id: int) -> Connection | None:
        row = self._conn.execute("SELECT * FROM connections WHERE id = ?", (connection_id,)).fetchone()
        return _connection_from_row(row) if row else None

    def list_connections(self, user_id: str | None = None) -> list[Connection]:
        if user_id is None:
            rows = self._conn.execute("SELECT * FROM connections ORDER BY id").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM connections WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [_connection_from_row(r) for r in rows]

    def deactivate_connection(self, connection_id: int) -> None:
        with self._conn:
            self._conn.execute("UPDATE connections SET is_active = 0 WHERE id = ?", (connection_id,))

    def update_token_expiry(self, connection_id: int, token_expires_at: int | None) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE connections SET token_expires_at = ? WHERE id = ?",
                (token_expires_at, connection_id),
            )

    # --- scan progress ---

    def create_scan_progress(self, progress: ScanProgress) -> None:
        """Start a new scan record, replacing any earlier one for the connection."""
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO scan_progress (connection_id, status, total_emails, "
                "processed_emails, senders_found, started_at, completed_at, error) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    progress.connection_id,
                    progress.status.value,
                    progress.total_emails,
                    progress.processed_emails,
                    progress.senders_found,
                    progress.started_at,
                    progress.completed_at,
                    progress.error,
                ),
            )

    def get_scan_progress(self, connection_id: int) -> ScanProgress | None:
        row = self._conn.execute(
            "SELECT * FROM scan_progress WHERE connection_id = ?", (connection_id,)
        ).fetchone()
        if row is None:
            return None
        return ScanProgress(
            connection_id=row["connection_id"],
            status=ScanStatus(row["status"]),
            total_emails=row["total_emails"],
            processed_emails=row["processed_emails"],
            senders_found=row["senders_found"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error=row["error"],
        )

    def update_scan_progress(self, connection_id: int, processed_emails: int, senders_found: int) -> None:
        # MAX() keeps both counters monotonic
        with self._conn:
            self._conn.execute(
                "UPDATE scan_progress SET processed_emails = MAX(processed_emails, ?), "
                "senders_found = MAX(senders_found, ?) WHERE connection_id = ?",
                (processed_emails, senders_found, connection_id),
            )

    def complete_scan(
        self,
        connection_id: int,
        senders_found: int | None = None,
        error: str | None = None,
    ) -> None:
        status = ScanStatus.ERROR if error else ScanStatus.COMPLETE
        with self._conn:
            self._conn.execute(
                "UPDATE scan_progress SET status = ?, completed_at = ?, error = ?, "
                "senders_found = COALESCE(?, senders_found) WHERE connection_id = ?",
                (status.value, now_ms(), error, senders_found, connection_id),
            )

    # --- import progress ---

    def create_import_progress(self, progress: ImportProgress) -> None:
        """Start a new import record, replacing any earlier one for the connection."""
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO import_progress (connection_id, status, total_emails, "
                "imported_emails, failed_emails, skipped_emails, started_at, completed_at, error) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    progress.connection_id,
                    progress.status.value,
                    progress.total_emails,
                    progress.imported_emails,
                    progress.failed_emails,
                    progress.skipped_emails,
                    progress.started_at,
                    progress.completed_at,
                    progress.error,
                ),
            )

    def get_import_progress(self, connection_id: int) -> ImportProgress | None:
        row = self._conn.execute(
            "SELECT * FROM import_progress WHERE connection_id = ?", (connection_id,)
        ).fetchone()
        if row is None:
            return None
        return ImportProgress(
            connection_id=row["connection_id"],
            status=ImportStatus(row["status"]),
            total_emails=row["total_emails"],
            imported_emails=row["imported_emails"],
            failed_emails=row["failed_emails"],
            skipped_emails=row["skipped_emails"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error=row["error"],
        )

    def add_import_counts(self, connection_id: int, imported: int = 0, failed: int = 0, skipped: int = 0) -> None:
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE import_progress SET imported_emails = imported_emails + ?, "
                "failed_emails = failed_emails + ?, skipped_emails = skipped_emails + ? "
                "WHERE connection_id = ?",
                (imported, failed, skipped, connection_id),
            )
        if cursor.rowcount == 0:
            raise LookupError(f"Import progress not found for connection {connection_id}")

    def complete_import(self, connection_id: int, error: str | None = None) -> None:
        status = ImportStatus.ERROR if error else ImportStatus.COMPLETE
        with self._conn:
            self._conn.execute(
                "UPDATE import_progress SET status = ?, completed_at = ?, error = ? WHERE connection_id = ?",
                (status.value, now_ms(), error, connection_id),
            )

    # --- detected senders ---

    def upsert_detected_sender(self, connection_id: int, aggregate: SenderAggregate) -> DetectedSender:
        """Insert a scan aggregate or merge it into the existing sender record.

        On merge the higher score wins, subjects, count and detection time are
        replaced, a missing name is backfilled and selection/approval are kept.
        """
        detected_at = now_ms()
        subjects_json = json.dumps(aggregate.sample_subjects[: constants.SAMPLE_SUBJECTS_LIMIT])
        with self._conn:
            self._conn.execute(
                "INSERT INTO detected_senders (connection_id, email, name, domain, email_count, "
                "confidence_score, sample_subjects_json, selection, is_approved, detected_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?) "
                "ON CONFLICT (connection_id, email) DO UPDATE SET "
                "name = COALESCE(detected_senders.name, excluded.name), "
                "domain = excluded.domain, "
                "email_count = excluded.email_count, "
                "confidence_score = MAX(detected_senders.confidence_score, excluded.confidence_score), "
                "sample_subjects_json = excluded.sample_subjects_json, "
                "detected_at = excluded.detected_at",
                (
                    connection_id,
                    aggregate.email,
                    aggregate.name,
                    aggregate.domain,
                    aggregate.email_count,
                    aggregate.confidence_score,
                    subjects_json,
                    SelectionState.SELECTED.value,
                    detected_at,
                ),
            )
        return self.get_detected_sender(connection_id, aggregate.email)

    def get_detected_sender(self, connection_id: int, email: str) -> DetectedSender | None:
        row = self._conn.execute(
            "SELECT * FROM detected_senders WHERE connection_id = ? AND email = ?",
            (connection_id, email),
        ).fetchone()
        return _sender_from_row(row) if row else None

    def get_detected_senders(self, connection_id: int) -> list[DetectedSender]:
        rows = self._conn.execute(
            "SELECT * FROM detected_senders WHERE connection_id = ? ORDER BY id", (connection_id,)
        ).fetchall()
        return [_sender_from_row(r) for r in rows]

    def get_approved_senders(self, connection_id: int) -> list[DetectedSender]:
        rows = self._conn.execute(
            "SELECT * FROM detected_senders WHERE connection_id = ? AND is_approved = 1 ORDER BY id",
            (connection_id,),
        ).fetchall()
        return [_sender_from_row(r) for r in rows]

    def set_selection(self, connection_id: int, emails: list[str], selection: SelectionState) -> int:
        with self._conn:
            cursor = self._conn.executemany(
                "UPDATE detected_senders SET selection = ? WHERE connection_id = ? AND email = ?",
                [(selection.value, connection_id, e.strip().lower()) for e in emails],
            )
        return cursor.rowcount

    def approve_senders(self, connection_id: int, emails: list[str] | None = None) -> int:
        """Approve the given senders, or every selected sender when ``emails`` is None."""
        with self._conn:
            if emails is None:
                cursor = self._conn.execute(
                    "UPDATE detected_senders SET is_approved = 1 WHERE connection_id = ? AND selection = ?",
                    (connection_id, SelectionState.SELECTED.value),
                )
            else:
                cursor = self._conn.executemany(
                    "UPDATE detected_senders SET is_approved = 1 WHERE connection_id = ? AND email = ?",
                    [(connection_id, e.strip().lower()) for e in emails],
                )
        return cursor.rowcount

    # --- usage ---

    def get_import_usage(self, user_id: str) -> ImportUsage:
        row = self._conn.execute("SELECT * FROM import_usage WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return ImportUsage(user_id=user_id)
        return ImportUsage(
            user_id=user_id,
            imported_senders=row["imported_senders"],
            imported_emails=row["imported_emails"],
            imported_sender_emails=set(json.loads(row["imported_sender_emails_json"])),
        )

    def save_import_usage(self, usage: ImportUsage) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO import_usage (user_id, imported_senders, imported_emails, "
                "imported_sender_emails_json) VALUES (?, ?, ?, ?)",
                (
                    usage.user_id,
                    usage.imported_senders,
                    usage.imported_emails,
                    json.dumps(sorted(usage.imported_sender_emails)),
                ),
            )

    def record_imported_email(self, user_id: str, sender_email: str) -> ImportUsage:
        """Count one stored message. Read-modify-write, not atomic."""
        usage = self.get_import_usage(user_id)
        usage.imported_emails += 1
        if sender_email not in usage.imported_sender_emails:
            usage.imported_sender_emails.add(sender_email)
            usage.imported_senders = len(usage.imported_sender_emails)
        self.save_import_usage(usage)
        return usage

    # --- housekeeping ---

    def get_info(self) -> dict:
        """Return database statistics."""
        file_size = self.db_path.stat().st_size if self.db_path.exists() else 0
        counts = {}
        for table in ("connections", "detected_senders", "scan_progress", "import_progress"):
            counts[table] = self._conn.execute(f"SELECT COUNT(*) AS c FROM {table}").fetchone()["c"]
        return {"db_file_size": file_size, **counts}

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- context manager ---

    def __enter__(self) -> ProgressStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
