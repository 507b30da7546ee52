"""SQLite index of completed backups."""

import logging
import sqlite3
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class BackupIndex:
    """Thread-safe, append-only log of BackupRecords.

    The backup directories are the real artifact; this table only makes
    them queryable. Backups run on short-lived timer threads, so one
    connection is shared behind a lock instead of one per thread.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection: sqlite3.Connection | None = None
        self._closed = False
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        if self._closed:
            raise sqlite3.ProgrammingError(f"Backup index {self.db_path} is closed")
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self.db_path), timeout=10, check_same_thread=False
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA journal_mode=WAL")
            self._connection.execute("PRAGMA synchronous=NORMAL")
        return self._connection

    def _init_db(self):
        conn = self._get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS backups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                source_path TEXT NOT NULL,
                destination_path TEXT NOT NULL,
                files_copied INTEGER NOT NULL DEFAULT 0,
                bytes_copied INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_backups_timestamp
                ON backups(timestamp);
        """)
        conn.commit()
        logger.debug("Backup index initialized at %s", self.db_path)

    def record(self, record) -> int:
        """Insert a BackupRecord. Returns the row ID."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                """
                INSERT INTO backups (
                    timestamp, source_path, destination_path,
                    files_copied, bytes_copied
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.timestamp,
                    record.source_path,
                    record.destination_path,
                    record.files_copied,
                    record.bytes_copied,
                ),
            )
            conn.commit()
        logger.debug("Indexed backup %s", record.destination_path)
        return cursor.lastrowid

    def get_backups(self, since: str = None, limit: int = 100) -> list[dict]:
        """Most recent backups first."""
        query = "SELECT * FROM backups WHERE 1=1"
        params = []

        if since:
            query += " AND timestamp >= ?"
            params.append(since)

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count(self) -> int:
        with self._lock:
            return self._get_connection().execute(
                "SELECT COUNT(*) FROM backups"
            ).fetchone()[0]

    def close(self):
        with self._lock:
            self._closed = True
            if self._connection is not None:
                self._connection.close()
                self._connection = None
