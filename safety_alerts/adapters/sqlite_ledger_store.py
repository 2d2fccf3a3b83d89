"""SQLite-backed delivery ledger."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from safety_alerts.adapters.sql_ledger_store import (
    DELIVERED_TABLE,
    PROCESSED_LOG_TABLE,
    SqlLedgerStore,
)
from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import RepositoryError

logger = get_logger(__name__)


class SQLiteLedgerStore(SqlLedgerStore):
    """Ledger stored in a local SQLite file."""

    def __init__(self, db_path: str) -> None:
        """Initialize the store and ensure the schema exists.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(self._get_connection)
        self._create_schema()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        try:
            yield conn
        finally:
            conn.close()

    def _create_schema(self) -> None:
        """Create ledger tables if they do not exist."""
        logger.info("sqlite_schema_creation_started", db_path=self.db_path)
        try:
            with self._get_connection() as conn:
                conn.executescript(
                    f"""
                    CREATE TABLE IF NOT EXISTS {DELIVERED_TABLE} (
                        event_id TEXT PRIMARY KEY,
                        event_type TEXT NOT NULL,
                        sent_at TEXT NOT NULL
                    );
                    CREATE INDEX IF NOT EXISTS idx_{DELIVERED_TABLE}_sent_at
                        ON {DELIVERED_TABLE} (sent_at);

                    CREATE TABLE IF NOT EXISTS {PROCESSED_LOG_TABLE} (
                        event_id TEXT PRIMARY KEY,
                        source TEXT NOT NULL,
                        event_type TEXT NOT NULL,
                        vehicle_name TEXT,
                        behavior TEXT,
                        occurred_at TEXT NOT NULL,
                        latitude REAL,
                        longitude REAL,
                        sent_to_chat_id INTEGER,
                        video_url TEXT,
                        delivery_method TEXT NOT NULL,
                        raw_json TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create SQLite schema: {exc}") from exc
        logger.info("sqlite_schema_ready", db_path=self.db_path)

    def close(self) -> None:
        """Connections are per-call; nothing to release."""
