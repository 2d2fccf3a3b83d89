"""Delivery ledger and processed-event log over a DB-API connection.

The same SQL runs on SQLite (``?`` placeholders, ISO text timestamps) and
PostgreSQL (``%s`` placeholders, TIMESTAMPTZ); the connection type decides.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime
from typing import Any, Final, Protocol

from psycopg2 import Error as PsycopgError

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import RepositoryError
from safety_alerts.domain.models import ProcessedLogRecord

logger = get_logger(__name__)

DELIVERED_TABLE: Final[str] = "delivered_events"
PROCESSED_LOG_TABLE: Final[str] = "processed_event_log"


class CursorProtocol(Protocol):
    """Protocol for database cursors used by the ledger store."""

    rowcount: int

    def execute(self, query: str, params: tuple[Any, ...]) -> Any:
        """Execute a SQL statement with positional parameters."""

    def fetchone(self) -> Any:
        """Fetch a single result row."""

    def close(self) -> None:
        """Release cursor resources."""


class ConnectionProtocol(Protocol):
    """Protocol for connections compatible with the ledger store."""

    def cursor(self) -> CursorProtocol:
        """Create a database cursor."""

    def commit(self) -> None:
        """Commit the active transaction."""


GetConnectionCallable = Callable[[], AbstractContextManager[ConnectionProtocol]]


class SqlLedgerStore:
    """Persistence for ``delivered_events`` and ``processed_event_log``."""

    def __init__(self, get_conn: GetConnectionCallable) -> None:
        """Initialize the store.

        Args:
            get_conn: Callable returning a context manager that yields a connection.
        """
        self._get_conn = get_conn

    def is_delivered(self, event_id: str) -> bool:
        return self._exists(DELIVERED_TABLE, event_id)

    def is_processed(self, event_id: str) -> bool:
        return self._exists(PROCESSED_LOG_TABLE, event_id)

    def mark_delivered(self, event_id: str, event_type: str, sent_at: datetime) -> None:
        with self._connection_scope() as conn:
            ph = self._placeholder(conn)
            self._execute(
                conn,
                f"""
                INSERT INTO {DELIVERED_TABLE} (event_id, event_type, sent_at)
                VALUES ({ph}, {ph}, {ph})
                ON CONFLICT (event_id) DO UPDATE SET
                    event_type = excluded.event_type,
                    sent_at = excluded.sent_at
                """,
                (event_id, event_type, self._to_db_time(conn, sent_at)),
            )

    def log_processed(self, record: ProcessedLogRecord) -> None:
        now = datetime.now(UTC)
        with self._connection_scope() as conn:
            ph = self._placeholder(conn)
            placeholders = ", ".join([ph] * 14)
            self._execute(
                conn,
                f"""
                INSERT INTO {PROCESSED_LOG_TABLE} (
                    event_id, source, event_type, vehicle_name, behavior,
                    occurred_at, latitude, longitude, sent_to_chat_id, video_url,
                    delivery_method, raw_json, created_at, updated_at
                ) VALUES ({placeholders})
                ON CONFLICT (event_id) DO UPDATE SET
                    vehicle_name = excluded.vehicle_name,
                    behavior = excluded.behavior,
                    latitude = excluded.latitude,
                    longitude = excluded.longitude,
                    sent_to_chat_id = excluded.sent_to_chat_id,
                    video_url = excluded.video_url,
                    delivery_method = excluded.delivery_method,
                    raw_json = excluded.raw_json,
                    updated_at = excluded.updated_at
                """,
                (
                    record.event_id,
                    record.source.value,
                    record.event_type,
                    record.vehicle_name,
                    record.behavior,
                    self._to_db_time(conn, record.occurred_at),
                    record.latitude,
                    record.longitude,
                    record.sent_to_chat_id,
                    record.video_url,
                    record.delivery_method.value,
                    json.dumps(record.raw, default=str, ensure_ascii=False),
                    self._to_db_time(conn, now),
                    self._to_db_time(conn, now),
                ),
            )

    def purge_delivered_before(self, cutoff: datetime) -> int:
        with self._connection_scope() as conn:
            ph = self._placeholder(conn)
            return self._execute(
                conn,
                f"DELETE FROM {DELIVERED_TABLE} WHERE sent_at < {ph}",
                (self._to_db_time(conn, cutoff),),
            )

    def _exists(self, table: str, event_id: str) -> bool:
        with self._connection_scope() as conn:
            ph = self._placeholder(conn)
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"SELECT 1 FROM {table} WHERE event_id = {ph}", (event_id,)
                )
                return cursor.fetchone() is not None
            except (sqlite3.Error, PsycopgError) as exc:
                raise RepositoryError(f"Lookup in {table} failed: {exc}") from exc
            finally:
                cursor.close()

    @staticmethod
    def _execute(conn: ConnectionProtocol, sql: str, params: tuple[Any, ...]) -> int:
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            affected = cursor.rowcount
            conn.commit()
            return max(affected, 0)
        except (sqlite3.Error, PsycopgError) as exc:
            raise RepositoryError(f"Ledger write failed: {exc}") from exc
        finally:
            cursor.close()

    @contextmanager
    def _connection_scope(self) -> Iterator[ConnectionProtocol]:
        try:
            with self._get_conn() as conn:
                yield conn
        except (sqlite3.Error, PsycopgError) as exc:
            raise RepositoryError(f"Ledger connection failed: {exc}") from exc

    @staticmethod
    def _is_sqlite(conn: ConnectionProtocol) -> bool:
        return isinstance(conn, sqlite3.Connection)

    @classmethod
    def _placeholder(cls, conn: ConnectionProtocol) -> str:
        return "?" if cls._is_sqlite(conn) else "%s"

    @classmethod
    def _to_db_time(cls, conn: ConnectionProtocol, value: datetime) -> Any:
        utc_value = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
        return utc_value.isoformat() if cls._is_sqlite(conn) else utc_value


__all__ = [
    "DELIVERED_TABLE",
    "PROCESSED_LOG_TABLE",
    "GetConnectionCallable",
    "SqlLedgerStore",
]
