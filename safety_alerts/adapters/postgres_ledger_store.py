"""PostgreSQL-backed delivery ledger using a psycopg2 connection pool."""

from collections.abc import Iterator
from contextlib import contextmanager
from time import sleep
from typing import Any, Final

from psycopg2 import Error as PsycopgError
from psycopg2 import extensions
from psycopg2 import pool as psycopg2_pool

from safety_alerts.adapters.sql_ledger_store import (
    DELIVERED_TABLE,
    PROCESSED_LOG_TABLE,
    SqlLedgerStore,
)
from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import RepositoryError

logger = get_logger(__name__)

POOL_ACQUIRE_MAX_ATTEMPTS: Final[int] = 3
POOL_ACQUIRE_BASE_DELAY_SECONDS: Final[float] = 0.1
POOL_ACQUIRE_MAX_DELAY_SECONDS: Final[float] = 1.0

_SCHEMA_SQL: Final[str] = f"""
CREATE TABLE IF NOT EXISTS {DELIVERED_TABLE} (
    event_id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    sent_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_{DELIVERED_TABLE}_sent_at
    ON {DELIVERED_TABLE} (sent_at);

CREATE TABLE IF NOT EXISTS {PROCESSED_LOG_TABLE} (
    event_id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    event_type TEXT NOT NULL,
    vehicle_name TEXT,
    behavior TEXT,
    occurred_at TIMESTAMPTZ NOT NULL,
    latitude DOUBLE PRECISION,
    longitude DOUBLE PRECISION,
    sent_to_chat_id BIGINT,
    video_url TEXT,
    delivery_method TEXT NOT NULL,
    raw_json JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
"""


class PostgresLedgerStore(SqlLedgerStore):
    """Ledger stored in PostgreSQL, shared safely between processes."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        *,
        min_connections: int = 1,
        max_connections: int = 5,
        statement_timeout_ms: int = 10_000,
        connect_timeout_seconds: int = 10,
        application_name: str = "safety_alerts",
        ssl_mode: str | None = None,
    ) -> None:
        """Initialize the pool and ensure the schema exists."""
        if min_connections <= 0:
            raise RepositoryError("postgres_min_connections must be positive")
        if max_connections < min_connections:
            raise RepositoryError(
                "postgres_max_connections must be greater than or equal to "
                "postgres_min_connections"
            )

        self._database = database
        conn_kwargs: dict[str, Any] = {
            "host": host,
            "port": port,
            "database": database,
            "user": user,
            "password": password,
            "connect_timeout": connect_timeout_seconds,
            "options": (
                f"-c statement_timeout={statement_timeout_ms} "
                f"-c application_name={application_name}"
            ),
        }
        if ssl_mode:
            conn_kwargs["sslmode"] = ssl_mode

        try:
            self._pool = psycopg2_pool.ThreadedConnectionPool(
                min_connections, max_connections, **conn_kwargs
            )
        except PsycopgError as exc:
            raise RepositoryError(
                f"Failed to initialize PostgreSQL pool: {exc}"
            ) from exc

        logger.info(
            "postgres_pool_initialized",
            host=host,
            port=port,
            database=database,
            min_connections=min_connections,
            max_connections=max_connections,
        )
        super().__init__(self._get_connection)
        self._create_schema()

    def _acquire_connection(self) -> extensions.connection:
        """Borrow a connection, backing off briefly while the pool is exhausted."""
        delay = POOL_ACQUIRE_BASE_DELAY_SECONDS
        for attempt in range(1, POOL_ACQUIRE_MAX_ATTEMPTS + 1):
            try:
                return self._pool.getconn()
            except psycopg2_pool.PoolError as exc:
                if attempt >= POOL_ACQUIRE_MAX_ATTEMPTS:
                    raise RepositoryError(
                        "Failed to acquire PostgreSQL connection from pool"
                    ) from exc
                logger.warning(
                    "postgres_pool_exhausted_retry", attempt=attempt, wait_seconds=delay
                )
                sleep(delay)
                delay = min(delay * 2, POOL_ACQUIRE_MAX_DELAY_SECONDS)
        raise RepositoryError("Failed to acquire PostgreSQL connection from pool")

    @contextmanager
    def _get_connection(self) -> Iterator[extensions.connection]:
        """Borrow a connection from the pool and ensure cleanup."""
        conn = self._acquire_connection()
        broken = False
        try:
            conn.autocommit = False
            yield conn
        except PsycopgError:
            broken = True
            raise
        finally:
            try:
                if conn.get_transaction_status() in (
                    extensions.TRANSACTION_STATUS_INTRANS,
                    extensions.TRANSACTION_STATUS_INERROR,
                ):
                    conn.rollback()
            except PsycopgError:
                broken = True
                logger.warning(
                    "postgres_connection_cleanup_failed",
                    database=self._database,
                    exc_info=True,
                )
            self._pool.putconn(conn, close=broken)

    def _create_schema(self) -> None:
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_SCHEMA_SQL)
                conn.commit()
        except PsycopgError as exc:
            raise RepositoryError(f"Failed to create PostgreSQL schema: {exc}") from exc
        logger.info("postgres_schema_ready", database=self._database)

    def close(self) -> None:
        """Close all connections in the pool."""
        self._pool.closeall()
        logger.info("postgres_pool_closed", database=self._database)
