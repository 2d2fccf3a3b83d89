"""Factory for creating ledger store instances."""

from safety_alerts.adapters.postgres_ledger_store import PostgresLedgerStore
from safety_alerts.adapters.sqlite_ledger_store import SQLiteLedgerStore
from safety_alerts.config.logging_config import get_logger
from safety_alerts.config.settings import Settings
from safety_alerts.domain.exceptions import ConfigurationError
from safety_alerts.domain.protocols import LedgerStoreProtocol

logger = get_logger(__name__)


def create_ledger_store(settings: Settings) -> LedgerStoreProtocol:
    """Create the ledger store selected by ``settings.database_type``.

    Raises:
        ConfigurationError: If the backend is unknown or misconfigured
        RepositoryError: On connection or schema errors
    """
    if settings.database_type == "sqlite":
        logger.info("ledger_sqlite_selected", path=settings.db_path)
        return SQLiteLedgerStore(db_path=settings.db_path)

    if settings.database_type == "postgres":
        if not settings.postgres_password:
            raise ConfigurationError(
                "POSTGRES_PASSWORD environment variable must be set "
                "when using PostgreSQL"
            )

        logger.info(
            "ledger_postgres_selected",
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_database,
            user=settings.postgres_user,
        )
        return PostgresLedgerStore(
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_database,
            user=settings.postgres_user,
            password=settings.postgres_password.get_secret_value(),
            min_connections=settings.postgres_min_connections,
            max_connections=settings.postgres_max_connections,
            statement_timeout_ms=settings.postgres_statement_timeout_ms,
            connect_timeout_seconds=settings.postgres_connect_timeout_seconds,
            application_name=settings.postgres_application_name,
            ssl_mode=settings.postgres_ssl_mode,
        )

    raise ConfigurationError(
        f"Unsupported database type: {settings.database_type}. "
        "Must be 'sqlite' or 'postgres'"
    )
