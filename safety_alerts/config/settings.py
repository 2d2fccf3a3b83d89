"""Application settings with Pydantic Settings validation.

Secrets (API tokens, database password) are loaded from the environment/.env.
Non-sensitive configuration is loaded from config/*.yaml files, which are
merged and validated against JSON schemas in config/schemas/.
"""

import json
from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.delivery_constants import (
    DISPLAY_TIMEZONE_DEFAULT,
    HOUSEKEEPING_INTERVAL_MINUTES_DEFAULT,
    MEDIA_LOOKUP_WINDOW_MINUTES_DEFAULT,
    MEDIA_MAX_WAIT_MINUTES_DEFAULT,
    MEDIA_READY_DELAY_MINUTES_DEFAULT,
    RETENTION_DAYS_DEFAULT,
    SAFETY_FETCH_LIMIT_DEFAULT,
    SAFETY_LOOKBACK_MINUTES_DEFAULT,
    SPEEDING_BUFFER_MINUTES_DEFAULT,
    SPEEDING_CHUNK_SIZE_DEFAULT,
    SPEEDING_EXPANSION_HOURS_DEFAULT,
    SPEEDING_OVER_THRESHOLD_MPH_DEFAULT,
    SPEEDING_WINDOW_HOURS_DEFAULT,
    TICK_INTERVAL_SECONDS_DEFAULT,
    VIDEO_DOWNLOAD_MAX_SIZE_MB_DEFAULT,
    VIDEO_DOWNLOAD_TIMEOUT_MS_DEFAULT,
)
from safety_alerts.domain.models import RouteConfig
from safety_alerts.domain.reminder_messages import (
    PTI_REMINDER_TIMES_DEFAULT,
    PTI_REMINDER_TIMEZONE_DEFAULT,
)

POSTGRES_MIN_CONNECTIONS_DEFAULT: Final[int] = 1
POSTGRES_MAX_CONNECTIONS_DEFAULT: Final[int] = 5
POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT: Final[int] = 10_000
POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT: Final[int] = 10
POSTGRES_APPLICATION_NAME_DEFAULT: Final[str] = "safety_alerts"

SAMSARA_BASE_URL_DEFAULT: Final[str] = "https://api.samsara.com"
SAMSARA_PAGE_LIMIT_DEFAULT: Final[int] = 100
SAMSARA_MAX_PAGES_DEFAULT: Final[int] = 100
SAMSARA_TIMEOUT_SECONDS_DEFAULT: Final[float] = 30.0
VEHICLE_CACHE_TTL_SECONDS_DEFAULT: Final[int] = 600

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, ``override`` taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/.

    Args:
        schema_name: Schema name without extension (e.g., "main")

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = Path("config/schemas") / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any], schema_name: str, file_path: str = ""
) -> None:
    """Validate a config section against its JSON Schema.

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return loaded


def load_all_configs() -> dict[str, Any]:
    """Load and merge all YAML configs from the config/ directory.

    Loading order (later overrides earlier):
    1. config/main.yaml
    2. All other config/*.yaml files (sorted alphabetically)

    Each file is validated against config/schemas/<stem>.schema.json when present.
    """
    merged_config: dict[str, Any] = {}
    config_dir = Path("config")
    if not config_dir.is_dir():
        logger.info("config_load_complete", file_count=0)
        return merged_config

    main_path = config_dir / "main.yaml"
    yaml_files = sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")
    ordered = ([main_path] if main_path.exists() else []) + yaml_files

    for yaml_file in ordered:
        schema_name = yaml_file.stem
        try:
            file_config = _read_yaml(yaml_file)
            validate_config_section(file_config, schema_name, str(yaml_file))
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(yaml_file),
                schema=schema_name,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(yaml_file), schema=schema_name)

    logger.info("config_load_complete", file_count=len(ordered))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from the environment or .env file.
    Everything else comes from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    samsara_api_token: SecretStr = Field(
        ..., description="Fleet telemetry API bearer token (from .env)"
    )
    telegram_bot_token: SecretStr = Field(
        ..., description="Telegram bot token used for alert delivery (from .env)"
    )
    postgres_password: SecretStr | None = Field(
        default=None, description="PostgreSQL password (from .env, optional)"
    )

    @field_validator("samsara_api_token", "telegram_bot_token", mode="before")
    @classmethod
    def _ensure_secret(
        cls, value: SecretStr | str | None, info: ValidationInfo
    ) -> SecretStr:
        if value is None:
            raise ValueError(f"{info.field_name} must be provided")

        if isinstance(value, SecretStr):
            secret_value = value.get_secret_value()
        else:
            secret_value = str(value)

        if not secret_value.strip():
            raise ValueError(f"{info.field_name} must not be empty")

        return value if isinstance(value, SecretStr) else SecretStr(secret_value)

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced values without overriding env/constructor values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        samsara_config = config.get("samsara") or {}
        _assign("samsara_base_url", samsara_config.get("base_url"))
        _assign("samsara_timeout_seconds", samsara_config.get("timeout_seconds"))
        _assign("samsara_page_limit", samsara_config.get("page_limit"))
        _assign("samsara_max_pages", samsara_config.get("max_pages"))

        safety_config = config.get("safety") or {}
        _assign("safety_lookback_minutes", safety_config.get("lookback_minutes"))
        _assign("safety_fetch_limit", safety_config.get("fetch_limit"))

        speeding_config = config.get("speeding") or {}
        _assign("speeding_window_hours", speeding_config.get("window_hours"))
        _assign("speeding_buffer_minutes", speeding_config.get("buffer_minutes"))
        _assign("speeding_chunk_size", speeding_config.get("chunk_size"))
        _assign(
            "speeding_over_threshold_mph", speeding_config.get("over_threshold_mph")
        )
        _assign("speeding_expansion_hours", speeding_config.get("expansion_hours"))

        vehicles_config = config.get("vehicles") or {}
        _assign("vehicle_cache_ttl_seconds", vehicles_config.get("cache_ttl_seconds"))
        asset_ids = vehicles_config.get("asset_ids")
        if isinstance(asset_ids, list):
            _assign("vehicle_asset_ids", [str(asset_id) for asset_id in asset_ids])

        media_config = config.get("media") or {}
        _assign("media_ready_delay_minutes", media_config.get("ready_delay_minutes"))
        _assign("media_max_wait_minutes", media_config.get("max_wait_minutes"))
        _assign(
            "media_lookup_window_minutes", media_config.get("lookup_window_minutes")
        )
        _assign(
            "allow_text_without_video", media_config.get("allow_text_without_video")
        )
        _assign(
            "video_download_max_size_mb", media_config.get("download_max_size_mb")
        )
        _assign("video_download_timeout_ms", media_config.get("download_timeout_ms"))

        delivery_config = config.get("delivery") or {}
        _assign("dry_run", delivery_config.get("dry_run"))
        _assign("display_timezone", delivery_config.get("display_timezone"))
        _assign(
            "telegram_send_timeout_seconds",
            delivery_config.get("send_timeout_seconds"),
        )

        scheduler_config = config.get("scheduler") or {}
        _assign("tick_interval_seconds", scheduler_config.get("tick_interval_seconds"))
        _assign(
            "housekeeping_interval_minutes",
            scheduler_config.get("housekeeping_interval_minutes"),
        )
        _assign("retention_days", scheduler_config.get("retention_days"))

        reminders_config = config.get("reminders") or {}
        _assign("pti_reminders_enabled", reminders_config.get("enabled"))
        _assign("pti_reminder_times", reminders_config.get("times"))
        _assign("pti_reminder_timezone", reminders_config.get("timezone"))

        database_config = config.get("database") or {}
        _assign("database_type", database_config.get("type"))
        _assign("db_path", database_config.get("path"))

        postgres_config = database_config.get("postgres") or {}
        _assign("postgres_host", postgres_config.get("host"))
        _assign("postgres_port", postgres_config.get("port"))
        _assign("postgres_database", postgres_config.get("database"))
        _assign("postgres_user", postgres_config.get("user"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))

        metrics_config = config.get("metrics") or {}
        _assign("metrics_enabled", metrics_config.get("enabled"))
        _assign("metrics_port", metrics_config.get("port"))

        routes_config = config.get("routes")
        if isinstance(routes_config, list):
            _assign("routes", [RouteConfig(**route) for route in routes_config])

    # Telemetry API
    samsara_base_url: str = Field(
        default=SAMSARA_BASE_URL_DEFAULT, description="Telemetry API base URL"
    )
    samsara_timeout_seconds: float = Field(
        default=SAMSARA_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        description="Client-side timeout for every telemetry request",
    )
    samsara_page_limit: int = Field(
        default=SAMSARA_PAGE_LIMIT_DEFAULT, ge=1, description="Records per page"
    )
    samsara_max_pages: int = Field(
        default=SAMSARA_MAX_PAGES_DEFAULT,
        ge=1,
        description="Pagination ceiling per asset-id chunk",
    )

    # Discrete safety events
    safety_lookback_minutes: int = Field(
        default=SAFETY_LOOKBACK_MINUTES_DEFAULT,
        ge=1,
        description="Lookback for the safety event fetch",
    )
    safety_fetch_limit: int = Field(
        default=SAFETY_FETCH_LIMIT_DEFAULT, ge=1, description="Safety event page limit"
    )

    # Speeding intervals
    speeding_window_hours: int = Field(
        default=SPEEDING_WINDOW_HOURS_DEFAULT,
        ge=1,
        description="Sliding window size for speeding intervals (hours)",
    )
    speeding_buffer_minutes: int = Field(
        default=SPEEDING_BUFFER_MINUTES_DEFAULT,
        ge=0,
        description="Extra lookback added to the sliding window (minutes)",
    )
    speeding_chunk_size: int = Field(
        default=SPEEDING_CHUNK_SIZE_DEFAULT,
        ge=1,
        description="Maximum asset ids per speeding-interval query",
    )
    speeding_over_threshold_mph: float = Field(
        default=SPEEDING_OVER_THRESHOLD_MPH_DEFAULT,
        ge=0,
        description="Minimum mph over the posted limit for an interval to alert",
    )
    speeding_expansion_hours: list[int] = Field(
        default_factory=lambda: list(SPEEDING_EXPANSION_HOURS_DEFAULT),
        description="Symmetric widening steps for the expanding search (hours)",
    )

    # Vehicle directory
    vehicle_cache_ttl_seconds: int = Field(
        default=VEHICLE_CACHE_TTL_SECONDS_DEFAULT,
        ge=0,
        description="Vehicle roster cache TTL",
    )
    vehicle_asset_ids: list[str] = Field(
        default_factory=list,
        description="Static asset id override replacing live discovery",
    )

    # Media readiness and fallback download
    media_ready_delay_minutes: int = Field(
        default=MEDIA_READY_DELAY_MINUTES_DEFAULT,
        ge=0,
        description="Grace period before attempting a safety event delivery",
    )
    media_max_wait_minutes: int = Field(
        default=MEDIA_MAX_WAIT_MINUTES_DEFAULT,
        ge=0,
        description="Age after which a video-less event is sent as text",
    )
    media_lookup_window_minutes: int = Field(
        default=MEDIA_LOOKUP_WINDOW_MINUTES_DEFAULT,
        ge=1,
        description="Half-width of the media resolver lookup window",
    )
    allow_text_without_video: bool = Field(
        default=False,
        description="Send text immediately after the grace period when no video exists",
    )
    video_download_max_size_mb: int = Field(
        default=VIDEO_DOWNLOAD_MAX_SIZE_MB_DEFAULT,
        ge=1,
        description="Size cap for the download-and-upload fallback",
    )
    video_download_timeout_ms: int = Field(
        default=VIDEO_DOWNLOAD_TIMEOUT_MS_DEFAULT,
        ge=1,
        description="Timeout for the download-and-upload fallback",
    )

    # Delivery
    dry_run: bool = Field(
        default=False, description="Log messages instead of sending them"
    )
    display_timezone: str = Field(
        default=DISPLAY_TIMEZONE_DEFAULT,
        description="Timezone used for times shown in alert messages",
    )
    telegram_send_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Timeout for a single transport call"
    )
    routes: list[RouteConfig] = Field(
        default_factory=list,
        description="Vehicle to chat routing table (loaded from config/routes.yaml)",
    )

    # Scheduler
    tick_interval_seconds: int = Field(
        default=TICK_INTERVAL_SECONDS_DEFAULT, ge=1, description="Driver loop period"
    )
    housekeeping_interval_minutes: int = Field(
        default=HOUSEKEEPING_INTERVAL_MINUTES_DEFAULT,
        ge=1,
        description="Ledger purge period",
    )
    retention_days: int = Field(
        default=RETENTION_DAYS_DEFAULT,
        ge=1,
        description="Delivery ledger retention horizon",
    )

    # PTI reminders
    pti_reminders_enabled: bool = Field(
        default=True, description="Send the daily PTI reminder to every routed chat"
    )
    pti_reminder_times: list[str] = Field(
        default_factory=lambda: list(PTI_REMINDER_TIMES_DEFAULT),
        description="Local times of day (HH:MM) for the PTI reminder",
    )
    pti_reminder_timezone: str = Field(
        default=PTI_REMINDER_TIMEZONE_DEFAULT,
        description="Timezone the reminder times are expressed in",
    )

    # Database configuration
    database_type: Literal["sqlite", "postgres"] = Field(
        default="sqlite", description="Database type: sqlite or postgres"
    )
    db_path: str = Field(
        default="data/safety_alerts.db", description="SQLite database path"
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_database: str = Field(
        default="safety_alerts", description="PostgreSQL database name"
    )
    postgres_user: str = Field(default="postgres", description="PostgreSQL user")
    postgres_min_connections: int = Field(
        default=POSTGRES_MIN_CONNECTIONS_DEFAULT,
        description="Minimum number of connections in PostgreSQL pool",
    )
    postgres_max_connections: int = Field(
        default=POSTGRES_MAX_CONNECTIONS_DEFAULT,
        description="Maximum number of connections in PostgreSQL pool",
    )
    postgres_statement_timeout_ms: int = Field(
        default=POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT,
        description="PostgreSQL statement timeout in milliseconds",
    )
    postgres_connect_timeout_seconds: int = Field(
        default=POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT,
        description="PostgreSQL connection timeout in seconds",
    )
    postgres_application_name: str = Field(
        default=POSTGRES_APPLICATION_NAME_DEFAULT,
        description="Application name for PostgreSQL connections",
    )
    postgres_ssl_mode: str | None = Field(
        default=None,
        description="Optional SSL mode for PostgreSQL connections (e.g., require)",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    metrics_enabled: bool = Field(
        default=False, description="Start the Prometheus exporter in the runner"
    )
    metrics_port: int = Field(default=9000, description="Prometheus exporter port")

    @field_validator("pti_reminder_times")
    @classmethod
    def validate_reminder_times(cls, v: list[str]) -> list[str]:
        for value in v:
            hours, sep, minutes = value.partition(":")
            if not (sep and hours.isdigit() and minutes.isdigit()):
                raise ValueError(f"Reminder time {value!r} must be HH:MM")
            if int(hours) > 23 or int(minutes) > 59:
                raise ValueError(f"Reminder time {value!r} is out of range")
        return v

    @field_validator("routes", mode="before")
    @classmethod
    def validate_routes(cls, v: Any) -> list[RouteConfig]:
        """Accept raw dictionaries as well as parsed route configs."""
        if isinstance(v, list):
            return [
                route if isinstance(route, RouteConfig) else RouteConfig(**route)
                for route in v
            ]
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings
