"""
Configuration for the PlantBuddy client core
============================================
Runtime settings for the transport, session, cache and maintenance layers.
Values are read from ``PLANTBUDDY_*`` environment variables with desktop
friendly defaults. Sets up the logging configuration as well.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field

from plantbuddy.domain.exceptions import ConfigurationError
from plantbuddy.enums.common import EntityKind


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number.") from None


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("PLANTBUDDY_ENV", "development"))
    api_base_url: str = field(default_factory=lambda: os.getenv("PLANTBUDDY_API_URL", "https://pb.mfloto.com/v1/"))

    # Transport
    transport_timeout_seconds: float = field(
        default_factory=lambda: _env_float("PLANTBUDDY_TRANSPORT_TIMEOUT", 10.0)
    )
    transport_max_retries: int = field(default_factory=lambda: _env_int("PLANTBUDDY_TRANSPORT_MAX_RETRIES", 3))
    transport_backoff_base: float = field(
        default_factory=lambda: _env_float("PLANTBUDDY_TRANSPORT_BACKOFF_BASE", 0.25)
    )
    transport_backoff_max: float = field(default_factory=lambda: _env_float("PLANTBUDDY_TRANSPORT_BACKOFF_MAX", 4.0))

    # Entity cache TTLs (seconds). Readings change fastest.
    plant_ttl_seconds: int = field(default_factory=lambda: _env_int("PLANTBUDDY_PLANT_TTL", 60))
    readings_ttl_seconds: int = field(default_factory=lambda: _env_int("PLANTBUDDY_READINGS_TTL", 15))
    user_ttl_seconds: int = field(default_factory=lambda: _env_int("PLANTBUDDY_USER_TTL", 300))
    cache_idle_seconds: int = field(default_factory=lambda: _env_int("PLANTBUDDY_CACHE_IDLE", 600))
    readings_lookback_hours: int = field(default_factory=lambda: _env_int("PLANTBUDDY_READINGS_LOOKBACK_HOURS", 168))

    # Background work
    worker_pool_size: int = field(default_factory=lambda: _env_int("PLANTBUDDY_WORKER_POOL_SIZE", 4))
    maintenance_interval_seconds: float = field(
        default_factory=lambda: _env_float("PLANTBUDDY_MAINTENANCE_INTERVAL", 5.0)
    )
    eventbus_queue_size: int = field(default_factory=lambda: _env_int("PLANTBUDDY_EVENTBUS_QUEUE_SIZE", 256))
    eventbus_worker_count: int = field(default_factory=lambda: _env_int("PLANTBUDDY_EVENTBUS_WORKER_COUNT", 1))

    # Session
    session_refresh_enabled: bool = field(default_factory=lambda: _env_bool("PLANTBUDDY_SESSION_REFRESH", True))
    session_refresh_margin_seconds: int = field(
        default_factory=lambda: _env_int("PLANTBUDDY_SESSION_REFRESH_MARGIN", 60)
    )
    session_default_lifetime_seconds: int = field(
        default_factory=lambda: _env_int("PLANTBUDDY_SESSION_DEFAULT_LIFETIME", 3600)
    )

    # Local files
    data_dir: str = field(
        default_factory=lambda: os.getenv("PLANTBUDDY_DATA_DIR", os.path.join(os.path.expanduser("~"), ".plantbuddy"))
    )
    settings_file: str = field(default_factory=lambda: os.getenv("PLANTBUDDY_SETTINGS_FILE", "settings.json"))
    audit_log_path: str = field(default_factory=lambda: os.getenv("PLANTBUDDY_AUDIT_LOG_PATH", "logs/audit.log"))
    log_level: str = field(default_factory=lambda: os.getenv("PLANTBUDDY_LOG_LEVEL", "INFO"))
    DEBUG: bool = field(default_factory=lambda: _env_bool("PLANTBUDDY_DEBUG", False))

    def ttl_for(self, kind: EntityKind) -> int:
        """Return the TTL policy for an entity kind."""
        if kind in (EntityKind.PLANT, EntityKind.PLANT_INDEX):
            return self.plant_ttl_seconds
        if kind == EntityKind.READINGS:
            return self.readings_ttl_seconds
        return self.user_ttl_seconds


def validate_config(config: AppConfig) -> list[str]:
    """Return a list of configuration problems (empty when valid)."""
    problems = []
    for name in ("plant_ttl_seconds", "readings_ttl_seconds", "user_ttl_seconds", "cache_idle_seconds"):
        if getattr(config, name) <= 0:
            problems.append(f"{name} must be positive")
    if config.worker_pool_size < 1:
        problems.append("worker_pool_size must be at least 1")
    if config.transport_timeout_seconds <= 0:
        problems.append("transport_timeout_seconds must be positive")
    if config.transport_max_retries < 0:
        problems.append("transport_max_retries cannot be negative")
    if not config.api_base_url.startswith(("http://", "https://")):
        problems.append("api_base_url must be an http(s) URL")
    return problems


def setup_logging(debug: bool = False, log_file: str | None = "logs/plantbuddy.log") -> None:
    """Setup logging configuration."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)

    # create_client may run more than once per process (tests, re-login)
    has_console = any(getattr(h, "name", "") == "plantbuddy_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "plantbuddy_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "plantbuddy_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if log_file and not has_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.name = "plantbuddy_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"plantbuddy_console", "plantbuddy_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    # requests' connection pool is chatty on every retry
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    config = AppConfig()
    problems = validate_config(config)
    if problems:
        raise ConfigurationError("Invalid configuration: " + "; ".join(problems), detail={"problems": problems})
    return config
