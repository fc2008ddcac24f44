"""Settings module for dynconf."""

import os
from urllib.parse import urlsplit, urlunsplit

from dynconf.database.postgres import PostgresConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class RedisConfig:
    """Redis configuration."""

    def __init__(
        self,
        url: str | None = None,
        stream: str | None = None,
        consumer_group: str | None = None,
    ) -> None:
        self.url = url or self._read_url()
        self.stream = stream or os.getenv("CONFIG_UPDATES_STREAM", "config-updates")
        self.consumer_group = consumer_group or f"dynconf-{os.getenv('ENVIRONMENT', 'dev')}"
        self.stream_maxlen = int(os.getenv("CONFIG_UPDATES_MAXLEN", "10000"))
        self.connect_timeout = 5
        self.socket_timeout = 10

    def _read_url(self) -> str | None:
        """Read Redis url from Docker secret or environment."""
        secret_path = "/run/secrets/messenger_url"
        try:
            with open(secret_path) as f:
                return f.read().strip() or None
        except FileNotFoundError:
            return os.getenv("MESSENGER_URL") or None

    @property
    def is_configured(self) -> bool:
        """Messenger is optional: without a url no outbox is drained."""
        return bool(self.url)

    @property
    def safe_url(self) -> str:
        """Url without password, for logs."""
        if not self.url:
            return ""
        parts = urlsplit(self.url)
        if parts.password is None:
            return self.url
        netloc = parts.hostname or ""
        if parts.port:
            netloc = f"{netloc}:{parts.port}"
        if parts.username:
            netloc = f"{parts.username}:***@{netloc}"
        else:
            netloc = f":***@{netloc}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class ReaderConfig:
    """Refresh, circuit breaker and outbox tuning."""

    def __init__(
        self,
        application_name: str | None = None,
        refresh_interval_ms: int | None = None,
        failure_threshold: int | None = None,
        cooldown_seconds: float | None = None,
        outbox_retention_seconds: float | None = None,
        store_timeout_seconds: float | None = None,
    ) -> None:
        self.application_name = application_name or os.getenv("APPLICATION_NAME", "SERVICE-A")
        self.refresh_interval_ms = (
            refresh_interval_ms
            if refresh_interval_ms is not None
            else int(os.getenv("REFRESH_INTERVAL_MS", "60000"))
        )
        self.failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5"))
        )
        self.cooldown_seconds = (
            cooldown_seconds
            if cooldown_seconds is not None
            else float(os.getenv("CIRCUIT_COOLDOWN_SECONDS", "30"))
        )
        # 0 - не удалять опубликованные записи
        self.outbox_retention_seconds = (
            outbox_retention_seconds
            if outbox_retention_seconds is not None
            else float(os.getenv("OUTBOX_RETENTION_SECONDS", "0"))
        )
        # 0 - без таймаута на выборку из store
        self.store_timeout_seconds = (
            store_timeout_seconds
            if store_timeout_seconds is not None
            else float(os.getenv("STORE_TIMEOUT_SECONDS", "0"))
        )

        if self.refresh_interval_ms <= 0:
            raise ValueError("refresh_interval_ms must be positive")

    @property
    def refresh_interval(self) -> float:
        """Refresh interval in seconds."""
        return self.refresh_interval_ms / 1000.0


class Settings:
    """Application settings."""

    def __init__(self) -> None:
        # Service info
        self.environment = os.getenv("ENVIRONMENT", "dev")
        self.service_name = os.getenv("SERVICE_NAME", "dynconf")
        self.service_version = os.getenv("SERVICE_VERSION", "0.1.0")
        self.log_level = os.getenv("LOG_LEVEL", "debug")
        self.log_to_db = _env_bool("LOG_TO_DB", True)

        # PostgreSQL
        self.postgres = PostgresConfig()

        # Redis (optional)
        self.redis = RedisConfig()

        # Refresh / circuit breaker / outbox
        self.reader = ReaderConfig()
