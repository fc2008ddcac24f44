"""
ConfigurationReader - dynamic configuration for one application.

Keeps an in-memory snapshot of the application's active configuration
records, refreshed on a fixed interval, and announces changes through the
outbox. Refresh and drain share one lock, so at most one store fetch and
one drain pass are in flight per reader; the circuit breaker guards the
refresh. Failures in either go to the error sink and never reach the
caller; the last good snapshot keeps being served.
"""

import asyncio
import copy
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import psycopg2

from dynconf.cache.snapshot import ConfigCache, build_snapshot
from dynconf.config.settings import ReaderConfig, RedisConfig
from dynconf.database.postgres import PostgresClient, PostgresConfig
from dynconf.domain.config import (
    ConfigurationRecord,
    ConfigurationRecordDto,
    ConfigValue,
)
from dynconf.domain.errors import (
    CircuitOpenError,
    DuplicateConfigError,
    InvalidArgumentError,
    StorageUnavailableError,
)
from dynconf.domain.outbox import OutboxRecord
from dynconf.events.client import RedisClient
from dynconf.logger.error_sink import ErrorSink
from dynconf.logger.logger import Logger, get_logger
from dynconf.logger.postgres_writer import PostgresWriter
from dynconf.logger.types import Category, duration_ms, param
from dynconf.outbox.publisher import DrainResult, OutboxPublisher
from dynconf.repository.config_repository import ConfigRepository
from dynconf.repository.outbox_repository import OutboxRepository
from dynconf.resilience.circuit_breaker import CircuitBreaker, CircuitState
from dynconf.scheduler.refresh_loop import RefreshLoop

T = TypeVar("T")


class ConfigurationReader:
    """
    Typed, periodically refreshed configuration for one application.

    Example:
        >>> reader = await ConfigurationReader.create(
        ...     "SERVICE-A",
        ...     "postgresql://dynconf@localhost/configuration",
        ...     refresh_interval_ms=60000,
        ...     messenger_url="redis://localhost:6379/0",
        ... )
        >>> reader.get_value("MaxItemCount", int)
        50
        >>> await reader.publish_config_change("MaxItemCount", "60")
        >>> await reader.close()
    """

    def __init__(
        self,
        application_name: str,
        connection_string: str | None,
        refresh_interval_ms: int,
        messenger_url: str | None = None,
        *,
        reader_config: ReaderConfig | None = None,
        redis_config: RedisConfig | None = None,
        postgres: PostgresClient | None = None,
        config_repository: ConfigRepository | None = None,
        outbox_repository: OutboxRepository | None = None,
        redis_client: RedisClient | None = None,
        error_sink: ErrorSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize ConfigurationReader. No I/O happens until start().

        Args:
            application_name: Application whose records are cached
            connection_string: PostgreSQL DSN or postgresql:// URL
            refresh_interval_ms: Refresh interval in milliseconds
            messenger_url: Redis url; None disables the outbox drain
            reader_config: Breaker / retention / timeout tuning
            redis_config: Stream name and limits
            postgres: Pre-built PostgreSQL client
            config_repository: Pre-built configuration repository
            outbox_repository: Pre-built outbox repository
            redis_client: Pre-built Redis client (enables the drain)
            error_sink: Pre-built error sink
            clock: Monotonic clock for the circuit breaker
        """
        if not application_name:
            raise InvalidArgumentError("application_name is required", "application_name")
        if refresh_interval_ms <= 0:
            raise InvalidArgumentError(
                "refresh_interval_ms must be positive", "refresh_interval_ms"
            )

        self.application_name = application_name
        # Копия: переданный ReaderConfig может быть общим (settings.reader)
        self.config = (
            copy.copy(reader_config)
            if reader_config is not None
            else ReaderConfig(
                application_name=application_name,
                refresh_interval_ms=refresh_interval_ms,
            )
        )
        self.config.application_name = application_name
        self.config.refresh_interval_ms = refresh_interval_ms
        self.logger = get_logger().with_category(Category.CACHE).with_fields(
            param("application_name", application_name)
        )

        self.postgres = postgres or PostgresClient(
            PostgresConfig(connection_string=connection_string)
        )
        self.config_repository = config_repository or ConfigRepository(self.postgres)
        self.outbox_repository = outbox_repository or OutboxRepository(self.postgres)

        # Свой writer для system_log, если сервис не настроил глобальный
        self._own_writer: PostgresWriter | None = None
        if error_sink is None:
            sink_logger = get_logger()
            if sink_logger.writer is None:
                self._own_writer = PostgresWriter(self.postgres.config.dsn)
                sink_logger = Logger(
                    sink_logger.service_name,
                    sink_logger.environment,
                    self._own_writer,
                    sink_logger.level,
                )
            error_sink = ErrorSink(sink_logger, Category.CACHE)
        self.error_sink = error_sink

        if redis_config is None:
            redis_config = RedisConfig()
            redis_config.url = messenger_url
        elif messenger_url:
            redis_config.url = messenger_url
        if redis_client is None and redis_config.is_configured:
            redis_client = RedisClient(redis_config)
        self.redis_client = redis_client

        self.publisher = OutboxPublisher(
            application_name=application_name,
            repository=self.outbox_repository,
            redis_client=redis_client,  # type: ignore[arg-type]
            error_sink=error_sink,
            stream=redis_config.stream,
            retention_seconds=self.config.outbox_retention_seconds,
        )

        self.cache = ConfigCache(application_name)
        self.breaker = CircuitBreaker(
            name=f"config-refresh:{application_name}",
            failure_threshold=self.config.failure_threshold,
            cooldown_seconds=self.config.cooldown_seconds,
            clock=clock,
        )
        self._scheduler = RefreshLoop(
            self.config.refresh_interval,
            self._scheduled_refresh,
            name=application_name,
        )

        # Single-flight: refresh и drain никогда не выполняются параллельно
        self._unit_lock = asyncio.Lock()
        self.last_drain: DrainResult | None = None
        # Выборка, пережившая таймаут; новые refresh ждут её, а не запускают свою
        self._pending_fetch: asyncio.Future[list[ConfigurationRecord]] | None = None
        self._started = False
        self._closed = False

    @classmethod
    async def create(
        cls,
        application_name: str,
        connection_string: str | None,
        refresh_interval_ms: int,
        messenger_url: str | None = None,
        **kwargs: Any,
    ) -> "ConfigurationReader":
        """Build a reader and run its first refresh before returning."""
        reader = cls(
            application_name,
            connection_string,
            refresh_interval_ms,
            messenger_url,
            **kwargs,
        )
        await reader.start()
        return reader

    @property
    def broker_enabled(self) -> bool:
        """Whether outbox records are drained to the messenger."""
        return self.redis_client is not None

    @property
    def circuit_state(self) -> CircuitState:
        return self.breaker.state

    async def start(self) -> None:
        """
        Run the first refresh and start the refresh loop.

        Returns once the first attempt finished, even if storage or the
        messenger are unreachable; the cache is then simply empty.
        """
        if self._started:
            return
        self._ensure_open()
        self._started = True

        if self._own_writer is not None:
            try:
                await asyncio.to_thread(self._own_writer.connect)
                self._own_writer.start()
            except Exception as e:
                # writer без соединения пишет в stderr
                self.logger.warn("System log writer unavailable", param("error", str(e)))

        if self.redis_client is not None:
            try:
                await self.redis_client.connect(max_retries=1)
            except Exception as e:
                self.error_sink.log("Failed to connect to messenger.", e)

        await self.refresh()
        self._scheduler.start()

        self.logger.info(
            "Configuration reader started",
            param("keys", len(self.cache)),
            param("refresh_interval_ms", self.config.refresh_interval_ms),
            param("broker_enabled", self.broker_enabled),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_value(self, key: str, expected_type: type[T] | None = None) -> Any:
        """
        Get a typed value from the current snapshot.

        Args:
            key: Configuration name
            expected_type: Optional type the value must have

        Raises:
            ConfigNotFoundError: If the key is not in the snapshot
            TypeMismatchError: If the value is of another type
        """
        return self.cache.get(key, expected_type)

    def snapshot(self) -> Mapping[str, ConfigValue]:
        """Current read-only snapshot."""
        return self.cache.snapshot()

    # ------------------------------------------------------------------
    # Refresh / drain
    # ------------------------------------------------------------------

    async def refresh(self) -> bool:
        """
        Run one guarded refresh+drain unit now.

        A drain failing after the reload still counts as a breaker failure
        and goes to the error sink, but does not undo the reload.

        Returns:
            True if the snapshot was reloaded; always False after close()
        """
        async with self._unit_lock:
            if self._closed:
                return False
            version = self.cache.version
            await self._guarded(self._refresh_unit, "configuration load")
            return self.cache.version != version

    async def _scheduled_refresh(self) -> None:
        # Тик таймера во время выполняющегося refresh просто пропускается
        if self._unit_lock.locked():
            self.logger.debug("Refresh already in progress, tick coalesced")
            return
        await self.refresh()

    async def _guarded(self, unit: Callable[[], Awaitable[Any]], action: str) -> None:
        try:
            await self.breaker.call(unit)
        except CircuitOpenError as e:
            self.error_sink.log(
                f"Circuit breaker is activated, skipping {action}.",
                e,
                param("retry_after", round(e.retry_after, 3)),
            )
        except Exception as e:
            self.error_sink.log(
                f"{action.capitalize()} failed.",
                e,
                param("application_name", self.application_name),
                param("failure_count", self.breaker.failure_count),
            )

    async def _refresh_unit(self) -> None:
        started = time.monotonic()
        records = await self._fetch_active()

        snapshot, duplicates = build_snapshot(records)
        if duplicates:
            self.logger.warn(
                "Duplicate active records, most recently updated wins",
                param("names", duplicates),
            )

        version = self.cache.replace(snapshot)
        self.logger.debug(
            "Configuration loaded",
            param("keys", len(snapshot)),
            param("version", version),
            duration_ms(int((time.monotonic() - started) * 1000)),
        )

        if self.broker_enabled:
            await self._drain_unit()

    async def _fetch_active(self) -> list[ConfigurationRecord]:
        # Поток выборки нельзя прервать по таймауту, поэтому выборка одна:
        # следующий refresh ждёт ту же самую, пока она не завершится
        fetch = self._pending_fetch
        if fetch is None:
            fetch = asyncio.ensure_future(
                asyncio.to_thread(self.config_repository.find_active, self.application_name)
            )
            fetch.add_done_callback(self._fetch_done)
            self._pending_fetch = fetch
        else:
            self.logger.debug("Previous store fetch still running, waiting on it")

        try:
            if self.config.store_timeout_seconds > 0:
                return await asyncio.wait_for(
                    asyncio.shield(fetch), self.config.store_timeout_seconds
                )
            return await asyncio.shield(fetch)
        except psycopg2.Error as e:
            raise StorageUnavailableError(str(e), operation="find_active") from e
        except asyncio.TimeoutError as e:
            raise StorageUnavailableError(
                f"timed out after {self.config.store_timeout_seconds}s",
                operation="find_active",
            ) from e

    def _fetch_done(self, fetch: "asyncio.Future[list[ConfigurationRecord]]") -> None:
        if self._pending_fetch is fetch:
            self._pending_fetch = None
        if not fetch.cancelled():
            # результат или ошибку уже забрал refresh, если он дождался
            fetch.exception()

    async def drain_outbox(self) -> DrainResult | None:
        """
        Drain the outbox now, queued behind any running refresh.

        The drain bypasses the circuit breaker, which only tracks the
        configuration fetch: a working outbox table must not reset its
        failure count or use up its half-open trial.

        Returns:
            DrainResult, or None if the messenger is disabled, the reader is
            closed or the drain failed
        """
        if not self.broker_enabled:
            return None

        async with self._unit_lock:
            if self._closed:
                return None
            try:
                await self._drain_unit()
            except Exception as e:
                self.error_sink.log(
                    "Outbox drain failed.",
                    e,
                    param("application_name", self.application_name),
                )
                return None
        return self.last_drain

    async def _drain_unit(self) -> None:
        self.last_drain = await self.publisher.drain()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def publish_config_change(self, key: str, new_value: str) -> OutboxRecord:
        """
        Record a change notification and drain the outbox.

        The outbox insert is the caller's own write, so its failure
        propagates. Messenger failures never do: the record stays pending
        and is retried by the next drain.

        Args:
            key: Configuration name
            new_value: New value (string encoded)

        Returns:
            The stored outbox record
        """
        self._ensure_open()
        if not key:
            raise InvalidArgumentError("key is required", "key")
        if new_value is None:
            raise InvalidArgumentError("new_value is required", "new_value")

        record = await self.publisher.enqueue(key, str(new_value))

        if self.broker_enabled:
            await self.drain_outbox()
        else:
            self.logger.debug(
                "Messenger disabled, outbox record left pending",
                param("outbox_id", record.id),
                param("key", key),
            )
        return record

    async def add_config_record(self, dto: ConfigurationRecordDto | None) -> int:
        """
        Insert a new configuration record.

        Raises:
            InvalidArgumentError: If dto is missing or incomplete
            DuplicateConfigError: If an active record with the same name exists
        """
        self._ensure_open()
        dto = self._validate_dto(dto)

        if dto.is_active:
            await self._ensure_no_active_duplicate(dto, exclude_id=None)

        record = dto.to_record()
        return await asyncio.to_thread(self.config_repository.insert, record)

    async def update_config_record(self, dto: ConfigurationRecordDto | None) -> bool:
        """
        Replace a configuration record by id. Last writer wins.

        Returns:
            True if a record with dto.id existed and was replaced

        Raises:
            InvalidArgumentError: If dto is missing or has no id
            DuplicateConfigError: If the record would duplicate another active one
        """
        self._ensure_open()
        dto = self._validate_dto(dto)
        if dto.id is None:
            raise InvalidArgumentError("dto.id is required for update", "dto.id")

        if dto.is_active:
            await self._ensure_no_active_duplicate(dto, exclude_id=dto.id)

        record = dto.to_record()
        return await asyncio.to_thread(self.config_repository.replace_by_id, dto.id, record)

    async def get_all(
        self,
        predicate: Callable[[ConfigurationRecord], bool] | None = None,
        **filters: Any,
    ) -> tuple[ConfigurationRecord, ...]:
        """Query configuration records directly from the store."""
        self._ensure_open()
        return await asyncio.to_thread(self.config_repository.find, predicate, **filters)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("ConfigurationReader is closed")

    @staticmethod
    def _validate_dto(dto: ConfigurationRecordDto | None) -> ConfigurationRecordDto:
        if dto is None:
            raise InvalidArgumentError("configuration record is required", "dto")
        if not dto.application_name:
            raise InvalidArgumentError("application_name is required", "dto.application_name")
        if not dto.name:
            raise InvalidArgumentError("name is required", "dto.name")
        if dto.value is None:
            raise InvalidArgumentError("value is required", "dto.value")
        return dto

    async def _ensure_no_active_duplicate(
        self, dto: ConfigurationRecordDto, exclude_id: int | None
    ) -> None:
        # Проверка не атомарна с записью: два одновременных insert могут пройти оба
        existing = await asyncio.to_thread(
            self.config_repository.find_active_duplicate,
            dto.application_name,
            dto.name,
            exclude_id,
        )
        if existing is not None:
            raise DuplicateConfigError(dto.application_name, dto.name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop refreshing and release connections. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        await self._scheduler.stop()

        # Дожидаемся текущего refresh/drain, чтобы не закрыть соединения под ним
        async with self._unit_lock:
            if self.redis_client is not None:
                await self._release("messenger", self.redis_client.close)
            await self._release("store", self.postgres.close)

        if self._own_writer is not None:
            await self._release("system log writer", self._own_writer.close)

        self.logger.info("Configuration reader closed")

    async def _release(self, resource: str, close: Callable[[], Awaitable[None]]) -> None:
        try:
            await close()
        except Exception as e:
            self.logger.warn(f"Failed to close {resource}", param("error", str(e)))

    async def __aenter__(self) -> "ConfigurationReader":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
