"""Redis Streams connection used to publish and consume change events."""

import asyncio
import contextlib
from typing import TYPE_CHECKING

import redis.asyncio as redis_async
from redis.asyncio.client import Redis

from dynconf.domain.errors import BrokerPublishError
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param

if TYPE_CHECKING:
    from dynconf.config.settings import RedisConfig

MAX_BACKOFF = 30.0


class RedisClient:
    """
    Owns the redis.asyncio client for one RedisConfig.

    The client is built lazily: get_redis() hands out a client even when
    connect() was never called or failed, and redis-py opens the socket on
    the first command. After close() only connect() builds a new one.
    """

    def __init__(self, config: "RedisConfig") -> None:
        self.config = config
        self.redis: Redis | None = None
        self._closed = False
        self.logger = get_logger().with_category(Category.MESSENGER)

    def _create(self) -> Redis:
        return redis_async.Redis.from_url(
            self.config.url,
            decode_responses=True,
            socket_keepalive=True,
            socket_connect_timeout=self.config.connect_timeout,
            socket_timeout=self.config.socket_timeout,
            retry_on_timeout=True,
        )

    async def _attempt(self) -> Redis:
        client = self._create()
        try:
            await client.ping()  # type: ignore[misc]
        except Exception:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise
        return client

    async def connect(self, max_retries: int = 10, initial_delay: float = 1.0) -> None:
        """
        Open a connection and PING it, backing off between attempts.

        Args:
            max_retries: Attempts before giving up
            initial_delay: First pause in seconds; doubled up to MAX_BACKOFF

        Raises:
            ConnectionError: No attempt succeeded
        """
        delay = initial_delay
        for attempt in range(1, max_retries + 1):
            try:
                client = await self._attempt()
            except Exception as e:
                if attempt == max_retries:
                    self.logger.error(
                        f"Redis unreachable after {max_retries} attempts",
                        e,
                        param("url", self.config.safe_url),
                    )
                    raise ConnectionError(
                        f"cannot reach Redis at {self.config.safe_url}"
                    ) from e
                self.logger.warn(
                    f"Redis attempt {attempt}/{max_retries} failed",
                    param("url", self.config.safe_url),
                    param("delay", delay),
                    param("error", str(e)),
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_BACKOFF)
                continue

            previous, self.redis = self.redis, client
            self._closed = False
            if previous is not None:
                await previous.aclose()
            return

    async def close(self) -> None:
        self._closed = True
        client, self.redis = self.redis, None
        if client is not None:
            await client.aclose()

    def get_redis(self) -> Redis:
        if self.redis is None:
            if self._closed:
                # после close() клиент создаёт только явный connect()
                raise ConnectionError("Redis client is closed")
            self.redis = self._create()
        return self.redis

    async def publish(self, stream: str, fields: dict[str, str]) -> str:
        """
        XADD an entry, trimming the stream to roughly stream_maxlen.

        Returns:
            The entry id Redis assigned

        Raises:
            BrokerPublishError: The command failed or returned no id
        """
        try:
            message_id = await self.get_redis().xadd(
                stream,
                fields,  # type: ignore[arg-type]
                maxlen=self.config.stream_maxlen,
                approximate=True,
            )
        except Exception as e:
            raise BrokerPublishError(str(e)) from e

        if not message_id:
            raise BrokerPublishError(f"XADD to '{stream}' returned no id")
        return str(message_id)
