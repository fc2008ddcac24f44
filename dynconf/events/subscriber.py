"""Consumer-group reader for the config-updates stream."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

from dynconf.events.client import RedisClient
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]

# "0" - свои непрочитанные (pending) записи, ">" - новые записи группы
PENDING_ID = "0"
NEW_ID = ">"


def decode_entry(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Turn raw stream entry fields into an event dict.

    `data` travels as a JSON string; an unparsable payload decodes to an
    empty dict so the handler can reject the event itself.
    """
    try:
        data = json.loads(fields.get("data") or "{}")
    except (TypeError, json.JSONDecodeError):
        data = {}

    return {
        "event_id": fields.get("event_id"),
        "event_type": fields.get("event_type"),
        "application": fields.get("application"),
        "timestamp": fields.get("timestamp"),
        "data": data,
    }


class EventSubscriber:
    """
    Reads change events through a Redis consumer group.

    An entry is acknowledged only after the handler returned. If the process
    dies first, the entry stays in the group's pending list and is replayed
    by consume() on the next start, before any new entries are read. The
    outbox already delivers at least once, so handlers must be idempotent
    (see ConfigChangeHandler).
    """

    def __init__(
        self,
        redis_client: RedisClient,
        consumer_group: str,
        streams: list[str],
        block_ms: int = 5000,
        batch_size: int = 10,
        consumer_name: str | None = None,
    ) -> None:
        """
        Initialize EventSubscriber.

        Args:
            redis_client: Connected Redis client
            consumer_group: Group name, e.g. "dynconf-dev"
            streams: Streams to read, e.g. ["config-updates"]
            block_ms: How long one read waits for new entries
            batch_size: Max entries per stream per read
            consumer_name: Stable consumer name; needed to replay pending
                entries after a restart
        """
        self.redis_client = redis_client
        self.consumer_group = consumer_group
        self.streams = streams
        self.block_ms = block_ms
        self.batch_size = batch_size
        self.consumer_name = consumer_name or f"{consumer_group}-{id(self):x}"
        self._stopped = False
        self.logger = get_logger().with_category(Category.MESSENGER)

    async def ensure_groups(self) -> None:
        """Create the consumer group on every stream; existing groups are kept."""
        redis = self.redis_client.get_redis()

        for stream in self.streams:
            try:
                await redis.xgroup_create(
                    name=stream, groupname=self.consumer_group, id="0", mkstream=True
                )
            except Exception as e:
                if "BUSYGROUP" in str(e):
                    continue
                self.logger.warn(
                    "Cannot create consumer group",
                    param("stream", stream),
                    param("group", self.consumer_group),
                    param("error", str(e)),
                )
            else:
                self.logger.info(
                    "Consumer group created",
                    param("stream", stream),
                    param("group", self.consumer_group),
                )

    async def consume(self, handler: EventHandler) -> None:
        """
        Replay pending entries, then read new ones until stop() is called.

        Args:
            handler: Async callable receiving each decoded event
        """
        await self.ensure_groups()
        replayed = await self.replay_pending(handler)

        self.logger.info(
            "Event consumer started",
            param("group", self.consumer_group),
            param("consumer", self.consumer_name),
            param("streams", self.streams),
            param("replayed", replayed),
        )

        while not self._stopped:
            try:
                await self.poll(handler)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Stream read failed", e, param("group", self.consumer_group))
                await asyncio.sleep(5)

        self.logger.info("Event consumer stopped", param("consumer", self.consumer_name))

    async def replay_pending(self, handler: EventHandler) -> int:
        """
        Handle entries delivered to this consumer but never acknowledged.

        Each stream is walked once: the read cursor moves past every entry
        handled, acknowledged or not, so a run of entries the handler keeps
        rejecting neither spins the loop nor hides the entries behind it.

        Returns:
            Number of entries acknowledged
        """
        cursors = {stream: PENDING_ID for stream in self.streams}
        total = 0
        while True:
            read, acked = await self._read(handler, cursors, block=None)
            if not read:
                return total
            total += acked

    async def poll(self, handler: EventHandler) -> int:
        """
        Read and handle one batch of new entries.

        Returns:
            Number of entries read
        """
        read, _ = await self._read(
            handler, {stream: NEW_ID for stream in self.streams}, block=self.block_ms
        )
        return read

    async def _read(
        self, handler: EventHandler, cursors: dict[str, str], block: int | None
    ) -> tuple[int, int]:
        redis = self.redis_client.get_redis()
        response = await redis.xreadgroup(
            groupname=self.consumer_group,
            consumername=self.consumer_name,
            streams=dict(cursors),  # type: ignore[arg-type]
            count=self.batch_size,
            block=block,
        )

        read = acked = 0
        for stream, entries in response or []:
            for message_id, fields in entries:
                read += 1
                if await self._dispatch(stream, message_id, fields, handler):
                    acked += 1
                if cursors[stream] != NEW_ID:
                    cursors[stream] = message_id
        return read, acked

    async def _dispatch(
        self,
        stream: str,
        message_id: str,
        fields: dict[str, Any] | None,
        handler: EventHandler,
    ) -> bool:
        redis = self.redis_client.get_redis()

        # Запись удалена из stream (MAXLEN), в pending остался только id
        if not fields:
            await redis.xack(stream, self.consumer_group, message_id)
            return True

        event = decode_entry(fields)
        try:
            await handler(event)
        except Exception as e:
            self.logger.error(
                "Event handler failed, entry left pending",
                e,
                param("stream", stream),
                param("message_id", message_id),
                param("event_id", event["event_id"]),
            )
            return False

        await redis.xack(stream, self.consumer_group, message_id)
        return True

    async def stop(self) -> None:
        """Finish the current batch and leave consume()."""
        self._stopped = True
