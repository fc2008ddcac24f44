"""
Outbox Publisher

A config change and its messenger notification cannot be committed
atomically, so the change is first written to the outbox table and then
drained to the config-updates stream. Delivery is at-least-once: a crash
between XADD and mark_published re-sends the record on the next drain.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta

from dynconf.domain.config import utcnow
from dynconf.domain.outbox import OutboxRecord
from dynconf.events.client import RedisClient
from dynconf.logger.error_sink import ErrorSink
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param
from dynconf.repository.outbox_repository import OutboxRepository


@dataclass
class DrainResult:
    """Outcome of one drain pass."""

    published: int = 0
    failed: int = 0
    purged: int = 0

    @property
    def attempted(self) -> int:
        return self.published + self.failed


class OutboxPublisher:
    """
    Enqueues change notifications and drains them to Redis.

    drain() is not re-entrant: callers run it under the same lock as the
    cache refresh, because it shares the single messenger connection.
    """

    def __init__(
        self,
        application_name: str,
        repository: OutboxRepository,
        redis_client: RedisClient,
        error_sink: ErrorSink,
        stream: str = "config-updates",
        retention_seconds: float = 0.0,
    ) -> None:
        self.application_name = application_name
        self.repository = repository
        self.redis_client = redis_client
        self.error_sink = error_sink
        self.stream = stream
        self.retention_seconds = retention_seconds
        self.logger = get_logger().with_category(Category.OUTBOX)

    async def enqueue(self, key: str, value: str) -> OutboxRecord:
        """
        Durably record a pending change.

        Args:
            key: Configuration name
            value: New value

        Returns:
            Stored record (unpublished)
        """
        record = OutboxRecord(
            key=key,
            value=value,
            application_name=self.application_name,
            published=False,
            created_at=utcnow(),
        )
        await asyncio.to_thread(self.repository.add, record)
        return record

    async def drain(self) -> DrainResult:
        """
        Publish every unpublished record in the outbox table, oldest first.

        Records of every application are drained, not only this reader's
        own: a change enqueued by a reader without a messenger is sent by
        whichever reader drains next. The envelope carries the application
        name, so consumers can still filter.

        A failure on one record is logged and does not stop the pass. Store
        errors while reading the pending list propagate.

        Returns:
            DrainResult with published / failed / purged counts
        """
        result = DrainResult()
        pending = await asyncio.to_thread(self.repository.get_unpublished)

        for record in pending:
            try:
                message_id = await self.redis_client.publish(
                    self.stream, record.to_message()
                )
                await asyncio.to_thread(self.repository.mark_published, record.id)
                record.published = True
                result.published += 1
                self.logger.debug(
                    f"Outbox record published: {record.key}",
                    param("outbox_id", record.id),
                    param("message_id", message_id),
                )
            except Exception as e:
                result.failed += 1
                self.error_sink.log(
                    "Failed to publish outbox record.",
                    e,
                    param("outbox_id", record.id),
                    param("key", record.key),
                    param("stream", self.stream),
                )

        if self.retention_seconds > 0:
            result.purged = await self._purge()

        if pending:
            self.logger.info(
                "Outbox drained",
                param("application_name", self.application_name),
                param("published", result.published),
                param("failed", result.failed),
            )
        return result

    async def _purge(self) -> int:
        cutoff = utcnow() - timedelta(seconds=self.retention_seconds)
        try:
            return await asyncio.to_thread(self.repository.purge_published, cutoff)
        except Exception as e:
            self.error_sink.log(
                "Failed to purge published outbox records.",
                e,
                param("cutoff", cutoff.isoformat()),
            )
            return 0
