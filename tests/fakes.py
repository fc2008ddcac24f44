"""In-memory doubles for the store, the messenger and the clock."""

import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import psycopg2

from dynconf.domain.config import ConfigurationRecord
from dynconf.domain.errors import BrokerPublishError
from dynconf.domain.outbox import OutboxRecord
from dynconf.logger.types import Level, LogEntry


class RecordingWriter:
    """Stands in for PostgresWriter and keeps entries in memory."""

    def __init__(self) -> None:
        self.entries: list[LogEntry] = []

    def write(self, entry: LogEntry) -> None:
        self.entries.append(entry)

    def messages(self, level: Level | None = None) -> list[str]:
        return [e.message for e in self.entries if level is None or e.level is level]


class OverlapCounter:
    """Counts how many calls overlap in time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.current = 0
        self.max_seen = 0
        self.calls = 0

    def __enter__(self) -> "OverlapCounter":
        with self._lock:
            self.calls += 1
            self.current += 1
            self.max_seen = max(self.max_seen, self.current)
        return self

    def __exit__(self, *exc_info: object) -> None:
        with self._lock:
            self.current -= 1


class FakeConfigRepository:
    """In-memory ConfigRepository."""

    def __init__(self, records: list[ConfigurationRecord] | None = None) -> None:
        self.records: list[ConfigurationRecord] = []
        self.fail_with: Exception | None = None
        self.delay = 0.0
        self.overlap = OverlapCounter()
        self._next_id = 1
        for record in records or []:
            self.insert(record)

    @property
    def find_active_calls(self) -> int:
        return self.overlap.calls

    def insert(self, record: ConfigurationRecord) -> int:
        record.id = self._next_id
        self._next_id += 1
        self.records.append(record)
        return record.id

    def replace_by_id(self, record_id: int, record: ConfigurationRecord) -> bool:
        for index, existing in enumerate(self.records):
            if existing.id == record_id:
                record.id = record_id
                record.created_at = existing.created_at
                record.updated_at = datetime.now(timezone.utc)
                self.records[index] = record
                return True
        return False

    def find_active(self, application_name: str) -> list[ConfigurationRecord]:
        with self.overlap:
            if self.delay:
                time.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            active = [
                r
                for r in self.records
                if r.is_active and r.application_name == application_name
            ]
            return sorted(
                active, key=lambda r: (r.updated_at or r.created_at, r.created_at, r.id)
            )

    def find(
        self,
        predicate: Callable[[ConfigurationRecord], bool] | None = None,
        **filters: Any,
    ) -> tuple[ConfigurationRecord, ...]:
        matches = [
            r
            for r in self.records
            if all(getattr(r, column) == value for column, value in filters.items())
        ]
        if predicate is not None:
            matches = [r for r in matches if predicate(r)]
        return tuple(matches)

    def find_active_duplicate(
        self, application_name: str, name: str, exclude_id: int | None = None
    ) -> ConfigurationRecord | None:
        matches = self.find(
            lambda r: r.id != exclude_id,
            application_name=application_name,
            name=name,
            is_active=True,
        )
        return matches[0] if matches else None


class FakeOutboxRepository:
    """In-memory OutboxRepository."""

    def __init__(self) -> None:
        self.records: list[OutboxRecord] = []
        self.fail_add: Exception | None = None
        self.fail_read: Exception | None = None
        self.delay = 0.0
        self.overlap = OverlapCounter()
        self.mark_calls: list[int] = []
        self._next_id = 1
        self._lock = threading.Lock()

    def add(self, record: OutboxRecord) -> int:
        if self.fail_add is not None:
            raise self.fail_add
        with self._lock:
            record.id = self._next_id
            self._next_id += 1
            self.records.append(record)
        return record.id

    def get_unpublished(self, application_name: str | None = None) -> list[OutboxRecord]:
        with self.overlap:
            if self.delay:
                time.sleep(self.delay)
            if self.fail_read is not None:
                raise self.fail_read
            pending = [
                r
                for r in self.records
                if not r.published
                and application_name in (None, r.application_name)
            ]
            # Копии, как при чтении из БД
            return [
                OutboxRecord(
                    id=r.id,
                    key=r.key,
                    value=r.value,
                    application_name=r.application_name,
                    published=r.published,
                    created_at=r.created_at,
                )
                for r in sorted(pending, key=lambda r: (r.created_at, r.id))
            ]

    def mark_published(self, record_id: int) -> bool:
        self.mark_calls.append(record_id)
        for record in self.records:
            if record.id == record_id and not record.published:
                record.published = True
                record.published_at = datetime.now(timezone.utc)
                return True
        return False

    def purge_published(self, older_than: datetime) -> int:
        before = len(self.records)
        self.records = [
            r for r in self.records if not (r.published and r.created_at < older_than)
        ]
        return before - len(self.records)

    def unpublished(self) -> list[OutboxRecord]:
        return [r for r in self.records if not r.published]


class FakeRedisClient:
    """RedisClient double recording XADD calls."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, str]]] = []
        self.fail_keys: set[str] = set()
        self.connected = False
        self.close_calls = 0
        self._counter = 0

    async def connect(self, max_retries: int = 10, initial_delay: float = 1.0) -> None:
        self.connected = True

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False

    async def publish(self, stream: str, fields: dict[str, str]) -> str:
        key = fields.get("data", "")
        if any(f'"key": "{k}"' in key for k in self.fail_keys):
            raise BrokerPublishError("connection reset")
        self._counter += 1
        self.published.append((stream, fields))
        return f"1700000000000-{self._counter}"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(
    name: str,
    value: str,
    type_tag: str = "string",
    application_name: str = "SERVICE-A",
    is_active: bool = True,
    created_at: datetime | None = None,
) -> ConfigurationRecord:
    return ConfigurationRecord(
        application_name=application_name,
        name=name,
        value=value,
        type=type_tag,
        is_active=is_active,
        created_at=created_at or datetime.now(timezone.utc),
    )


def store_down() -> psycopg2.OperationalError:
    return psycopg2.OperationalError("could not connect to server: Connection refused")


def minutes_ago(minutes: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)
