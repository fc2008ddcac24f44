"""Log levels, categories and the system_log row shape."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Level(str, Enum):
    """Severity of a log entry, stored as text in system_log.level."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"  # сбой, после которого работа продолжается
    FATAL = "fatal"  # процесс завершается

    @property
    def severity(self) -> int:
        return _ORDER.index(self)


_ORDER = tuple(Level)


class Category(str, Enum):
    """Subsystem that produced the entry; used to filter system_log."""

    CACHE = "cache"
    CIRCUIT_BREAKER = "circuit_breaker"
    DATABASE = "database"
    MESSENGER = "messenger"  # Redis Streams
    OUTBOX = "outbox"
    SCHEDULER = "scheduler"


@dataclass
class LogEntry:
    """One system_log row."""

    created_at: datetime
    service_name: str
    instance_id: str
    environment: str
    level: Level
    message: str
    category: Category | None = None
    function_name: str | None = None
    file_path: str | None = None
    line_number: int | None = None
    exception_details: str | None = None
    context: dict[str, Any] | None = None
    duration_ms: int | None = None


@dataclass
class Field:
    """Key/value pair attached to an entry's JSON context."""

    key: str
    value: Any


def category(cat: Category) -> Field:
    """Override the logger's category for one entry."""
    return Field(key="_category", value=cat)


def param(key: str, value: Any) -> Field:
    return Field(key=key, value=value)


def duration_ms(value: int) -> Field:
    """Stored in system_log.duration_ms rather than in context."""
    return Field(key="duration_ms", value=value)
