"""Outbox domain model and its wire encoding."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dynconf.domain.config import utcnow

CONFIG_CHANGED_EVENT = "config_changed"


@dataclass
class OutboxRecord:
    """
    Pending change notification.

    Written durably before any messenger call; `published` flips to True
    only after the messenger confirmed the entry, and never back.
    """

    key: str
    value: str
    application_name: str = ""
    published: bool = False
    created_at: datetime = field(default_factory=utcnow)
    published_at: datetime | None = None
    id: int | None = None  # Set by database

    def to_message(self) -> dict[str, str]:
        """
        Encode as a Redis Stream entry.

        Stream entries are field maps, so key and value never need a
        delimiter: they travel JSON-encoded inside `data`.
        """
        return {
            "event_id": str(self.id),
            "event_type": CONFIG_CHANGED_EVENT,
            "application": self.application_name,
            "timestamp": self.created_at.isoformat(),
            "data": json.dumps({"key": self.key, "value": self.value}),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OutboxRecord":
        """Create record from a RealDictCursor row."""
        return cls(
            id=row["id"],
            key=row["key"],
            value=row["value"],
            application_name=row["application_name"],
            published=row["published"],
            created_at=row["created_at"],
            published_at=row["published_at"],
        )


@dataclass
class ConfigChange:
    """Decoded config_changed event as seen by a consumer."""

    event_id: int
    application_name: str
    key: str
    value: str
    timestamp: str | None = None

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> "ConfigChange":
        """
        Build from a parsed stream event.

        Raises:
            ValueError: If the event lacks an id or a key
        """
        data = event.get("data") or {}
        if "key" not in data:
            raise ValueError("config_changed event has no key")
        if event.get("event_id") is None:
            raise ValueError("config_changed event has no event_id")
        return cls(
            event_id=int(event["event_id"]),
            application_name=event.get("application") or "",
            key=data["key"],
            value=data.get("value", ""),
            timestamp=event.get("timestamp"),
        )
