"""Handler applying config_changed events on the consumer side."""

from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType
from typing import Any

from dynconf.domain.outbox import CONFIG_CHANGED_EVENT, ConfigChange
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param

ChangeCallback = Callable[[ConfigChange], Awaitable[None]]


class ConfigChangeHandler:
    """
    Keeps a last-value-wins view of config changes keyed by key.

    The outbox delivers at least once, so the same change can arrive twice
    and, after a retry, an older change can arrive after a newer one. Outbox
    ids grow monotonically, so any event whose id is not greater than the
    last applied id for its key is ignored.
    """

    def __init__(
        self,
        application_name: str | None = None,
        on_change: ChangeCallback | None = None,
    ) -> None:
        """
        Initialize ConfigChangeHandler.

        Args:
            application_name: Only apply events of this application (None: all)
            on_change: Called once for every applied change
        """
        self.application_name = application_name
        self.on_change = on_change
        self.logger = get_logger().with_category(Category.MESSENGER)

        self._values: dict[str, str] = {}
        self._applied_ids: dict[str, int] = {}
        self.duplicates_ignored = 0

        # Маппинг event_type -> handler method
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            CONFIG_CHANGED_EVENT: self._handle_config_changed,
        }

    @property
    def values(self) -> Mapping[str, str]:
        """Current key -> value view."""
        return MappingProxyType(self._values)

    async def handle(self, event: dict[str, Any]) -> None:
        """
        Handle incoming event.

        Args:
            event: Parsed event with event_type, event_id, data, etc.
        """
        event_type = event.get("event_type")
        handler = self._handlers.get(event_type or "")
        if handler is None:
            self.logger.warn(
                f"Unknown event type: {event_type}",
                param("event_id", event.get("event_id")),
            )
            return
        await handler(event)

    async def _handle_config_changed(self, event: dict[str, Any]) -> None:
        change = ConfigChange.from_event(event)

        if self.application_name and change.application_name != self.application_name:
            return

        last_id = self._applied_ids.get(change.key)
        if last_id is not None and change.event_id <= last_id:
            self.duplicates_ignored += 1
            self.logger.debug(
                "Stale or duplicate config change ignored",
                param("key", change.key),
                param("event_id", change.event_id),
                param("last_applied_id", last_id),
            )
            return

        self._values[change.key] = change.value
        self._applied_ids[change.key] = change.event_id

        self.logger.info(
            f"Config change applied: {change.key}",
            param("event_id", change.event_id),
            param("application", change.application_name),
        )

        if self.on_change is not None:
            await self.on_change(change)
