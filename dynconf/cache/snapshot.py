"""
Configuration Cache

Immutable name -> typed value snapshot for one application.
Replaced as a whole on every successful refresh.
"""

import threading
from collections.abc import Iterable, Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Any, TypeVar

from dynconf.domain.config import ConfigurationRecord, ConfigValue, utcnow
from dynconf.domain.errors import ConfigNotFoundError, TypeMismatchError
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param

T = TypeVar("T")

_EMPTY: Mapping[str, ConfigValue] = MappingProxyType({})


def build_snapshot(
    records: Iterable[ConfigurationRecord],
) -> tuple[Mapping[str, ConfigValue], list[str]]:
    """
    Convert records into a read-only mapping.

    When a name appears more than once the last record wins.

    Returns:
        (snapshot, duplicated names)

    Raises:
        ValueConversionError: If any value does not parse as its type tag
    """
    values: dict[str, ConfigValue] = {}
    duplicates: list[str] = []
    for record in records:
        if record.name in values and record.name not in duplicates:
            duplicates.append(record.name)
        values[record.name] = record.typed_value()
    return MappingProxyType(values), duplicates


class ConfigCache:
    """
    Holds the currently published snapshot.

    Readers take the reference under a short lock and then work on an
    immutable mapping, so they always see one complete snapshot. Building a
    new snapshot happens outside the lock; only the swap is locked.
    """

    def __init__(self, application_name: str) -> None:
        self.application_name = application_name
        self._snapshot: Mapping[str, ConfigValue] = _EMPTY
        self._lock = threading.Lock()
        self._version = 0
        self._loaded_at: datetime | None = None
        self.logger = get_logger().with_category(Category.CACHE)

    def snapshot(self) -> Mapping[str, ConfigValue]:
        """Return the currently published snapshot."""
        with self._lock:
            return self._snapshot

    def get(self, key: str, expected_type: type[T] | None = None) -> Any:
        """
        Get a value from the current snapshot.

        Args:
            key: Configuration name
            expected_type: If given, the value must be of this type

        Raises:
            ConfigNotFoundError: If the key is absent
            TypeMismatchError: If the value has another type
        """
        snapshot = self.snapshot()
        try:
            value = snapshot[key]
        except KeyError:
            raise ConfigNotFoundError(key) from None

        if expected_type is not None and not _is_instance(value, expected_type):
            raise TypeMismatchError(key, expected_type, type(value))
        return value

    def replace(self, snapshot: Mapping[str, ConfigValue]) -> int:
        """
        Publish a new snapshot.

        Args:
            snapshot: Fully built mapping

        Returns:
            New snapshot version
        """
        if not isinstance(snapshot, MappingProxyType):
            snapshot = MappingProxyType(dict(snapshot))

        with self._lock:
            self._snapshot = snapshot
            self._version += 1
            self._loaded_at = utcnow()
            version = self._version

        self.logger.debug(
            "Snapshot published",
            param("application_name", self.application_name),
            param("version", version),
            param("keys", len(snapshot)),
        )
        return version

    @property
    def version(self) -> int:
        """Number of snapshots published so far."""
        return self._version

    @property
    def loaded_at(self) -> datetime | None:
        """When the current snapshot was published."""
        return self._loaded_at

    def __contains__(self, key: object) -> bool:
        return key in self.snapshot()

    def __len__(self) -> int:
        return len(self.snapshot())


def _is_instance(value: Any, expected_type: type) -> bool:
    # bool - подкласс int, но для конфигурации это разные типы
    if isinstance(value, bool):
        return expected_type is bool or expected_type is object
    if expected_type is float:
        return isinstance(value, (int, float))
    return isinstance(value, expected_type)
