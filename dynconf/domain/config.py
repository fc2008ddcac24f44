"""Configuration domain models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dynconf.domain.errors import ValueConversionError

ConfigValue = int | float | bool | str


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ValueType(str, Enum):
    """Type tag of a stored configuration value."""

    INT = "int"
    DOUBLE = "double"
    BOOL = "bool"
    STRING = "string"

    @classmethod
    def parse(cls, tag: str | None) -> "ValueType":
        """Parse a stored type tag. Unknown or empty tags fall back to STRING."""
        if tag:
            try:
                return cls(tag.strip().lower())
            except ValueError:
                pass
        return cls.STRING

    @property
    def python_type(self) -> type:
        return _PYTHON_TYPES[self]


_PYTHON_TYPES: dict[ValueType, type] = {
    ValueType.INT: int,
    ValueType.DOUBLE: float,
    ValueType.BOOL: bool,
    ValueType.STRING: str,
}


def convert_value(value: str, type_tag: str | ValueType | None, name: str = "") -> ConfigValue:
    """
    Convert a stored string to its typed in-memory value.

    Args:
        value: String-encoded value
        type_tag: Type tag ("int", "double", "bool", anything else is a string)
        name: Record name, only used in the error message

    Returns:
        Typed value

    Raises:
        ValueConversionError: If the value does not parse as its tag
    """
    value_type = type_tag if isinstance(type_tag, ValueType) else ValueType.parse(type_tag)

    if value_type is ValueType.STRING:
        return value

    text = (value or "").strip()
    try:
        if value_type is ValueType.INT:
            return int(text)
        if value_type is ValueType.DOUBLE:
            return float(text)
        # bool: только true/false без учёта регистра
        lowered = text.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        raise ValueError(text)
    except ValueError as e:
        raise ValueConversionError(name, value, value_type.value) from e


@dataclass
class ConfigurationRecord:
    """
    Single configuration record.

    Logical key is (application_name, name). Records are replaced as a
    whole by id, never partially updated.
    """

    application_name: str
    name: str
    value: str
    type: str = ValueType.STRING.value
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None
    id: int | None = None  # Set by database

    @property
    def value_type(self) -> ValueType:
        return ValueType.parse(self.type)

    def typed_value(self) -> ConfigValue:
        """Return the value converted according to its type tag."""
        return convert_value(self.value, self.value_type, self.name)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ConfigurationRecord":
        """Create record from a RealDictCursor row."""
        return cls(
            id=row["id"],
            application_name=row["application_name"],
            name=row["name"],
            type=row["type"],
            value=row["value"],
            is_active=row["is_active"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class ConfigurationRecordDto:
    """Caller-facing payload for adding or replacing a configuration record."""

    application_name: str
    name: str
    value: str
    type: str = ValueType.STRING.value
    is_active: bool = True
    id: int | None = None

    def to_record(self) -> ConfigurationRecord:
        """Build a new record; updated_at is stamped only on replace."""
        return ConfigurationRecord(
            id=self.id,
            application_name=self.application_name,
            name=self.name,
            type=self.type,
            value=self.value,
            is_active=self.is_active,
        )
