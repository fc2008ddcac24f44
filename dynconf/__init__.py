"""dynconf - dynamic configuration reader with outbox-based change notifications."""

from dynconf.domain.config import (
    ConfigurationRecord,
    ConfigurationRecordDto,
    ValueType,
    convert_value,
)
from dynconf.domain.errors import (
    BrokerPublishError,
    CircuitOpenError,
    ConfigNotFoundError,
    DuplicateConfigError,
    DynconfError,
    InvalidArgumentError,
    StorageUnavailableError,
    TypeMismatchError,
    ValueConversionError,
)
from dynconf.domain.outbox import ConfigChange, OutboxRecord
from dynconf.reader import ConfigurationReader

__version__ = "0.1.0"

__all__ = [
    "ConfigurationReader",
    "ConfigurationRecord",
    "ConfigurationRecordDto",
    "ConfigChange",
    "OutboxRecord",
    "ValueType",
    "convert_value",
    "DynconfError",
    "ConfigNotFoundError",
    "TypeMismatchError",
    "InvalidArgumentError",
    "DuplicateConfigError",
    "ValueConversionError",
    "StorageUnavailableError",
    "CircuitOpenError",
    "BrokerPublishError",
]
