"""
Exception classes for dynconf.

Hierarchical structure: everything derives from DynconfError. Errors the
caller can cause (missing key, wrong type, bad payload) also derive from the
matching builtin so that plain `except KeyError` style handlers keep working.
"""


class DynconfError(Exception):
    """Base exception for all dynconf errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigNotFoundError(DynconfError, KeyError):
    """Requested key is absent from the current snapshot"""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Key '{key}' not found.", recoverable=False)

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.message


class TypeMismatchError(DynconfError, TypeError):
    """Value is present but not of the requested type"""

    def __init__(self, key: str, expected: type, actual: type):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Key '{key}' holds {actual.__name__}, not {expected.__name__}.",
            recoverable=False,
        )


class InvalidArgumentError(DynconfError, ValueError):
    """Caller supplied a missing or malformed payload"""

    def __init__(self, message: str, argument: str | None = None):
        self.argument = argument
        super().__init__(message, recoverable=False)


class DuplicateConfigError(InvalidArgumentError):
    """Write would create a second active record for the same key"""

    def __init__(self, application_name: str, name: str):
        self.application_name = application_name
        self.name = name
        super().__init__(
            f"Active record '{name}' already exists for application '{application_name}'",
            argument="name",
        )


class ValueConversionError(DynconfError):
    """Stored value cannot be parsed as its type tag"""

    def __init__(self, name: str, value: str, type_tag: str):
        self.name = name
        self.value = value
        self.type_tag = type_tag
        super().__init__(f"Cannot convert '{name}'={value!r} to {type_tag}")


class StorageUnavailableError(DynconfError, ConnectionError):
    """Configuration store cannot be reached"""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(f"Storage unavailable: {message}", recoverable=True)


class CircuitOpenError(DynconfError):
    """Circuit breaker is open - too many failures"""

    def __init__(self, service_name: str, failure_count: int, retry_after: float = 0.0):
        self.service_name = service_name
        self.failure_count = failure_count
        self.retry_after = retry_after
        super().__init__(
            f"Circuit open for {service_name} after {failure_count} failures",
            recoverable=True,
        )


class BrokerPublishError(DynconfError):
    """Outbox record could not be published to the messenger"""

    def __init__(self, message: str, outbox_id: int | None = None):
        self.outbox_id = outbox_id
        super().__init__(f"Publish failed: {message}", recoverable=True)
