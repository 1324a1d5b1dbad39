"""Exceptions for limiter-registry."""

from typing import Any

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class LimiterRegistryError(Exception):
    """
    Base exception for all limiter-registry errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class ConfigurationError(LimiterRegistryError):
    """
    Base exception for invalid limiter definitions and settings.

    Raised before either store is touched, so a configuration error never
    leaves the registry and the mirror out of step.
    """

    pass


class RegistryError(LimiterRegistryError):
    """
    Base exception for errors in the durable registry.

    This includes write conflicts between concurrent registry writers.
    """

    pass


class MirrorError(LimiterRegistryError):
    """
    Base exception for errors in the shared-state mirror (Redis).

    This includes failed atomic initializations and corrupted mirror hashes.
    """

    pass


# ---------------------------------------------------------------------------
# Configuration Exceptions
# ---------------------------------------------------------------------------


class ValidationError(ConfigurationError):
    """
    Raised when a limiter definition or setting is invalid.

    Attributes:
        field: Name of the offending field
        value: The rejected value
        reason: Human-readable explanation
    """

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


# ---------------------------------------------------------------------------
# Registry Exceptions
# ---------------------------------------------------------------------------


class ConcurrentModificationError(RegistryError):
    """
    Raised when a conditional registry write loses to another writer.

    The registry retries these internally; callers only see this error
    once the configured number of write attempts is exhausted.
    """

    def __init__(self, name: str, attempts: int | None = None) -> None:
        self.name = name
        self.attempts = attempts
        msg = f"Limiter {name!r} was modified concurrently"
        if attempts is not None:
            msg += f" (gave up after {attempts} attempts)"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Mirror Exceptions
# ---------------------------------------------------------------------------


class MirrorSyncError(MirrorError):
    """
    Raised when the atomic mirror initialization does not succeed.

    Attributes:
        key: Redis key that was being initialized
        status: Status returned by the init script (None if it never returned)
        cause: The underlying exception, if any
    """

    def __init__(
        self,
        key: str,
        status: Any = None,
        cause: Exception | None = None,
    ) -> None:
        self.key = key
        self.status = status
        self.cause = cause
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.cause is not None:
            return f"Failed to sync mirror {self.key}: {self.cause}"
        return f"Failed to sync mirror {self.key}: init script returned {self.status!r}"


class MirrorCorruptedError(MirrorError):
    """
    Raised when a present mirror hash holds a missing or non-numeric field.

    Distinct from an absent mirror, which is a normal soft miss.
    """

    def __init__(self, key: str, field: str, value: Any) -> None:
        self.key = key
        self.field = field
        self.value = value
        super().__init__(f"Corrupted mirror {key}: field {field!r} has value {value!r}")
