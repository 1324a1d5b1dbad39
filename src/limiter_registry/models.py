"""Core models for limiter-registry."""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .exceptions import MirrorCorruptedError, ValidationError

APPS_SEPARATOR = ","

# Canonical decimal form written by the init script and enforcement clients
_INT_PATTERN = re.compile(r"-?[0-9]+")

# Mirror hash field names (shared with enforcement clients)
FIELD_APPS = "apps"
FIELD_MAX_PERMITS = "max_permits"
FIELD_CURR_PERMITS = "curr_permits"
FIELD_RATE = "rate"
FIELD_LAST_MILL_SECOND = "last_mill_second"

MIRROR_FIELDS = (
    FIELD_APPS,
    FIELD_MAX_PERMITS,
    FIELD_CURR_PERMITS,
    FIELD_RATE,
    FIELD_LAST_MILL_SECOND,
)


def encode_apps(apps: Iterable[str]) -> str:
    """
    Serialize an app-context set to its comma-joined storage form.

    Members are sorted so equal sets always produce the same string.
    """
    return APPS_SEPARATOR.join(sorted(set(apps)))


def decode_apps(raw: str | None) -> frozenset[str]:
    """
    Parse the comma-joined storage form back into a set.

    Empty segments and surrounding whitespace are dropped, so ``""`` and
    ``None`` both decode to the empty set.
    """
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(APPS_SEPARATOR) if part.strip())


def validate_positive_int(field_name: str, value: Any) -> None:
    """
    Validate a capacity or rate value.

    Raises:
        ValidationError: If value is not a positive int (bools are rejected)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field_name, value, "Must be an integer")
    if value <= 0:
        raise ValidationError(field_name, value, "Must be positive")


@dataclass(frozen=True)
class RateLimiterDefinition:
    """
    Durable configuration of a named rate limiter.

    Attributes:
        name: Unique limiter name, stable across updates
        apps: App contexts depending on this limiter
        max_permits: Bucket capacity
        rate: Refill rate (unit owned by the enforcement algorithm)
        version: Optimistic-concurrency counter (0 = never persisted)
    """

    name: str
    apps: frozenset[str]
    max_permits: int
    rate: int
    version: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "apps", frozenset(self.apps))
        validate_positive_int("max_permits", self.max_permits)
        validate_positive_int("rate", self.rate)

    @property
    def encoded_apps(self) -> str:
        """Apps in their comma-joined storage form."""
        return encode_apps(self.apps)

    def has_app(self, app: str) -> bool:
        """Check whether an app context depends on this limiter."""
        return app in self.apps

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for display."""
        return {
            "name": self.name,
            "apps": sorted(self.apps),
            "max_permits": self.max_permits,
            "rate": self.rate,
            "version": self.version,
        }


@dataclass(frozen=True)
class LimiterView:
    """
    A limiter definition enriched with live values from its mirror.

    Attributes:
        name: Limiter name
        apps: App contexts recorded in the mirror
        max_permits: Capacity recorded in the mirror
        curr_permits: Permits currently held by enforcement clients
        rate: Refill rate recorded in the mirror
        last_permit_timestamp: Last grant time in milliseconds, as stored
    """

    name: str
    apps: frozenset[str]
    max_permits: int
    curr_permits: int
    rate: int
    last_permit_timestamp: str

    def as_dict(self) -> dict[str, Any]:
        """Serialize for JSON API responses."""
        return {
            "name": self.name,
            "apps": sorted(self.apps),
            "max_permits": self.max_permits,
            "curr_permits": self.curr_permits,
            "rate": self.rate,
            "last_permit_timestamp": self.last_permit_timestamp,
        }


# ---------------------------------------------------------------------------
# Mirror replies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MirrorPresent:
    """A mirror hash that exists, with its raw string fields."""

    fields: dict[str, str]


@dataclass(frozen=True)
class MirrorAbsent:
    """A mirror hash that does not exist yet."""


MIRROR_ABSENT = MirrorAbsent()

MirrorReply = MirrorPresent | MirrorAbsent


def _parse_int(key: str, fields: dict[str, str], field_name: str) -> int:
    raw = fields.get(field_name)
    if raw is None or not _INT_PATTERN.fullmatch(raw):
        raise MirrorCorruptedError(key, field_name, raw)
    return int(raw)


def parse_view(name: str, key: str, fields: dict[str, str]) -> LimiterView:
    """
    Build a LimiterView from a present mirror hash.

    Args:
        name: Limiter name the hash belongs to
        key: Redis key of the hash (for error reporting)
        fields: Raw string fields of the hash

    Raises:
        MirrorCorruptedError: If a numeric field is missing or not an integer
    """
    return LimiterView(
        name=name,
        apps=decode_apps(fields.get(FIELD_APPS)),
        max_permits=_parse_int(key, fields, FIELD_MAX_PERMITS),
        curr_permits=_parse_int(key, fields, FIELD_CURR_PERMITS),
        rate=_parse_int(key, fields, FIELD_RATE),
        last_permit_timestamp=fields.get(FIELD_LAST_MILL_SECOND, ""),
    )
