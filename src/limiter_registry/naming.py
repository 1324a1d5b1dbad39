"""Naming rules for limiters, app contexts, tables and mirror keys.

This module provides centralized validation for every identifier that ends up
in one of the two stores:

- Limiter names and app contexts are joined with commas at the storage
  boundary, so neither may contain a comma or whitespace.
- Table names must satisfy DynamoDB rules (3-255 characters of
  ``[A-Za-z0-9_.-]``).
- Mirror keys are ``<key prefix><limiter name>``.
"""

import os
import re

from .exceptions import ValidationError

DEFAULT_KEY_PREFIX = "rate_limiter:"
"""Prefix of every mirror hash in Redis; shared with enforcement clients."""

KEY_PREFIX_ENV_VAR = "LIMITER_REGISTRY_KEY_PREFIX"
"""Environment variable for overriding the mirror key prefix."""

DEFAULT_TABLE_NAME = "rate-limiters"
"""Default DynamoDB table holding limiter definitions."""

TABLE_ENV_VAR = "LIMITER_REGISTRY_TABLE"
"""Environment variable for overriding the default table name."""

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,255}$")

# Limiter names and app contexts share one rule set
_FORBIDDEN_CHARS = re.compile(r"[,\s]")


def _validate_identifier(field: str, value: str) -> None:
    if not isinstance(value, str):
        raise ValidationError(field, value, "Must be a string")
    if not value:
        raise ValidationError(field, value, "Cannot be empty")
    match = _FORBIDDEN_CHARS.search(value)
    if match:
        what = "comma" if match.group() == "," else "whitespace"
        raise ValidationError(field, value, f"Contains {what}, which is not allowed")


def validate_limiter_name(name: str) -> None:
    """
    Validate a limiter name.

    Args:
        name: The limiter name

    Raises:
        ValidationError: If the name is empty or contains a comma or whitespace
    """
    _validate_identifier("name", name)


def validate_app_context(app: str) -> None:
    """
    Validate an app context identifier.

    Args:
        app: The app context

    Raises:
        ValidationError: If the app context is empty or contains a comma or whitespace
    """
    _validate_identifier("app", app)


def validate_table_name(name: str) -> None:
    """
    Validate a DynamoDB table name.

    Raises:
        ValidationError: If the name violates DynamoDB naming rules
    """
    if not name:
        raise ValidationError("table_name", name, "Table name cannot be empty")
    if not TABLE_NAME_PATTERN.match(name):
        raise ValidationError(
            "table_name",
            name,
            "Must be 3-255 characters of letters, digits, '_', '-' or '.'",
        )


def validate_key_prefix(prefix: str) -> None:
    """Reject key prefixes that could collide with unrelated Redis data."""
    if not prefix:
        raise ValidationError("key_prefix", prefix, "Key prefix cannot be empty")
    if any(c.isspace() for c in prefix):
        raise ValidationError("key_prefix", prefix, "Key prefix cannot contain whitespace")


def mirror_key(name: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Build the Redis key of a limiter's mirror hash."""
    return f"{prefix}{name}"


def resolve_table_name(table: str | None) -> str:
    """Resolve table name from explicit arg, env var, or default.

    Resolution order: ``table`` arg → ``LIMITER_REGISTRY_TABLE`` env var →
    ``"rate-limiters"``.

    Returns:
        Validated table name.
    """
    name = table or os.environ.get(TABLE_ENV_VAR) or DEFAULT_TABLE_NAME
    validate_table_name(name)
    return name


def resolve_key_prefix(prefix: str | None) -> str:
    """Resolve mirror key prefix from explicit arg, env var, or default."""
    value = prefix or os.environ.get(KEY_PREFIX_ENV_VAR) or DEFAULT_KEY_PREFIX
    validate_key_prefix(value)
    return value
