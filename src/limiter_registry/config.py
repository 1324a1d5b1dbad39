"""Runtime settings for limiter-registry.

Settings are plain values; ``RegistrySettings.from_env()`` reads them from
``LIMITER_REGISTRY_*`` environment variables so that processes sharing a
deployment agree on the table, the Redis instance and the mirror key prefix.
"""

import os
from dataclasses import dataclass
from typing import Any

from .exceptions import ValidationError
from .mirror import DEFAULT_REDIS_URL
from .naming import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_TABLE_NAME,
    resolve_key_prefix,
    resolve_table_name,
    validate_key_prefix,
    validate_table_name,
)

REGION_ENV_VAR = "LIMITER_REGISTRY_REGION"
ENDPOINT_URL_ENV_VAR = "LIMITER_REGISTRY_ENDPOINT_URL"
REDIS_URL_ENV_VAR = "LIMITER_REGISTRY_REDIS_URL"
RECONCILE_INTERVAL_ENV_VAR = "LIMITER_REGISTRY_RECONCILE_INTERVAL"
MAX_WRITE_ATTEMPTS_ENV_VAR = "LIMITER_REGISTRY_MAX_WRITE_ATTEMPTS"
PURGE_ORPHANED_MIRRORS_ENV_VAR = "LIMITER_REGISTRY_PURGE_ORPHANED_MIRRORS"
LOG_LEVEL_ENV_VAR = "LIMITER_REGISTRY_LOG_LEVEL"

DEFAULT_RECONCILE_INTERVAL = 60.0
DEFAULT_MAX_WRITE_ATTEMPTS = 5

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _parse_bool(env_var: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValidationError(env_var, raw, "Expected one of true/false, yes/no, on/off, 1/0")


def _parse_float(env_var: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(env_var, raw, "Expected a number of seconds") from None


def _parse_int(env_var: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(env_var, raw, "Expected an integer") from None


@dataclass(frozen=True)
class RegistrySettings:
    """
    Configuration for a registry deployment.

    Attributes:
        table_name: DynamoDB table holding limiter definitions
        region: AWS region (None = boto3 defaults)
        endpoint_url: Custom DynamoDB endpoint (e.g., LocalStack)
        redis_url: Redis instance holding the mirrors
        key_prefix: Prefix of every mirror key
        reconcile_interval: Seconds between reconciliation ticks
        max_write_attempts: Compare-and-swap attempts per registry mutation
        purge_orphaned_mirrors: Remove the mirror when a limiter's last app
            context is removed (default keeps the reset mirror in place)
        log_level: Root log level for CLI processes
    """

    table_name: str = DEFAULT_TABLE_NAME
    region: str | None = None
    endpoint_url: str | None = None
    redis_url: str = DEFAULT_REDIS_URL
    key_prefix: str = DEFAULT_KEY_PREFIX
    reconcile_interval: float = DEFAULT_RECONCILE_INTERVAL
    max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS
    purge_orphaned_mirrors: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        validate_table_name(self.table_name)
        validate_key_prefix(self.key_prefix)
        if not self.redis_url:
            raise ValidationError("redis_url", self.redis_url, "Redis URL cannot be empty")
        if self.reconcile_interval <= 0:
            raise ValidationError(
                "reconcile_interval", self.reconcile_interval, "Must be a positive number"
            )
        if self.max_write_attempts < 1:
            raise ValidationError("max_write_attempts", self.max_write_attempts, "Must be >= 1")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValidationError(
                "log_level", self.log_level, f"Must be one of {', '.join(sorted(_LOG_LEVELS))}"
            )

    @classmethod
    def from_env(cls, **overrides: Any) -> "RegistrySettings":
        """
        Build settings from ``LIMITER_REGISTRY_*`` environment variables.

        Explicit keyword overrides win over the environment; overrides set to
        None are ignored so CLI options can be passed through unconditionally.

        Raises:
            ValidationError: If a variable holds an invalid value
        """
        env = os.environ
        overrides = {k: v for k, v in overrides.items() if v is not None}
        values: dict[str, Any] = {
            "table_name": resolve_table_name(overrides.pop("table_name", None)),
            "region": env.get(REGION_ENV_VAR) or env.get("AWS_REGION") or None,
            "endpoint_url": env.get(ENDPOINT_URL_ENV_VAR) or None,
            "redis_url": env.get(REDIS_URL_ENV_VAR) or DEFAULT_REDIS_URL,
            "key_prefix": resolve_key_prefix(overrides.pop("key_prefix", None)),
        }
        if RECONCILE_INTERVAL_ENV_VAR in env and "reconcile_interval" not in overrides:
            values["reconcile_interval"] = _parse_float(
                RECONCILE_INTERVAL_ENV_VAR, env[RECONCILE_INTERVAL_ENV_VAR]
            )
        if MAX_WRITE_ATTEMPTS_ENV_VAR in env and "max_write_attempts" not in overrides:
            values["max_write_attempts"] = _parse_int(
                MAX_WRITE_ATTEMPTS_ENV_VAR, env[MAX_WRITE_ATTEMPTS_ENV_VAR]
            )
        if PURGE_ORPHANED_MIRRORS_ENV_VAR in env and "purge_orphaned_mirrors" not in overrides:
            values["purge_orphaned_mirrors"] = _parse_bool(
                PURGE_ORPHANED_MIRRORS_ENV_VAR, env[PURGE_ORPHANED_MIRRORS_ENV_VAR]
            )
        if LOG_LEVEL_ENV_VAR in env:
            values["log_level"] = env[LOG_LEVEL_ENV_VAR].upper()

        values.update(overrides)
        return cls(**values)
