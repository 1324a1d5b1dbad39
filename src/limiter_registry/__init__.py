"""
limiter-registry: shared rate limiter definitions mirrored into Redis.

Definitions live in DynamoDB; every change is pushed into a Redis hash that
enforcement clients read and mutate. A background reconciler re-pushes every
definition periodically.

Example:
    from limiter_registry import LimiterRegistry, RegistrySettings

    async with LimiterRegistry.from_settings(RegistrySettings.from_env()) as registry:
        await registry.save_or_update("login", "app1", max_permits=100, rate=10)
        for view in await registry.list_for_context("app1"):
            print(view.name, view.curr_permits, view.max_permits)
"""

from .config import RegistrySettings
from .exceptions import (
    ConcurrentModificationError,
    ConfigurationError,
    LimiterRegistryError,
    MirrorCorruptedError,
    MirrorError,
    MirrorSyncError,
    RegistryError,
    ValidationError,
)
from .mirror import INIT_SCRIPT, MirrorStore
from .models import (
    MIRROR_ABSENT,
    LimiterView,
    MirrorAbsent,
    MirrorPresent,
    MirrorReply,
    RateLimiterDefinition,
)
from .reconciler import ReconcileResult, Reconciler
from .registry import LimiterRegistry
from .repository import Repository
from .repository_protocol import MirrorStoreProtocol, RegistryStoreProtocol

__all__ = [
    # Main classes
    "LimiterRegistry",
    "Reconciler",
    "RegistrySettings",
    # Stores
    "Repository",
    "MirrorStore",
    "RegistryStoreProtocol",
    "MirrorStoreProtocol",
    "INIT_SCRIPT",
    # Models
    "RateLimiterDefinition",
    "LimiterView",
    "MirrorPresent",
    "MirrorAbsent",
    "MirrorReply",
    "MIRROR_ABSENT",
    "ReconcileResult",
    # Exceptions
    "LimiterRegistryError",
    "ConfigurationError",
    "RegistryError",
    "MirrorError",
    "ValidationError",
    "ConcurrentModificationError",
    "MirrorSyncError",
    "MirrorCorruptedError",
]
