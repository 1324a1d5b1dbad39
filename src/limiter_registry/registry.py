"""Limiter registry: membership bookkeeping and mirror synchronization."""

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from .config import RegistrySettings
from .exceptions import ConcurrentModificationError, ValidationError
from .mirror import MirrorStore
from .models import (
    LimiterView,
    MirrorPresent,
    RateLimiterDefinition,
    encode_apps,
    parse_view,
    validate_positive_int,
)
from .naming import mirror_key, validate_app_context, validate_limiter_name
from .repository import Repository
from .repository_protocol import MirrorStoreProtocol, RegistryStoreProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LimiterRegistry:
    """
    Registry of rate limiter definitions shared between app contexts.

    Keeps the durable definition store and the Redis mirrors in step:

    - ``upsert`` adds an app context to a limiter (creating it if needed)
      and overwrites its capacity and rate.
    - ``remove_membership`` removes an app context and deletes the limiter
      once no context depends on it.
    - Every mutation of an existing or new limiter ends with exactly one
      atomic mirror initialization carrying the post-mutation app set.

    Mutations are read-modify-write cycles guarded by the store's version
    check and retried up to ``max_write_attempts`` times on conflict.

    Example:
        registry = LimiterRegistry.from_settings(RegistrySettings.from_env())
        async with registry:
            await registry.save_or_update("login", "app1", max_permits=100, rate=10)
            views = await registry.list_for_context("app1")
    """

    def __init__(
        self,
        store: RegistryStoreProtocol,
        mirror: MirrorStoreProtocol,
        max_write_attempts: int = 5,
        purge_orphaned_mirrors: bool = False,
    ) -> None:
        if max_write_attempts < 1:
            raise ValidationError("max_write_attempts", max_write_attempts, "Must be >= 1")
        self._store = store
        self._mirror = mirror
        self.max_write_attempts = max_write_attempts
        self.purge_orphaned_mirrors = purge_orphaned_mirrors

    @classmethod
    def from_settings(cls, settings: RegistrySettings) -> "LimiterRegistry":
        """Wire a registry backed by DynamoDB and Redis from settings."""
        return cls(
            store=Repository(
                table_name=settings.table_name,
                region=settings.region,
                endpoint_url=settings.endpoint_url,
            ),
            mirror=MirrorStore(
                redis_url=settings.redis_url,
                key_prefix=settings.key_prefix,
            ),
            max_write_attempts=settings.max_write_attempts,
            purge_orphaned_mirrors=settings.purge_orphaned_mirrors,
        )

    @property
    def store(self) -> RegistryStoreProtocol:
        """The durable definition store."""
        return self._store

    @property
    def mirror(self) -> MirrorStoreProtocol:
        """The shared-state mirror store."""
        return self._mirror

    async def close(self) -> None:
        """Close both stores."""
        await self._store.close()
        await self._mirror.close()

    async def __aenter__(self) -> "LimiterRegistry":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def ping(self) -> dict[str, bool]:
        """Check both stores; returns reachability per store."""
        return {
            "registry": await self._store.ping(),
            "mirror": await self._mirror.ping(),
        }

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_all(self) -> list[RateLimiterDefinition]:
        """List every definition in the registry's listing order."""
        return await self._store.list_definitions()

    async def find_by_name(self, name: str) -> RateLimiterDefinition | None:
        """Get a definition by name."""
        return await self._store.get_definition(name)

    async def read_views(
        self,
        items: Sequence[RateLimiterDefinition | str],
    ) -> list[LimiterView]:
        """
        Read the live mirror state of many limiters in one round trip.

        Args:
            items: Definitions or bare limiter names

        Returns:
            Views in input order. Limiters whose mirror does not exist yet
            are omitted.

        Raises:
            MirrorCorruptedError: If any present mirror has a malformed field
        """
        names = [item.name if isinstance(item, RateLimiterDefinition) else item for item in items]
        replies = await self._mirror.read_many(names)

        views: list[LimiterView] = []
        for name, reply in zip(names, replies, strict=True):
            if not isinstance(reply, MirrorPresent):
                continue
            key = mirror_key(name, self._mirror.key_prefix)
            views.append(parse_view(name, key, reply.fields))
        return views

    async def list_for_context(self, app: str) -> list[LimiterView]:
        """
        List the limiters an app context depends on, with live mirror values.

        Args:
            app: App context identifier

        Returns:
            Views for every definition whose apps include ``app``
        """
        definitions = [d for d in await self.list_all() if d.has_app(app)]
        return await self.read_views(definitions)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def upsert(
        self,
        name: str,
        app: str,
        max_permits: int,
        rate: int,
    ) -> RateLimiterDefinition:
        """
        Add an app context to a limiter and set its capacity and rate.

        Creates the limiter with ``apps={app}`` if it does not exist;
        otherwise stores the union of the existing apps and ``app`` together
        with the new ``max_permits`` and ``rate``.

        Returns:
            The stored definition

        Raises:
            ValidationError: If any argument is invalid (nothing is written)
            ConcurrentModificationError: If every write attempt conflicted
            MirrorSyncError: If the mirror initialization fails
        """
        validate_limiter_name(name)
        validate_app_context(app)
        validate_positive_int("max_permits", max_permits)
        validate_positive_int("rate", rate)

        async def attempt() -> RateLimiterDefinition:
            current = await self._store.get_definition(name)
            if current is None:
                candidate = RateLimiterDefinition(name, frozenset({app}), max_permits, rate)
                return await self._store.put_definition(candidate, expected_version=None)
            candidate = RateLimiterDefinition(
                name,
                current.apps | {app},
                max_permits,
                rate,
            )
            return await self._store.put_definition(candidate, expected_version=current.version)

        stored = await self._with_retry(name, attempt)
        logger.info(
            "Limiter %s saved: apps=%s max_permits=%d rate=%d",
            name,
            stored.encoded_apps,
            stored.max_permits,
            stored.rate,
        )
        await self.sync_definition(stored)
        return stored

    async def remove_membership(self, name: str, app: str) -> RateLimiterDefinition | None:
        """
        Remove an app context from a limiter.

        Unknown limiters are ignored. When the last app context is removed
        the definition is deleted; its mirror is still reset with an empty
        app set and, unless ``purge_orphaned_mirrors`` is set, left in place.

        Returns:
            The stored definition, or None if it was deleted or never existed

        Raises:
            ValidationError: If any argument is invalid (nothing is written)
            ConcurrentModificationError: If every write attempt conflicted
            MirrorSyncError: If the mirror initialization fails
        """
        validate_limiter_name(name)
        validate_app_context(app)

        async def attempt() -> tuple[RateLimiterDefinition, RateLimiterDefinition | None] | None:
            current = await self._store.get_definition(name)
            if current is None:
                return None
            remaining = current.apps - {app}
            if not remaining:
                await self._store.delete_definition(name, expected_version=current.version)
                return current, None
            candidate = dataclasses.replace(current, apps=remaining)
            stored = await self._store.put_definition(candidate, expected_version=current.version)
            return current, stored

        outcome = await self._with_retry(name, attempt)
        if outcome is None:
            logger.debug("Limiter %s not found, nothing to remove for %s", name, app)
            return None

        previous, stored = outcome
        remaining_apps = stored.apps if stored is not None else frozenset()
        if stored is None:
            logger.info("Limiter %s deleted: last app context %s removed", name, app)
        else:
            logger.info("Limiter %s updated: apps=%s", name, stored.encoded_apps)

        await self._mirror.apply(
            name,
            previous.max_permits,
            previous.rate,
            encode_apps(remaining_apps),
        )
        if stored is None and self.purge_orphaned_mirrors:
            await self._mirror.delete(name)
        return stored

    async def save_or_update(
        self,
        name: str,
        app_context: str,
        max_permits: int,
        rate: int,
    ) -> RateLimiterDefinition:
        """Admin entry point for ``upsert``."""
        return await self.upsert(name, app_context, max_permits, rate)

    async def delete(self, app_context: str, name: str) -> RateLimiterDefinition | None:
        """Admin entry point for ``remove_membership``."""
        return await self.remove_membership(name, app_context)

    # -------------------------------------------------------------------------
    # Mirror synchronization
    # -------------------------------------------------------------------------

    async def sync_definition(self, definition: RateLimiterDefinition) -> int:
        """
        Push a definition into its mirror.

        Resets the mirror's ``curr_permits`` and ``last_mill_second`` as a
        side effect, granting every dependent app a fresh bucket.

        Raises:
            MirrorSyncError: If the mirror initialization fails
        """
        return await self._mirror.apply(
            definition.name,
            definition.max_permits,
            definition.rate,
            definition.encoded_apps,
        )

    async def purge_mirror(self, name: str) -> bool:
        """
        Remove the mirror of a limiter that no longer exists in the registry.

        Returns:
            True if a mirror was removed

        Raises:
            ValidationError: If the limiter still exists
        """
        validate_limiter_name(name)
        if await self._store.get_definition(name) is not None:
            raise ValidationError(
                "name", name, "Limiter still exists; remove its app contexts first"
            )
        return await self._mirror.delete(name)

    async def _with_retry(self, name: str, attempt: Callable[[], Awaitable[T]]) -> T:
        """Run a read-modify-write attempt until it wins its version check."""
        for attempt_no in range(1, self.max_write_attempts + 1):
            try:
                return await attempt()
            except ConcurrentModificationError:
                logger.info(
                    "Write conflict on limiter %s (attempt %d/%d)",
                    name,
                    attempt_no,
                    self.max_write_attempts,
                )
        raise ConcurrentModificationError(name, attempts=self.max_write_attempts)
