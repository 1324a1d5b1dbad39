"""Storage protocols for the registry and its shared-state mirror.

Both protocols use Python's typing.Protocol with the @runtime_checkable
decorator, enabling duck typing and isinstance() checks at runtime. The
DynamoDB ``Repository`` and the Redis ``MirrorStore`` are the shipped
implementations; tests and alternative backends only need matching methods.
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import MirrorReply, RateLimiterDefinition


@runtime_checkable
class RegistryStoreProtocol(Protocol):
    """
    Protocol for the durable store of limiter definitions.

    Writes are conditional on the definition ``version`` so that concurrent
    read-modify-write cycles on the same name cannot silently lose updates.

    Example:
        class MyStore:
            async def get_definition(self, name: str) -> RateLimiterDefinition | None:
                ...

        store = MyStore()
        assert isinstance(store, RegistryStoreProtocol)  # True at runtime
    """

    async def close(self) -> None:
        """
        Close the backend connection and release resources.

        Safe to call multiple times.
        """
        ...

    async def ping(self) -> bool:
        """
        Check if the backend is reachable.

        Returns:
            True if the backend is accessible, False otherwise.
        """
        ...

    async def list_definitions(self) -> "list[RateLimiterDefinition]":
        """
        List every definition.

        Returns:
            All definitions, in a stable order
        """
        ...

    async def get_definition(self, name: str) -> "RateLimiterDefinition | None":
        """
        Get a definition by name.

        Returns:
            The definition if found, None otherwise
        """
        ...

    async def put_definition(
        self,
        definition: "RateLimiterDefinition",
        expected_version: int | None,
    ) -> "RateLimiterDefinition":
        """
        Create or replace a definition.

        Args:
            definition: Definition to persist (its ``apps`` must not be empty)
            expected_version: None to require that no definition exists yet,
                otherwise the version the stored definition must still have

        Returns:
            The stored definition carrying its new version

        Raises:
            ConcurrentModificationError: If the version check fails
        """
        ...

    async def delete_definition(self, name: str, expected_version: int) -> None:
        """
        Delete a definition.

        Raises:
            ConcurrentModificationError: If the version check fails
        """
        ...


@runtime_checkable
class MirrorStoreProtocol(Protocol):
    """
    Protocol for the shared store holding runtime mirrors.

    Implementations must write every mirror field in one atomic step and
    report absent mirrors as ``MIRROR_ABSENT`` rather than raising.
    """

    @property
    def key_prefix(self) -> str:
        """Prefix prepended to limiter names to form mirror keys."""
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        ...

    async def ping(self) -> bool:
        """Check if the shared store is reachable."""
        ...

    async def apply(
        self,
        name: str,
        max_permits: int,
        rate: int,
        apps: str,
    ) -> int:
        """
        Atomically (re)initialize a mirror.

        Sets ``apps``, ``max_permits`` and ``rate``, resets ``curr_permits``
        to 0 and ``last_mill_second`` to the store's clock.

        Args:
            name: Limiter name
            max_permits: Capacity
            rate: Refill rate
            apps: Comma-joined app contexts (may be empty)

        Returns:
            The success status of the store-side operation

        Raises:
            MirrorSyncError: If the operation fails or reports failure
        """
        ...

    async def read_many(self, names: Sequence[str]) -> "list[MirrorReply]":
        """
        Read many mirrors in one round trip.

        Returns:
            One reply per name, in input order
        """
        ...

    async def delete(self, name: str) -> bool:
        """
        Remove a mirror.

        Returns:
            True if a mirror was removed
        """
        ...
