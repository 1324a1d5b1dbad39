"""Redis store for the shared-state mirrors of limiter definitions.

Each limiter is mirrored into a Redis hash at ``<key prefix><name>`` with the
string fields ``apps``, ``max_permits``, ``curr_permits``, ``rate`` and
``last_mill_second``. Enforcement clients consume and mutate these hashes;
this module only ever (re)initializes them, always through ``INIT_SCRIPT`` so
that all five fields change in one atomic step.
"""

import logging
from collections.abc import Sequence
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from .exceptions import MirrorSyncError
from .models import MIRROR_ABSENT, MirrorPresent, MirrorReply
from .naming import DEFAULT_KEY_PREFIX, mirror_key, validate_key_prefix

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

SYNC_OK = 1

# KEYS[1] = mirror key
# ARGV[1] = max_permits, ARGV[2] = rate, ARGV[3] = apps (comma-joined)
# The timestamp comes from the Redis server clock, never from the caller.
INIT_SCRIPT = """
local now = redis.call('TIME')
local now_ms = tonumber(now[1]) * 1000 + math.floor(tonumber(now[2]) / 1000)
redis.call('HSET', KEYS[1],
    'apps', ARGV[3],
    'max_permits', ARGV[1],
    'rate', ARGV[2],
    'curr_permits', '0',
    'last_mill_second', string.format('%d', now_ms))
return 1
"""


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class MirrorStore:
    """
    Async Redis store for limiter mirrors.

    The client is created lazily from ``redis_url`` unless one is injected;
    an injected client is left open by ``close()``.
    """

    def __init__(
        self,
        redis_url: str = DEFAULT_REDIS_URL,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        client: Any = None,
    ) -> None:
        validate_key_prefix(key_prefix)
        self.redis_url = redis_url
        self._key_prefix = key_prefix
        self._client: Any = client
        self._owns_client = client is None
        self._init_script: Any = None

    @property
    def key_prefix(self) -> str:
        """Prefix prepended to limiter names to form mirror keys."""
        return self._key_prefix

    def key_for(self, name: str) -> str:
        """Redis key of a limiter's mirror."""
        return mirror_key(name, self._key_prefix)

    def _get_client(self) -> Any:
        """Get or create the Redis client."""
        if self._client is None:
            self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def close(self) -> None:
        """Close the Redis client if this store created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._init_script = None

    async def __aenter__(self) -> "MirrorStore":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def ping(self) -> bool:
        """Check that Redis is reachable."""
        try:
            return bool(await self._get_client().ping())
        except RedisError as e:
            logger.warning("Mirror store %s unreachable: %s", self.redis_url, e)
            return False

    # -------------------------------------------------------------------------
    # Atomic initialization
    # -------------------------------------------------------------------------

    async def apply(self, name: str, max_permits: int, rate: int, apps: str) -> int:
        """
        Atomically (re)initialize a limiter's mirror.

        Writes ``apps``, ``max_permits`` and ``rate``, resets ``curr_permits``
        to 0 and ``last_mill_second`` to the server clock, all in one script
        invocation.

        Args:
            name: Limiter name
            max_permits: Capacity
            rate: Refill rate
            apps: Comma-joined app contexts (empty when the limiter was deleted)

        Returns:
            The script status (always SYNC_OK when this returns)

        Raises:
            MirrorSyncError: If Redis fails or the script reports failure
        """
        key = self.key_for(name)
        client = self._get_client()
        if self._init_script is None:
            self._init_script = client.register_script(INIT_SCRIPT)

        try:
            status = await self._init_script(
                keys=[key],
                args=[str(max_permits), str(rate), apps],
            )
        except RedisError as e:
            raise MirrorSyncError(key, cause=e) from e

        if status != SYNC_OK:
            raise MirrorSyncError(key, status=status)

        logger.debug(
            "Mirror %s initialized: max_permits=%s rate=%s apps=%r",
            key,
            max_permits,
            rate,
            apps,
        )
        return status

    # -------------------------------------------------------------------------
    # Bulk reads
    # -------------------------------------------------------------------------

    async def read_many(self, names: Sequence[str]) -> list[MirrorReply]:
        """
        Read many mirrors with a single pipelined round trip.

        The pipeline is not a transaction: each hash may be observed at a
        slightly different instant.

        Args:
            names: Limiter names

        Returns:
            One reply per name, in input order. Missing hashes are MIRROR_ABSENT.
        """
        if not names:
            return []

        client = self._get_client()
        async with client.pipeline(transaction=False) as pipe:
            for name in names:
                pipe.hgetall(self.key_for(name))
            raw_replies = await pipe.execute()

        replies: list[MirrorReply] = []
        for raw in raw_replies:
            if not raw:
                replies.append(MIRROR_ABSENT)
            else:
                replies.append(MirrorPresent({_text(k): _text(v) for k, v in raw.items()}))
        return replies

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    async def delete(self, name: str) -> bool:
        """
        Remove a limiter's mirror.

        Returns:
            True if a mirror existed and was removed
        """
        key = self.key_for(name)
        removed = await self._get_client().delete(key)
        if removed:
            logger.info("Mirror %s removed", key)
        return bool(removed)
