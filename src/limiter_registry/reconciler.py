"""Periodic reconciliation of limiter mirrors with the registry.

Every tick re-initializes the mirror of every persisted definition. This
serves two purposes that must both be preserved:

1. Drift repair: mirrors lost by Redis (flush, failover to an empty replica)
   are rebuilt from the durable registry.
2. Global window reset: initialization zeroes ``curr_permits``, so each tick
   rotates the consumption window of every limiter fleet-wide at once.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .exceptions import ValidationError
from .registry import LimiterRegistry

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0


@dataclass
class ReconcileResult:
    """Result of one reconciliation tick."""

    processed_count: int = 0
    synced_count: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        """True when every definition was synced."""
        return not self.errors

    def as_dict(self) -> dict[str, Any]:
        """Return the result as a dictionary."""
        return {
            "processed": self.processed_count,
            "synced": self.synced_count,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "duration_ms": self.duration_ms,
        }


class Reconciler:
    """
    Background task that periodically re-syncs every limiter mirror.

    The first tick runs as soon as the task starts; each following tick
    starts ``interval_seconds`` after the previous one completed, so ticks
    never overlap. A failure on one definition is logged and recorded without
    affecting the others or later ticks.

    Tests drive ticks directly with ``run_once()``; processes use
    ``start()``/``stop()`` or ``async with``.

    Example:
        async with Reconciler(registry, interval_seconds=60) as reconciler:
            await reconciler.wait()
    """

    def __init__(
        self,
        registry: LimiterRegistry,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValidationError(
                "interval_seconds", interval_seconds, "Must be a positive number"
            )
        self._registry = registry
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._last_result: ReconcileResult | None = None
        self._tick_count = 0

    @property
    def running(self) -> bool:
        """Whether the background task is active."""
        return self._task is not None and not self._task.done()

    @property
    def last_result(self) -> ReconcileResult | None:
        """Result of the most recent tick, if any."""
        return self._last_result

    @property
    def tick_count(self) -> int:
        """Number of ticks completed since creation."""
        return self._tick_count

    async def run_once(self) -> ReconcileResult:
        """
        Run a single reconciliation tick.

        Never raises for store failures; they are logged and collected in
        the returned result.
        """
        started = time.monotonic()
        result = ReconcileResult(started_at=datetime.now(UTC).isoformat())
        logger.info("Reconciliation tick started")

        try:
            definitions = await self._registry.list_all()
        except Exception as e:
            error_msg = f"Error listing limiter definitions: {e}"
            logger.error(error_msg, exc_info=True)
            result.errors.append(error_msg)
            definitions = []

        for definition in definitions:
            result.processed_count += 1
            try:
                await self._registry.sync_definition(definition)
                result.synced_count += 1
            except Exception as e:
                error_msg = f"Error syncing limiter {definition.name}: {e}"
                logger.warning(error_msg, exc_info=True, extra={"limiter": definition.name})
                result.errors.append(error_msg)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self._last_result = result
        self._tick_count += 1
        logger.info(
            "Reconciliation tick finished",
            extra={
                "processed": result.processed_count,
                "synced": result.synced_count,
                "failed": len(result.errors),
                "duration_ms": result.duration_ms,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the background task on the running event loop.

        Raises:
            RuntimeError: If the reconciler is already running
        """
        if self.running:
            raise RuntimeError("Reconciler is already running")
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._task = asyncio.create_task(self._run(stop_event), name="limiter-registry-reconciler")
        logger.info("Reconciler started (interval=%ss)", self.interval_seconds)

    def request_stop(self) -> None:
        """Stop scheduling further ticks without waiting (signal-handler safe)."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self) -> None:
        """
        Stop the background task.

        A tick in progress runs to completion; no further tick is scheduled.
        Safe to call when not running.
        """
        if self._task is None:
            return
        self.request_stop()
        await self._task
        self._task = None
        logger.info("Reconciler stopped after %d tick(s)", self._tick_count)

    async def wait(self) -> None:
        """Wait until the background task ends (after a stop request)."""
        if self._task is not None:
            await self._task

    async def __aenter__(self) -> "Reconciler":
        self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
