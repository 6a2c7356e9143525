"""Polling controller manager.

Drives a set of reconcilers by periodically listing objects from the store
and deciding which ones need a reconcile:

1. Objects seen for the first time
2. Updates accepted by ``should_enqueue_update``
3. Objects whose requeue delay (or error backoff) has elapsed
4. Everything else once per resync interval

Reconciles run concurrently under a semaphore. At most one reconcile per
object is in flight at any time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .config import (
    DEFAULT_MAX_CONCURRENT_RECONCILES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RESYNC_INTERVAL_SECONDS,
)
from .engine import ReconcileResult, Reconciler
from .models import ManagedObject, ObjectKey
from .predicates import should_enqueue_update
from .store import ObjectStore, StoreError

logger = logging.getLogger(__name__)

# Backoff after a failed reconcile: 5s, 10s, 20s ... capped at 5 minutes
ERROR_BACKOFF_BASE_SECONDS = 5
ERROR_BACKOFF_MAX_SECONDS = 300

TrackingKey = tuple[str, ObjectKey]


def error_backoff_seconds(failures: int) -> float:
    """Delay before retrying after ``failures`` consecutive failed reconciles."""
    if failures < 1:
        return 0.0
    return float(min(ERROR_BACKOFF_BASE_SECONDS * 2 ** (failures - 1), ERROR_BACKOFF_MAX_SECONDS))


@dataclass
class _Tracked:
    observed: ManagedObject
    due: datetime | None = None
    failures: int = 0


class ControllerManager:
    """Runs reconcilers until shutdown."""

    def __init__(
        self,
        reconcilers: Iterable[Reconciler],
        store: ObjectStore,
        namespace: str | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        resync_interval_seconds: float = DEFAULT_RESYNC_INTERVAL_SECONDS,
        max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._reconcilers = list(reconcilers)
        self._store = store
        self._namespace = namespace
        self._poll_interval_seconds = poll_interval_seconds
        self._resync_interval_seconds = resync_interval_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent_reconciles)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._shutdown_event = asyncio.Event()
        self._tracked: dict[TrackingKey, _Tracked] = {}
        self._in_flight: set[TrackingKey] = set()
        self._tasks: set[asyncio.Task[ReconcileResult]] = set()

    async def run(self) -> None:
        """Poll and reconcile until shutdown, then wait for in-flight reconciles."""
        logger.info(
            "Starting controller manager",
            extra={
                "kinds": [r.kind.kind for r in self._reconcilers],
                "namespace": self._namespace or "*",
                "poll_interval_seconds": self._poll_interval_seconds,
                "resync_interval_seconds": self._resync_interval_seconds,
            },
        )

        while not self._shutdown_event.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._poll_interval_seconds,
                )
            except TimeoutError:
                # Normal timeout, continue to next poll
                pass

        await self.drain()
        logger.info("Controller manager shutdown complete")

    def shutdown(self) -> None:
        """Signal the manager to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def drain(self) -> list[ReconcileResult]:
        """Wait for all in-flight reconciles."""
        if not self._tasks:
            return []
        return list(await asyncio.gather(*self._tasks))

    async def poll_once(self) -> list[TrackingKey]:
        """List every kind once and start reconciles for objects that need one.

        Returns:
            The (kind, key) pairs that were enqueued.
        """
        now = self._clock()
        enqueued: list[TrackingKey] = []

        for reconciler in self._reconcilers:
            kind = reconciler.kind
            try:
                objects = await self._store.list(kind, self._namespace)
            except StoreError as e:
                logger.error("Failed to list objects", extra={"kind": kind.kind, "error": str(e)})
                continue

            seen: set[TrackingKey] = set()
            for obj in objects:
                tracking_key = (kind.kind, obj.key)
                seen.add(tracking_key)
                if self._needs_reconcile(tracking_key, obj, now):
                    enqueued.append(tracking_key)
                    self._start(reconciler, tracking_key)

            for tracking_key in [k for k in self._tracked if k[0] == kind.kind and k not in seen]:
                del self._tracked[tracking_key]

        return enqueued

    def _needs_reconcile(
        self, tracking_key: TrackingKey, obj: ManagedObject, now: datetime
    ) -> bool:
        if tracking_key in self._in_flight:
            return False

        tracked = self._tracked.get(tracking_key)
        if tracked is None:
            self._tracked[tracking_key] = _Tracked(observed=obj)
            return True

        previous = tracked.observed
        tracked.observed = obj
        if should_enqueue_update(previous, obj):
            return True
        return tracked.due is not None and now >= tracked.due

    def _start(self, reconciler: Reconciler, tracking_key: TrackingKey) -> None:
        self._in_flight.add(tracking_key)
        task = asyncio.create_task(self._reconcile(reconciler, tracking_key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reconcile(
        self, reconciler: Reconciler, tracking_key: TrackingKey
    ) -> ReconcileResult:
        try:
            async with self._semaphore:
                result = await reconciler.reconcile(tracking_key[1])
        finally:
            self._in_flight.discard(tracking_key)

        tracked = self._tracked.get(tracking_key)
        if tracked is not None:
            now = self._clock()
            if result.error is not None:
                tracked.failures += 1
                delay = error_backoff_seconds(tracked.failures)
            elif result.requeue_after is not None:
                tracked.failures = 0
                delay = result.requeue_after
            else:
                tracked.failures = 0
                delay = self._resync_interval_seconds
            tracked.due = now + timedelta(seconds=delay)
        return result
