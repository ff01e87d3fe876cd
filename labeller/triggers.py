"""Trigger scheduling: event admission, the request queue and the poll timer.

Two producers feed one queue. The node watch submits a request when a
notification for this node passes ``admit_event``; the periodic trigger
submits one every ``interval`` seconds regardless. Both go through the same
``RequestQueue.submit`` call and the consumer cannot tell them apart.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from labeller.models import (
    ChangeKind,
    CycleResult,
    NodeEvent,
    ReconcileRequest,
    TickMode,
)

logger = logging.getLogger(__name__)

# Only node creation wakes the engine. Label drift caused by another actor
# is corrected on the next timer tick instead of immediately.
ADMITTED_CHANGE_KINDS: frozenset[ChangeKind] = frozenset({ChangeKind.CREATED})


def admit_event(
    event: NodeEvent,
    node_name: str,
    admitted: frozenset[ChangeKind] = ADMITTED_CHANGE_KINDS,
) -> bool:
    """True if ``event`` should produce a reconcile request for ``node_name``."""
    return event.name == node_name and event.kind in admitted


class RequestQueue:
    """FIFO of reconcile requests that coalesces duplicates.

    A request submitted while an equal one is still waiting shares the
    waiting one's future instead of being queued twice. Once a request has
    been taken by the consumer, a new submit queues a fresh cycle, so a
    trigger arriving mid-cycle still gets a cycle that starts after it.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ReconcileRequest] = asyncio.Queue()
        self._pending: dict[ReconcileRequest, asyncio.Future[CycleResult]] = {}

    def submit(self, request: ReconcileRequest) -> asyncio.Future[CycleResult]:
        """Queue ``request``; the future resolves with the cycle's result."""
        future = self._pending.get(request)
        if future is not None:
            logger.debug("Request for %s already pending, coalescing", request.name)
            return future
        future = asyncio.get_running_loop().create_future()
        self._pending[request] = future
        self._queue.put_nowait(request)
        return future

    async def get(self) -> tuple[ReconcileRequest, asyncio.Future[CycleResult]]:
        """Wait for the next request and take ownership of its future."""
        request = await self._queue.get()
        future = self._pending.pop(request)
        return request, future

    def pending(self) -> int:
        return len(self._pending)

    def cancel_all(self) -> None:
        """Drop everything still waiting (used on shutdown)."""
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
        while not self._queue.empty():
            self._queue.get_nowait()


class PeriodicTrigger:
    """Submits a reconcile request on a fixed interval.

    In ``TickMode.BLOCKING`` each tick waits for the cycle it requested
    before sleeping again, so slow cycles push the next tick back. In
    ``TickMode.FIRE_AND_FORGET`` ticks do not wait; overlapping requests
    are still serialized by the queue consumer.
    """

    def __init__(
        self,
        interval: float,
        emit: Callable[[], Awaitable[CycleResult]],
        mode: TickMode = TickMode.BLOCKING,
    ):
        self._interval = interval
        self._emit = emit
        self._mode = mode
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking in a background task."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._tick_loop(), name="periodic-trigger")
        logger.info(
            "Periodic trigger started (interval=%.1fs, mode=%s)",
            self._interval,
            self._mode.value,
        )

    async def stop(self) -> None:
        """Disarm the timer and wait for the tick task to exit."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Periodic trigger stopped")

    async def _tick_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                self.ticks += 1
                pending = self._emit()
                if self._mode is TickMode.BLOCKING:
                    result = await asyncio.shield(pending)
                    logger.debug("Periodic cycle finished: %s", result.outcome.value)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic trigger: {e}")
