"""Controller: wires triggers, the request queue and the engine together.

One worker task drains the ``RequestQueue`` and runs the engine for each
request, so at most one cycle is in flight at a time. A failed cycle is
requeued after an exponential backoff; the engine itself never retries.
The periodic trigger keeps running regardless, so a failing node is also
retried on every tick.

Shutdown disarms the timer, stops the watch, drops pending requeues and
lets an in-flight cycle finish before returning.
"""
from __future__ import annotations

import asyncio
import logging

from labeller.config import LabellerConfig
from labeller.errors import LabellerError
from labeller.metrics import (
    owned_labels_applied,
    reconcile_cycles,
    reconcile_duration,
    triggers_received,
)
from labeller.models import CycleOutcome, CycleResult, NodeEvent, ReconcileRequest
from labeller.reconciler import ReconciliationEngine
from labeller.timing import AsyncTimedOperation
from labeller.triggers import PeriodicTrigger, RequestQueue, admit_event
from labeller.watch import NodeEventWatcher

logger = logging.getLogger(__name__)


def calculate_backoff(failures: int, base: float, maximum: float) -> float:
    """min(base * 2^(failures-1), maximum) for the n-th consecutive failure."""
    if failures <= 0:
        return 0.0
    return min(base * (2 ** (failures - 1)), maximum)


class Controller:
    """Runs the labeller for a single node until stopped."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        labeller_config: LabellerConfig,
        watcher: NodeEventWatcher | None = None,
    ):
        self._engine = engine
        self._config = labeller_config
        self._watcher = watcher
        self._queue = RequestQueue()
        self._request = ReconcileRequest(name=labeller_config.node_name)
        self._periodic = PeriodicTrigger(
            labeller_config.poll_interval,
            lambda: self.submit("timer"),
            labeller_config.tick_mode,
        )
        self._worker: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._requeue_handle: asyncio.TimerHandle | None = None
        self._failures = 0
        self._stopping = False

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def submit(self, source: str) -> asyncio.Future[CycleResult]:
        """Request a cycle for this node; ``source`` is only used for metrics."""
        triggers_received.labels(source=source).inc()
        return self._queue.submit(self._request)

    def on_event(self, event: NodeEvent) -> None:
        """Watch callback: submit a request if the event is admitted."""
        if not admit_event(event, self._config.node_name):
            return
        logger.info("Node %s event for %s admitted", event.kind.value, event.name)
        self.submit("event")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the worker, the watch (if any) and the periodic trigger.

        Raises:
            WatchRegistrationError: the watch could not be established.
        """
        if self._worker is not None:
            return
        self._stopping = False
        self._worker = asyncio.create_task(self._worker_loop(), name="reconcile-worker")
        if self._watcher is not None:
            try:
                await self._watcher.start(self.on_event)
            except Exception:
                await self.stop()
                raise
        self._periodic.start()
        logger.info("Controller started for node %s", self._config.node_name)

    async def stop(self) -> None:
        """Stop triggers, drop queued work and wait for any in-flight cycle."""
        self._stopping = True
        await self._periodic.stop()
        if self._watcher is not None:
            await self._watcher.stop()
        if self._requeue_handle is not None:
            self._requeue_handle.cancel()
            self._requeue_handle = None

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._inflight is not None and not self._inflight.done():
            logger.info("Waiting for in-flight reconciliation to finish")
            await asyncio.wait({self._inflight})
        self._queue.cancel_all()
        logger.info("Controller stopped")

    async def run(self, stop_event: asyncio.Event) -> None:
        """Start, wait for ``stop_event``, then shut down cleanly."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _worker_loop(self) -> None:
        while True:
            request, future = await self._queue.get()
            self._inflight = asyncio.create_task(self._process(request, future))
            # Shielded so cancelling the worker never interrupts a cycle mid-write.
            await asyncio.shield(self._inflight)

    async def _process(
        self, request: ReconcileRequest, future: asyncio.Future[CycleResult]
    ) -> CycleResult:
        async with AsyncTimedOperation(
            histogram=reconcile_duration,
            labels={"outcome": "auto"},
            log_event="reconcile_cycle",
            log_extras={"node_name": request.name},
        ) as timer:
            try:
                result = await self._engine.reconcile(request)
            except LabellerError as e:
                logger.error(f"Reconciliation of {request.name} failed: {e.message}")
                result = CycleResult(request=request, outcome=CycleOutcome.FAILED, error=e.message)
            except Exception as e:
                logger.exception(f"Unexpected error reconciling {request.name}")
                result = CycleResult(request=request, outcome=CycleOutcome.FAILED, error=str(e))
            timer.outcome = result.outcome.value

        reconcile_cycles.labels(outcome=result.outcome.value).inc()
        self._after_cycle(result)
        if not future.done():
            future.set_result(result)
        return result

    def _after_cycle(self, result: CycleResult) -> None:
        if result.failed:
            self._failures += 1
            self._schedule_requeue(result.request)
            return

        self._failures = 0
        if self._requeue_handle is not None:
            self._requeue_handle.cancel()
            self._requeue_handle = None
        if result.owned is not None:
            owned_labels_applied.set(result.owned)

    def _schedule_requeue(self, request: ReconcileRequest) -> None:
        if self._stopping:
            return
        if self._requeue_handle is not None:
            self._requeue_handle.cancel()
        delay = calculate_backoff(
            self._failures,
            self._config.retry_backoff_base,
            self._config.retry_backoff_max,
        )
        logger.info(
            "Requeueing %s in %.1fs (consecutive failures: %d)",
            request.name,
            delay,
            self._failures,
        )
        loop = asyncio.get_running_loop()
        self._requeue_handle = loop.call_later(delay, self._requeue, request)

    def _requeue(self, request: ReconcileRequest) -> None:
        self._requeue_handle = None
        triggers_received.labels(source="requeue").inc()
        self._queue.submit(request)
