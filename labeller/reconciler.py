"""Reconciliation engine.

Runs one fetch -> diff -> apply cycle per request:

    Idle -> Fetching -> Diffing -> Applying -> Idle

A missing node ends the cycle as ``skipped`` without an error; the next
trigger will try again. A read failure, a write conflict or a write failure
is raised to the caller, which owns any retry policy. The engine itself
never retries and keeps no node state between cycles: every cycle re-reads
the node and recomputes the full desired label set, so a stale or repeated
request cannot leave the node in a wrong state.

Cycles never overlap. An ``asyncio.Lock`` serializes ``reconcile`` calls,
because the read-modify-write against the node is not atomic on its own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Protocol

from labeller.config import LabellerConfig
from labeller.convergence import compute_delta
from labeller.discovery import SnapshotProvider
from labeller.errors import NodeNotFoundError
from labeller.labels import owned_keys
from labeller.models import (
    CycleOutcome,
    CycleResult,
    CycleState,
    NodeRecord,
    ReconcileRequest,
)

logger = logging.getLogger(__name__)


class NodeStore(Protocol):
    """Read/conditional-write access to node objects."""

    def get(self, name: str) -> NodeRecord: ...

    def update(self, record: NodeRecord, labels: Mapping[str, str]) -> NodeRecord: ...


class ReconciliationEngine:
    """Converges the owned labels of one node onto the discovered capabilities."""

    def __init__(
        self,
        store: NodeStore,
        snapshots: SnapshotProvider,
        labeller_config: LabellerConfig,
    ):
        self._store = store
        self._snapshots = snapshots
        self._config = labeller_config
        self._lock = asyncio.Lock()
        self._state = CycleState.IDLE

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def reconcile(self, request: ReconcileRequest) -> CycleResult:
        """Run one reconciliation cycle for ``request``.

        Returns:
            CycleResult with outcome applied, unchanged or skipped.

        Raises:
            NodeReadError, NodeWriteConflictError, NodeWriteError,
            DiscoveryError: the cycle failed; nothing is retried here.
        """
        async with self._lock:
            try:
                result = await self._run_cycle(request)
            finally:
                self._state = CycleState.IDLE
            return result

    async def _run_cycle(self, request: ReconcileRequest) -> CycleResult:
        log_prefix = f"[{request.name}]"
        prefix = self._config.label_prefix

        self._state = CycleState.FETCHING
        try:
            record = await asyncio.to_thread(self._store.get, request.name)
        except NodeNotFoundError:
            logger.warning(f"{log_prefix} Node not found, skipping cycle")
            return CycleResult(request=request, outcome=CycleOutcome.SKIPPED)

        self._state = CycleState.DIFFING
        snapshot = await asyncio.to_thread(self._snapshots.current)
        delta = compute_delta(record.labels, snapshot, prefix, self._config.label_value)
        added = frozenset(delta.to_set)
        removed = delta.to_remove

        if delta.is_empty:
            owned = len(owned_keys(record.labels, prefix))
            logger.debug(f"{log_prefix} Labels already converged ({owned} owned)")
            return CycleResult(request=request, outcome=CycleOutcome.UNCHANGED, owned=owned)

        self._state = CycleState.APPLYING
        desired = delta.apply(record.labels)
        await asyncio.to_thread(self._store.update, record, desired)
        logger.info(
            f"{log_prefix} Applied labels: +{len(added)} -{len(removed)}",
            extra={"added": sorted(added), "removed": sorted(removed)},
        )
        return CycleResult(
            request=request,
            outcome=CycleOutcome.APPLIED,
            added=added,
            removed=removed,
            owned=len(owned_keys(desired, prefix)),
        )
