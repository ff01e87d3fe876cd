"""Core data types shared by the reconciliation engine and its triggers."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class SnapshotPolicy(str, Enum):
    """When the capability snapshot is (re)computed."""
    STARTUP = "startup"  # once at process start, reused for every cycle
    PER_CYCLE = "per_cycle"  # fresh discovery on every reconciliation


class TickMode(str, Enum):
    """How the periodic trigger waits on the cycle it requested."""
    BLOCKING = "blocking"
    FIRE_AND_FORGET = "fire_and_forget"


class ChangeKind(str, Enum):
    """Class of a node change notification."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    GENERIC = "generic"


class CycleState(str, Enum):
    """Where the engine is within a reconciliation cycle."""
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    APPLYING = "applying"


class CycleOutcome(str, Enum):
    """Terminal result of one reconciliation cycle."""
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class CapabilitySnapshot(Mapping[str, bool]):
    """Immutable capability-key -> presence mapping from one discovery run."""

    __slots__ = ("_flags",)

    def __init__(self, flags: Mapping[str, bool] | None = None):
        self._flags = MappingProxyType(
            {str(k): bool(v) for k, v in (flags or {}).items()}
        )

    def __getitem__(self, key: str) -> bool:
        return self._flags[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._flags)

    def __len__(self) -> int:
        return len(self._flags)

    def __repr__(self) -> str:
        return f"CapabilitySnapshot({dict(self._flags)!r})"

    def present(self) -> frozenset[str]:
        """Keys of capabilities flagged as present."""
        return frozenset(k for k, v in self._flags.items() if v)


@dataclass(frozen=True)
class NodeRecord:
    """Working copy of a node's labels as read from the cluster.

    ``resource_version`` is the optimistic-concurrency token the update
    must present; a mismatch means someone else wrote the node first.
    """

    name: str
    labels: Mapping[str, str] = field(default_factory=dict)
    resource_version: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))


@dataclass(frozen=True)
class ReconcileRequest:
    """Re-check convergence for the named node."""

    name: str


@dataclass(frozen=True)
class NodeEvent:
    """A raw change notification from the node watch."""

    kind: ChangeKind
    name: str


@dataclass(frozen=True)
class CycleResult:
    """What a single reconciliation cycle did."""

    request: ReconcileRequest
    outcome: CycleOutcome
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    error: str | None = None
    owned: int | None = None  # owned labels on the node after the cycle

    @property
    def failed(self) -> bool:
        return self.outcome is CycleOutcome.FAILED
