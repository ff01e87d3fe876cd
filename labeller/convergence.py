"""Convergence step: diff a node's labels against the desired capabilities.

Pure functions, no I/O. Only keys in the reserved namespace are ever added
or removed; every other label passes through untouched.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from labeller.labels import DEFAULT_LABEL_VALUE, encode, owned_keys
from labeller.models import CapabilitySnapshot


@dataclass(frozen=True)
class LabelDelta:
    """Minimal change turning the current labels into the desired ones."""

    to_set: dict[str, str] = field(default_factory=dict)  # inserted or overwritten
    to_remove: frozenset[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_set and not self.to_remove

    def apply(self, labels: Mapping[str, str]) -> dict[str, str]:
        """Return a new label mapping with the delta applied."""
        result = {k: v for k, v in labels.items() if k not in self.to_remove}
        result.update(self.to_set)
        return result


def compute_delta(
    current: Mapping[str, str],
    snapshot: CapabilitySnapshot | Mapping[str, bool],
    prefix: str,
    value: str = DEFAULT_LABEL_VALUE,
) -> LabelDelta:
    """Diff ``current`` against the labels ``snapshot`` encodes to."""
    desired = encode(snapshot, prefix, value)
    stale = owned_keys(current, prefix) - set(desired)
    to_set = {k: v for k, v in desired.items() if current.get(k) != v}
    return LabelDelta(to_set=to_set, to_remove=frozenset(stale))


def converge(
    current: Mapping[str, str],
    snapshot: CapabilitySnapshot | Mapping[str, bool],
    prefix: str,
    value: str = DEFAULT_LABEL_VALUE,
) -> dict[str, str]:
    """Labels after pruning stale owned keys and adding the desired ones."""
    return compute_delta(current, snapshot, prefix, value).apply(current)
