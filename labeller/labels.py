"""Label codec: capability snapshots to owned node labels and back.

Every label this system manages lives under a single reserved namespace,
e.g. ``g4v.dev/usb.082d.046d``. Ownership is decided on the namespace
segment (the text before the first ``/``) rather than a raw string prefix,
so ``g4v.devices/foo`` is never mistaken for one of ours.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from labeller.models import CapabilitySnapshot

DEFAULT_LABEL_VALUE = "true"

# DNS subdomain, as Kubernetes requires for the prefix part of a label key.
_PREFIX_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_PREFIX_MAX_LEN = 253


def validate_prefix(prefix: str) -> str:
    """Return ``prefix`` if it can serve as the reserved namespace.

    Raises:
        ValueError: empty, too long, or not a lower-case DNS subdomain
            (which also rules out any ``/``).
    """
    if not prefix or len(prefix) > _PREFIX_MAX_LEN or not _PREFIX_RE.match(prefix):
        raise ValueError(f"invalid label prefix {prefix!r}: must be a DNS subdomain")
    return prefix


class OwnedLabelKey(str):
    """A label key inside the reserved namespace.

    Only ``for_capability`` and ``parse`` build instances, so holding an
    ``OwnedLabelKey`` means the key was checked against the prefix.
    """

    __slots__ = ()

    def __new__(cls, *args, **kwargs):
        raise TypeError("use OwnedLabelKey.for_capability() or OwnedLabelKey.parse()")

    @classmethod
    def _build(cls, key: str) -> OwnedLabelKey:
        return str.__new__(cls, key)

    @classmethod
    def for_capability(cls, prefix: str, capability: str) -> OwnedLabelKey:
        """Build the owned key for a capability.

        Raises:
            ValueError: ``capability`` is empty or ``prefix`` is invalid;
                ``parse`` would never recognise such a key.
        """
        validate_prefix(prefix)
        if not capability:
            raise ValueError("capability key must not be empty")
        return cls._build(f"{prefix}/{capability}")

    @classmethod
    def parse(cls, prefix: str, key: str) -> OwnedLabelKey | None:
        """Return ``key`` as an owned key, or None if it is not ours."""
        namespace, sep, name = key.partition("/")
        if not sep or namespace != prefix or not name:
            return None
        return cls._build(key)

    @property
    def capability(self) -> str:
        """The capability part of the key (after the namespace)."""
        return self.partition("/")[2]


def encode(
    snapshot: CapabilitySnapshot | Mapping[str, bool],
    prefix: str,
    value: str = DEFAULT_LABEL_VALUE,
) -> dict[OwnedLabelKey, str]:
    """Map each present capability to its owned label.

    Absent capabilities produce no entry; absence is expressed by the key
    not being on the node. An empty capability key or an
    invalid prefix raises ValueError.
    """
    return {
        OwnedLabelKey.for_capability(prefix, capability): value
        for capability, present in snapshot.items()
        if present
    }


def owned_keys(labels: Iterable[str], prefix: str) -> frozenset[OwnedLabelKey]:
    """Keys of ``labels`` that belong to the reserved namespace."""
    result = set()
    for key in labels:
        owned = OwnedLabelKey.parse(prefix, key)
        if owned is not None:
            result.add(owned)
    return frozenset(result)
