"""USB capability discovery.

Enumerates the USB devices attached to this host through sysfs and turns
them into a ``CapabilitySnapshot``. Every device directory under
``/sys/bus/usb/devices`` that carries both ``idVendor`` and ``idProduct``
becomes one capability keyed ``usb.<product>.<vendor>``; interface entries
(``1-1:1.0`` and friends) have no such attributes and are skipped.

Discovery has no caching of its own. ``SnapshotProvider`` decides whether a
snapshot is reused for the process lifetime or recomputed each cycle.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from labeller.errors import DiscoveryError
from labeller.models import CapabilitySnapshot, SnapshotPolicy

logger = logging.getLogger(__name__)

USB_SYSFS_PATH = Path("/sys/bus/usb/devices")


def _read_attr(device_path: Path, name: str) -> str | None:
    """Read a sysfs attribute, returning None when absent or unreadable."""
    try:
        value = (device_path / name).read_text().strip().lower()
    except OSError:
        return None
    return value or None


def capability_key(vendor: str, product: str) -> str:
    """Capability key for a vendor/product pair."""
    return f"usb.{product}.{vendor}"


def discover_usb_capabilities(sysfs_path: Path | str = USB_SYSFS_PATH) -> CapabilitySnapshot:
    """Enumerate attached USB devices.

    Raises:
        DiscoveryError: if the sysfs tree cannot be listed.
    """
    root = Path(sysfs_path)
    try:
        entries = sorted(root.iterdir())
    except OSError as e:
        raise DiscoveryError(f"Cannot list USB devices under {root}: {e}") from e

    flags: dict[str, bool] = {}
    for entry in entries:
        vendor = _read_attr(entry, "idVendor")
        product = _read_attr(entry, "idProduct")
        if vendor is None or product is None:
            continue
        key = capability_key(vendor, product)
        if key not in flags:
            logger.debug("Found USB device %s (%s)", key, entry.name)
        flags[key] = True

    logger.info("Discovered %d USB capabilities under %s", len(flags), root)
    return CapabilitySnapshot(flags)


class SnapshotProvider:
    """Hands the engine a capability snapshot according to a policy.

    With ``SnapshotPolicy.STARTUP`` the snapshot taken by ``load()`` is
    reused for every cycle, so hot-plugged devices are not seen until
    restart. With ``SnapshotPolicy.PER_CYCLE`` each ``current()`` call runs
    discovery again.
    """

    def __init__(
        self,
        discover: Callable[[], CapabilitySnapshot],
        policy: SnapshotPolicy = SnapshotPolicy.STARTUP,
    ):
        self._discover = discover
        self._policy = policy
        self._snapshot: CapabilitySnapshot | None = None

    @property
    def policy(self) -> SnapshotPolicy:
        return self._policy

    def load(self) -> CapabilitySnapshot:
        """Run the startup discovery. Failure here should abort the process."""
        self._snapshot = self._discover()
        return self._snapshot

    def current(self) -> CapabilitySnapshot:
        """Snapshot to reconcile against for the cycle about to run."""
        if self._policy is SnapshotPolicy.PER_CYCLE or self._snapshot is None:
            self._snapshot = self._discover()
        return self._snapshot
