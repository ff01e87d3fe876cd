from __future__ import annotations

import threading
from collections.abc import Mapping
from pathlib import Path

import pytest

from labeller.config import LabellerConfig, settings
from labeller.discovery import SnapshotProvider
from labeller.errors import NodeNotFoundError, NodeWriteConflictError
from labeller.models import CapabilitySnapshot, NodeRecord, SnapshotPolicy

PREFIX = "g4v.dev"
NODE = "worker-1"


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch, tmp_path):
    """Point host-facing settings at temp paths so tests never read the real host."""
    monkeypatch.setattr(settings, "node_name", "")
    monkeypatch.setattr(settings, "hostname_file", str(tmp_path / "hostname"))
    monkeypatch.setattr(settings, "usb_sysfs_path", str(tmp_path / "usb"))
    monkeypatch.setattr(settings, "label_prefix", PREFIX)
    monkeypatch.setattr(settings, "label_value", "true")
    monkeypatch.setattr(settings, "log_format", "text")
    yield


class FakeNodeStore:
    """In-memory node store with resourceVersion semantics.

    ``get_error`` / ``update_error`` are raised (once each call) when set.
    """

    def __init__(self, nodes: dict[str, dict[str, str]] | None = None):
        self.nodes: dict[str, dict[str, str]] = {k: dict(v) for k, v in (nodes or {}).items()}
        self.versions: dict[str, int] = {k: 1 for k in self.nodes}
        self.get_calls: list[str] = []
        self.update_calls: list[tuple[NodeRecord, dict[str, str]]] = []
        self.get_error: Exception | None = None
        self.update_error: Exception | None = None
        self._lock = threading.Lock()

    def get(self, name: str) -> NodeRecord:
        with self._lock:
            self.get_calls.append(name)
            if self.get_error is not None:
                raise self.get_error
            if name not in self.nodes:
                raise NodeNotFoundError(f"Node {name} not found", name)
            return NodeRecord(name, dict(self.nodes[name]), str(self.versions[name]))

    def update(self, record: NodeRecord, labels: Mapping[str, str]) -> NodeRecord:
        with self._lock:
            self.update_calls.append((record, dict(labels)))
            if self.update_error is not None:
                raise self.update_error
            if record.resource_version != str(self.versions[record.name]):
                raise NodeWriteConflictError("conflict", record.name)
            self.nodes[record.name] = dict(labels)
            self.versions[record.name] += 1
            return NodeRecord(record.name, dict(labels), str(self.versions[record.name]))

    def external_write(self, name: str, labels: dict[str, str]) -> None:
        """Simulate another actor modifying the node."""
        with self._lock:
            self.nodes[name] = dict(labels)
            self.versions[name] += 1


def make_provider(*capabilities: str, policy: SnapshotPolicy = SnapshotPolicy.STARTUP) -> SnapshotProvider:
    snapshot = CapabilitySnapshot({c: True for c in capabilities})
    provider = SnapshotProvider(lambda: snapshot, policy)
    provider.load()
    return provider


def make_config(**overrides) -> LabellerConfig:
    values = {"node_name": NODE, "label_prefix": PREFIX, "poll_interval": 60.0}
    values.update(overrides)
    return LabellerConfig(**values)


def write_usb_device(root: Path, name: str, vendor: str | None, product: str | None) -> Path:
    device = root / name
    device.mkdir(parents=True)
    if vendor is not None:
        (device / "idVendor").write_text(f"{vendor}\n")
    if product is not None:
        (device / "idProduct").write_text(f"{product}\n")
    return device


@pytest.fixture
def store() -> FakeNodeStore:
    return FakeNodeStore({NODE: {"team": "infra"}})
