"""Tests for node identity resolution."""
from __future__ import annotations

from pathlib import Path

import pytest

from labeller.config import settings
from labeller.errors import IdentityResolutionError
from labeller.identity import resolve_node_identity


def test_environment_override_wins(monkeypatch):
    monkeypatch.setattr(settings, "node_name", " node-from-env ")
    Path(settings.hostname_file).write_text("node-from-file\n")
    assert resolve_node_identity(settings) == "node-from-env"


def test_hostname_file_is_used(monkeypatch):
    Path(settings.hostname_file).write_text("  node-from-file\n")
    assert resolve_node_identity(settings) == "node-from-file"


def test_falls_back_to_hostname(monkeypatch):
    monkeypatch.setattr("labeller.identity.socket.gethostname", lambda: "host-a")
    assert resolve_node_identity(settings) == "host-a"


def test_empty_hostname_file_falls_back(monkeypatch):
    Path(settings.hostname_file).write_text("\n")
    monkeypatch.setattr("labeller.identity.socket.gethostname", lambda: "host-b")
    assert resolve_node_identity(settings) == "host-b"


def test_no_source_raises(monkeypatch):
    monkeypatch.setattr("labeller.identity.socket.gethostname", lambda: "")
    with pytest.raises(IdentityResolutionError):
        resolve_node_identity(settings)
