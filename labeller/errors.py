"""Exceptions raised by the labeller."""

from __future__ import annotations


class LabellerError(Exception):
    """Base exception for labeller failures."""
    def __init__(self, message: str, node_name: str | None = None, retriable: bool = False):
        super().__init__(message)
        self.message = message
        self.node_name = node_name
        self.retriable = retriable


class NodeNotFoundError(LabellerError):
    """The node object does not exist (yet, or any more)."""
    def __init__(self, message: str, node_name: str | None = None):
        super().__init__(message, node_name, retriable=False)


class NodeReadError(LabellerError):
    """Fetching the node failed for a reason other than absence."""
    def __init__(self, message: str, node_name: str | None = None):
        super().__init__(message, node_name, retriable=True)


class NodeWriteConflictError(LabellerError):
    """The node changed between read and conditional update."""
    def __init__(self, message: str, node_name: str | None = None):
        super().__init__(message, node_name, retriable=True)


class NodeWriteError(LabellerError):
    """Updating the node failed for a reason other than a version conflict."""
    def __init__(self, message: str, node_name: str | None = None):
        super().__init__(message, node_name, retriable=True)


class DiscoveryError(LabellerError):
    """Capability enumeration could not run."""


class IdentityResolutionError(LabellerError):
    """The node this process is responsible for could not be determined."""


class ClusterConnectionError(LabellerError):
    """No usable cluster API configuration was found."""


class WatchRegistrationError(LabellerError):
    """The node watch could not be established."""
