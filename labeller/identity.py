"""Resolve which node this process is responsible for."""

from __future__ import annotations

import logging
import socket
from pathlib import Path

from labeller.config import Settings
from labeller.errors import IdentityResolutionError

logger = logging.getLogger(__name__)


def resolve_node_identity(source: Settings) -> str:
    """Return the node name to reconcile.

    Order: explicit ``node_name`` setting, then the hostname file mounted
    from the host, then this process's hostname.

    Raises:
        IdentityResolutionError: if every source is empty or unreadable.
    """
    if source.node_name.strip():
        logger.info("Using node name from environment: %s", source.node_name.strip())
        return source.node_name.strip()

    hostname_file = Path(source.hostname_file) if source.hostname_file else None
    if hostname_file is not None and hostname_file.exists():
        try:
            name = hostname_file.read_text().strip()
        except OSError as e:
            raise IdentityResolutionError(
                f"Cannot read hostname file {hostname_file}: {e}"
            ) from e
        if name:
            logger.info("Using node name from %s: %s", hostname_file, name)
            return name
        logger.warning("Hostname file %s is empty, falling back to hostname", hostname_file)

    try:
        name = socket.gethostname().strip()
    except OSError as e:
        raise IdentityResolutionError(f"Cannot determine hostname: {e}") from e
    if not name:
        raise IdentityResolutionError("Node name could not be resolved from any source")
    logger.info("Using host-reported node name: %s", name)
    return name
