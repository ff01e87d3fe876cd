"""Logging setup for the labeller.

Two formats, selected by ``settings.log_format``:
- ``json``: one JSON object per line, suitable for log shippers
- ``text``: human readable, for ``kubectl logs`` and local runs

Fields passed through ``extra=`` end up under the ``extra`` key in JSON
output.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from labeller.config import settings

SERVICE_NAME = "usb-node-labeller"

# Attributes every LogRecord carries; anything else came in via extra=.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName", "node"}


def _record_extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class LabellerJSONFormatter(logging.Formatter):
    """Formats records as single-line JSON."""

    def __init__(self, node_name: str = ""):
        super().__init__()
        self.node_name = node_name

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
            "node_name": self.node_name,
        }
        extras = _record_extras(record)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LabellerTextFormatter(logging.Formatter):
    """Plain-text formatter prefixed with the (shortened) node name."""

    def __init__(self, node_name: str = ""):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(node)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.node_name = node_name

    def format(self, record: logging.LogRecord) -> str:
        record.node = self.node_name[:16] or "-"
        return super().format(record)


def setup_labeller_logging(node_name: str = "") -> None:
    """Configure the root logger from settings.

    Replaces any handler installed by a previous call, so calling this again
    after the node name is known does not duplicate output.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_labeller_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._labeller_handler = True
    if settings.log_format.lower() == "json":
        handler.setFormatter(LabellerJSONFormatter(node_name=node_name))
    else:
        handler.setFormatter(LabellerTextFormatter(node_name=node_name))

    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for noisy in ("kubernetes", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
