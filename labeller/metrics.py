"""Prometheus metrics for the USB Node Labeller.

Exposes reconciliation outcomes, cycle durations, trigger sources and the
number of owned labels currently applied. Served on ``metrics_port`` when
that setting is non-zero.
"""
from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


reconcile_cycles = Counter(
    "usb_labeller_reconcile_cycles_total",
    "Reconciliation cycles by terminal outcome",
    ["outcome"],
)

reconcile_duration = Histogram(
    "usb_labeller_reconcile_seconds",
    "Duration of reconciliation cycles",
    ["outcome"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, float("inf")),
)

triggers_received = Counter(
    "usb_labeller_triggers_total",
    "Reconcile requests submitted, by trigger source",
    ["source"],
)

owned_labels_applied = Gauge(
    "usb_labeller_owned_labels",
    "Owned labels present on the node after the last successful cycle",
)


def start_metrics_server(port: int) -> bool:
    """Serve /metrics on ``port``. Returns False when disabled (port 0)."""
    if port <= 0:
        logger.debug("Metrics endpoint disabled")
        return False
    start_http_server(port)
    logger.info("Metrics server started on port %d", port)
    return True
