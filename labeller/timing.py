"""Timing helper for reconciliation cycles.

Records duration to a Prometheus histogram and emits a structured log.
Metric and logging failures never break the wrapped operation.

Usage:
    from labeller.metrics import reconcile_duration
    from labeller.timing import AsyncTimedOperation

    async with AsyncTimedOperation(
        histogram=reconcile_duration,
        labels={"outcome": "auto"},
        log_event="reconcile_cycle",
        log_extras={"node_name": name},
    ) as timer:
        result = await engine.reconcile(request)
        timer.outcome = result.outcome.value
"""
from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)


class AsyncTimedOperation:
    """Async context manager timing one operation.

    A label value of ``"auto"`` is filled from ``outcome`` when set by the
    caller, otherwise from success/error of the block.
    """

    def __init__(
        self,
        *,
        histogram=None,
        labels: dict[str, str] | None = None,
        log_event: str = "timed_operation",
        log_extras: dict | None = None,
        log_level: int = logging.DEBUG,
    ):
        self.histogram = histogram
        self.labels = labels or {}
        self.log_event = log_event
        self.log_extras = log_extras or {}
        self.log_level = log_level
        self.duration_ms: int = 0
        self.success: bool = True
        self.outcome: str | None = None
        self._start: float = 0.0

    async def __aenter__(self):
        self._start = time.monotonic()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.monotonic() - self._start
        self.duration_ms = int(elapsed * 1000)
        self.success = exc_type is None
        auto_value = self.outcome or ("success" if self.success else "error")
        metric_labels = {
            k: (auto_value if v == "auto" else v) for k, v in self.labels.items()
        }

        try:
            if self.histogram is not None:
                self.histogram.labels(**metric_labels).observe(elapsed)
        except Exception as e:
            logger.warning("Failed to record metric: %s", e)

        try:
            extra = {
                "event": self.log_event,
                "duration_ms": self.duration_ms,
                "success": self.success,
                **metric_labels,
                **self.log_extras,
            }
            if exc_type is not None:
                extra["error"] = str(exc_val)
            logger.log(self.log_level, "%s completed", self.log_event, extra=extra)
        except Exception:
            pass

        return False  # Don't suppress exceptions
