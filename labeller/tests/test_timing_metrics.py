"""Tests for labeller.timing and labeller.metrics."""
import asyncio
from unittest.mock import MagicMock, patch

import pytest

from labeller.metrics import start_metrics_server
from labeller.timing import AsyncTimedOperation


class TestAsyncTimedOperation:

    @pytest.mark.asyncio
    async def test_records_duration(self):
        async with AsyncTimedOperation() as t:
            await asyncio.sleep(0.01)
        assert t.duration_ms > 0
        assert t.success is True

    @pytest.mark.asyncio
    async def test_auto_label_uses_outcome(self):
        mock_hist = MagicMock()
        async with AsyncTimedOperation(histogram=mock_hist, labels={"outcome": "auto"}) as t:
            t.outcome = "applied"
        mock_hist.labels.assert_called_once_with(outcome="applied")
        mock_hist.labels.return_value.observe.assert_called_once()

    @pytest.mark.asyncio
    async def test_auto_label_falls_back_to_error(self):
        mock_hist = MagicMock()
        with pytest.raises(RuntimeError):
            async with AsyncTimedOperation(histogram=mock_hist, labels={"outcome": "auto"}):
                raise RuntimeError("cycle blew up")
        mock_hist.labels.assert_called_once_with(outcome="error")

    @pytest.mark.asyncio
    async def test_metric_failure_guarded(self):
        mock_hist = MagicMock()
        mock_hist.labels.return_value.observe.side_effect = RuntimeError("prom down")
        async with AsyncTimedOperation(histogram=mock_hist, labels={"outcome": "x"}) as t:
            pass
        assert t.success is True


class TestMetricsServer:

    def test_disabled_when_port_zero(self):
        with patch("labeller.metrics.start_http_server") as server:
            assert start_metrics_server(0) is False
        server.assert_not_called()

    def test_started_on_port(self):
        with patch("labeller.metrics.start_http_server") as server:
            assert start_metrics_server(9100) is True
        server.assert_called_once_with(9100)
