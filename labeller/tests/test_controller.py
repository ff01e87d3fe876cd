"""Tests for the controller: queue draining, requeue backoff and shutdown."""
from __future__ import annotations

import asyncio
import time

import pytest

from conftest import NODE, FakeNodeStore, make_config, make_provider
from labeller.controller import Controller, calculate_backoff
from labeller.errors import NodeWriteConflictError, WatchRegistrationError
from labeller.models import ChangeKind, CycleOutcome, NodeEvent
from labeller.reconciler import ReconciliationEngine


class FakeWatcher:
    """Stands in for NodeEventWatcher; replays ``events`` on start."""

    def __init__(self, events=(), error: Exception | None = None):
        self.events = list(events)
        self.error = error
        self.started = False
        self.stopped = False

    async def start(self, dispatch):
        if self.error is not None:
            raise self.error
        self.started = True
        for event in self.events:
            dispatch(event)

    async def stop(self):
        self.stopped = True


def _controller(store, *capabilities, watcher=None, **config):
    config.setdefault("poll_interval", 3600.0)
    labeller_config = make_config(**config)
    engine = ReconciliationEngine(store, make_provider(*capabilities), labeller_config)
    return Controller(engine, labeller_config, watcher)


async def _drain(controller):
    while controller.queue.pending():
        await asyncio.sleep(0)


@pytest.mark.parametrize(
    "failures,expected",
    [(0, 0.0), (1, 1.0), (2, 2.0), (3, 4.0), (10, 60.0)],
)
def test_calculate_backoff(failures, expected):
    assert calculate_backoff(failures, 1.0, 60.0) == expected


class TestControllerCycles:

    @pytest.mark.asyncio
    async def test_event_then_timer_second_cycle_sees_first_write(self, store):
        controller = _controller(store, "usb.1.2")
        await controller.start()
        try:
            first = controller.submit("event")
            await _drain(controller)
            second = controller.submit("timer")

            r1 = await first
            r2 = await second
        finally:
            await controller.stop()

        assert r1.outcome is CycleOutcome.APPLIED
        assert r2.outcome is CycleOutcome.UNCHANGED
        assert len(store.update_calls) == 1
        assert store.nodes[NODE] == {"team": "infra", "g4v.dev/usb.1.2": "true"}

    @pytest.mark.asyncio
    async def test_event_for_other_node_does_not_queue(self, store):
        controller = _controller(store, "usb.1.2")
        controller.on_event(NodeEvent(ChangeKind.CREATED, "worker-2"))
        controller.on_event(NodeEvent(ChangeKind.UPDATED, NODE))
        assert controller.queue.pending() == 0

    @pytest.mark.asyncio
    async def test_watcher_creation_event_reconciles_node(self, store):
        watcher = FakeWatcher([NodeEvent(ChangeKind.CREATED, NODE)])
        controller = _controller(store, "usb.1.2", watcher=watcher)
        await controller.start()
        try:
            for _ in range(100):
                if store.update_calls:
                    break
                await asyncio.sleep(0.01)
        finally:
            await controller.stop()

        assert watcher.started and watcher.stopped
        assert store.nodes[NODE]["g4v.dev/usb.1.2"] == "true"

    @pytest.mark.asyncio
    async def test_timer_tick_reconciles_node(self, store):
        controller = _controller(store, "usb.1.2", poll_interval=0.01)
        await controller.start()
        try:
            for _ in range(100):
                if store.update_calls:
                    break
                await asyncio.sleep(0.01)
        finally:
            await controller.stop()

        assert store.nodes[NODE]["g4v.dev/usb.1.2"] == "true"

    @pytest.mark.asyncio
    async def test_not_found_is_not_requeued(self):
        controller = _controller(FakeNodeStore({}), "usb.1.2")
        await controller.start()
        try:
            result = await controller.submit("event")
        finally:
            await controller.stop()

        assert result.outcome is CycleOutcome.SKIPPED
        assert controller.consecutive_failures == 0


class TestControllerFailures:

    @pytest.mark.asyncio
    async def test_failed_cycle_reports_failed_and_requeues(self, store):
        store.update_error = NodeWriteConflictError("conflict", NODE)
        controller = _controller(
            store, "usb.1.2", retry_backoff_base=0.02, retry_backoff_max=0.02
        )
        await controller.start()
        try:
            result = await controller.submit("event")
            assert result.outcome is CycleOutcome.FAILED
            assert result.error == "conflict"
            assert controller.consecutive_failures == 1
            assert len(store.update_calls) == 1

            store.update_error = None
            for _ in range(100):
                if controller.consecutive_failures == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await controller.stop()

        assert controller.consecutive_failures == 0
        assert store.nodes[NODE]["g4v.dev/usb.1.2"] == "true"

    @pytest.mark.asyncio
    async def test_watch_registration_failure_is_raised(self, store):
        watcher = FakeWatcher(error=WatchRegistrationError("forbidden"))
        controller = _controller(store, "usb.1.2", watcher=watcher)

        with pytest.raises(WatchRegistrationError):
            await controller.start()


class TestControllerShutdown:

    @pytest.mark.asyncio
    async def test_stop_lets_inflight_cycle_finish(self, store):
        original_get = store.get

        def slow_get(name):
            time.sleep(0.05)
            return original_get(name)

        store.get = slow_get
        controller = _controller(store, "usb.1.2")
        await controller.start()
        future = controller.submit("event")
        await _drain(controller)
        await asyncio.sleep(0.01)

        await controller.stop()

        assert store.nodes[NODE]["g4v.dev/usb.1.2"] == "true"
        assert future.done()
        assert future.result().outcome is CycleOutcome.APPLIED

    @pytest.mark.asyncio
    async def test_run_returns_when_stop_event_set(self, store):
        controller = _controller(store, "usb.1.2")
        stop_event = asyncio.Event()
        task = asyncio.create_task(controller.run(stop_event))
        await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)
        assert task.done()
