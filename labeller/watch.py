"""Node watch: turns Kubernetes node events into ``NodeEvent`` notifications.

The watch stream is blocking, so it runs on a daemon thread and hands each
notification back to the event loop with ``call_soon_threadsafe``. Nodes
present when the watch starts are reported as ``created``, the same way an
informer reports pre-existing objects, which is what reconciles the node
right after startup.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable

from kubernetes import client, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from labeller.errors import WatchRegistrationError
from labeller.models import ChangeKind, NodeEvent

logger = logging.getLogger(__name__)

_WATCH_KINDS: dict[str, ChangeKind] = {
    "ADDED": ChangeKind.CREATED,
    "MODIFIED": ChangeKind.UPDATED,
    "DELETED": ChangeKind.DELETED,
}


def event_from_watch(raw: dict) -> NodeEvent | None:
    """Convert a raw watch event into a ``NodeEvent``.

    Returns None for events that carry no node name (e.g. ERROR payloads).
    """
    obj = raw.get("object")
    metadata = getattr(obj, "metadata", None)
    name = getattr(metadata, "name", None)
    if not name:
        return None
    kind = _WATCH_KINDS.get(raw.get("type", ""), ChangeKind.GENERIC)
    return NodeEvent(kind=kind, name=name)


class NodeEventWatcher:
    """Streams node notifications to ``dispatch`` on the event loop."""

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        *,
        timeout_seconds: int = 300,
        retry_delay: float = 5.0,
    ):
        self._api = core_v1
        self._dispatch: Callable[[NodeEvent], None] | None = None
        self._timeout_seconds = timeout_seconds
        self._retry_delay = retry_delay
        self._resource_version: str | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stopping = threading.Event()
        self._watch: watch.Watch | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    async def start(self, dispatch: Callable[[NodeEvent], None]) -> None:
        """List nodes once, report them as created, then start streaming.

        ``dispatch`` is called on the event loop for every notification.

        Raises:
            WatchRegistrationError: the initial list failed (no access to
                nodes, API unreachable).
        """
        self._loop = asyncio.get_running_loop()
        self._dispatch = dispatch
        try:
            events = await asyncio.to_thread(self._relist)
        except (ApiException, HTTPError) as e:
            raise WatchRegistrationError(f"Unable to watch nodes: {e}") from e

        for event in events:
            self._dispatch(event)

        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._stream_forever, name="node-watch", daemon=True
        )
        self._thread.start()
        logger.info("Node watch started (resourceVersion=%s)", self._resource_version)

    async def stop(self, join_timeout: float = 1.0) -> None:
        """Ask the stream thread to exit and wait up to ``join_timeout`` for it.

        A stream blocked on the network only notices the stop once its
        current read returns, so the thread may outlive the timeout.
        """
        self._stopping.set()
        if self._watch is not None:
            self._watch.stop()
        thread, self._thread = self._thread, None
        if thread is not None and thread.is_alive():
            await asyncio.to_thread(thread.join, join_timeout)
            if thread.is_alive():
                logger.warning("Node watch thread still running after %.1fs", join_timeout)
        logger.info("Node watch stopped")

    def _relist(self) -> list[NodeEvent]:
        nodes = self._api.list_node()
        self._resource_version = nodes.metadata.resource_version
        return [
            NodeEvent(kind=ChangeKind.CREATED, name=node.metadata.name)
            for node in nodes.items
        ]

    def _post(self, event: NodeEvent) -> None:
        if self._loop is None or self._loop.is_closed() or self._dispatch is None:
            return
        self._loop.call_soon_threadsafe(self._dispatch, event)

    def _stream_forever(self) -> None:
        while not self._stopping.is_set():
            try:
                self._stream_once()
            except ApiException as e:
                if e.status == 410:
                    logger.info("Watch resourceVersion expired, relisting nodes")
                    self._relist_quietly()
                    continue
                logger.warning(f"Node watch failed: {e.status} {e.reason}")
                self._stopping.wait(self._retry_delay)
            except Exception as e:
                logger.warning(f"Node watch error: {e}")
                self._stopping.wait(self._retry_delay)

    def _stream_once(self) -> None:
        self._watch = watch.Watch()
        kwargs = {"timeout_seconds": self._timeout_seconds}
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version
        for raw in self._watch.stream(self._api.list_node, **kwargs):
            if self._stopping.is_set():
                break
            if raw.get("type") == "ERROR":
                raw_object = raw.get("raw_object") or {}
                if raw_object.get("code") == 410:
                    raise ApiException(status=410, reason="Gone")
                continue
            obj = raw.get("object")
            version = getattr(getattr(obj, "metadata", None), "resource_version", None)
            if version:
                self._resource_version = version
            event = event_from_watch(raw)
            if event is not None:
                self._post(event)

    def _relist_quietly(self) -> None:
        try:
            self._relist()
        except Exception as e:
            logger.warning(f"Node relist failed: {e}")
            self._resource_version = None
            self._stopping.wait(self._retry_delay)
