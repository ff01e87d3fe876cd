"""USB Node Labeller - entry point.

Two modes:
- ``--dry-run``: discover USB devices, print the labels they map to and
  exit. Never touches the cluster.
- service mode (default): keep this node's ``<prefix>/`` labels in sync with
  the attached devices until SIGINT/SIGTERM.

Any startup failure (identity, cluster config, discovery, watch) is logged
and ends the process with exit code 1.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import TextIO

from labeller.config import LabellerConfig, Settings, settings
from labeller.controller import Controller
from labeller.discovery import SnapshotProvider, discover_usb_capabilities
from labeller.errors import LabellerError
from labeller.identity import resolve_node_identity
from labeller.labels import encode
from labeller.logging_config import setup_labeller_logging
from labeller.metrics import start_metrics_server
from labeller.node_store import KubernetesNodeStore, load_kube_client
from labeller.reconciler import ReconciliationEngine
from labeller.version import __version__
from labeller.watch import NodeEventWatcher

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="usb-node-labeller",
        description=f"USB Node Labeller for Kubernetes (version {__version__})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Just output labels",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def print_labels(source: Settings, out: TextIO = sys.stdout) -> None:
    """Print the labels the current devices map to, one ``key = value`` per line."""
    snapshot = discover_usb_capabilities(source.usb_sysfs_path)
    labels = encode(snapshot, source.label_prefix, source.label_value)
    for key in sorted(labels):
        out.write(f"{key} = {labels[key]}\n")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported here", sig.name)


async def run_service(source: Settings) -> int:
    """Run the reconciliation loop until a shutdown signal arrives."""
    try:
        node_name = resolve_node_identity(source)
    except LabellerError as e:
        logger.error(f"Cannot resolve node name: {e.message}")
        return 1
    setup_labeller_logging(node_name)
    logger.info("USB Node Labeller %s starting for node %s", __version__, node_name)

    labeller_config = LabellerConfig.from_settings(source, node_name)
    snapshots = SnapshotProvider(
        lambda: discover_usb_capabilities(source.usb_sysfs_path),
        labeller_config.snapshot_policy,
    )
    try:
        snapshot = snapshots.load()
    except LabellerError as e:
        logger.error(f"Error listing USB devices: {e.message}")
        return 1
    logger.info(
        "Startup snapshot: %d USB capabilities (policy=%s)",
        len(snapshot.present()),
        labeller_config.snapshot_policy.value,
    )

    try:
        core_v1 = load_kube_client(source.kubeconfig)
    except LabellerError as e:
        logger.error(f"Unable to set up cluster client: {e.message}")
        return 1

    engine = ReconciliationEngine(KubernetesNodeStore(core_v1), snapshots, labeller_config)
    watcher = NodeEventWatcher(
        core_v1,
        timeout_seconds=source.watch_timeout,
        retry_delay=source.watch_retry_delay,
    )
    controller = Controller(engine, labeller_config, watcher)

    try:
        start_metrics_server(source.metrics_port)
    except OSError as e:
        logger.error(f"Unable to start metrics server: {e}")
        return 1

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    try:
        await controller.run(stop_event)
    except LabellerError as e:
        logger.error(f"Unable to run controller: {e.message}")
        return 1
    logger.info("USB Node Labeller stopped")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.dry_run:
        try:
            print_labels(settings)
        except LabellerError as e:
            print(f"error listing usb devices: {e.message}", file=sys.stderr)
            return 1
        return 0

    setup_labeller_logging()
    return asyncio.run(run_service(settings))


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
