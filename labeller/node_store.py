"""Node store gateway backed by the Kubernetes API.

Reads a node by name and writes its labels back conditionally. The write is
a strategic merge patch that carries the ``resourceVersion`` seen at read
time, so the API server rejects it with 409 if anyone else modified the node
in between. Only changed label keys travel in the patch; removed keys are
sent as null.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from labeller.errors import (
    ClusterConnectionError,
    NodeNotFoundError,
    NodeReadError,
    NodeWriteConflictError,
    NodeWriteError,
)
from labeller.models import NodeRecord

logger = logging.getLogger(__name__)


def load_kube_client(kubeconfig: str = "") -> client.CoreV1Api:
    """Build a CoreV1Api client.

    In-cluster service account config is tried first, then the kubeconfig
    file (``kubeconfig`` or the default location).

    Raises:
        ClusterConnectionError: if neither configuration can be loaded.
    """
    if not kubeconfig:
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster config")
            return client.CoreV1Api()
        except config.ConfigException:
            logger.debug("Not running in-cluster, trying kubeconfig")

    try:
        config.load_kube_config(config_file=kubeconfig or None)
    except (config.ConfigException, OSError) as e:
        raise ClusterConnectionError(f"Could not load Kubernetes config: {e}") from e
    logger.info("Loaded kubeconfig%s", f" from {kubeconfig}" if kubeconfig else "")
    return client.CoreV1Api()


def label_patch(current: Mapping[str, str], desired: Mapping[str, str]) -> dict[str, str | None]:
    """Label entries that differ between ``current`` and ``desired``.

    Keys missing from ``desired`` map to None, which deletes them under a
    strategic merge patch.
    """
    patch: dict[str, str | None] = {
        key: value for key, value in desired.items() if current.get(key) != value
    }
    for key in current:
        if key not in desired:
            patch[key] = None
    return patch


class KubernetesNodeStore:
    """Fetch and conditionally update node objects."""

    def __init__(self, core_v1: client.CoreV1Api):
        self._api = core_v1

    def get(self, name: str) -> NodeRecord:
        """Read the node's labels and resource version.

        Raises:
            NodeNotFoundError: the node does not exist.
            NodeReadError: any other failure.
        """
        try:
            node = self._api.read_node(name=name)
        except ApiException as e:
            if e.status == 404:
                raise NodeNotFoundError(f"Node {name} not found", name) from e
            raise NodeReadError(f"Could not fetch node {name}: {e.status} {e.reason}", name) from e
        except HTTPError as e:
            raise NodeReadError(f"Could not fetch node {name}: {e}", name) from e

        metadata = node.metadata
        return NodeRecord(
            name=name,
            labels=dict(metadata.labels or {}),
            resource_version=metadata.resource_version,
        )

    def update(self, record: NodeRecord, labels: Mapping[str, str]) -> NodeRecord:
        """Write ``labels`` as the node's full label set.

        Raises:
            NodeWriteConflictError: the node changed since ``record`` was read.
            NodeWriteError: any other failure.
        """
        patch = label_patch(record.labels, labels)
        metadata: dict = {"labels": patch}
        if record.resource_version:
            metadata["resourceVersion"] = record.resource_version
        body = {"metadata": metadata}

        try:
            node = self._api.patch_node(name=record.name, body=body)
        except ApiException as e:
            if e.status == 409:
                raise NodeWriteConflictError(
                    f"Node {record.name} was modified concurrently "
                    f"(resourceVersion {record.resource_version})",
                    record.name,
                ) from e
            raise NodeWriteError(
                f"Could not write node {record.name}: {e.status} {e.reason}", record.name
            ) from e
        except HTTPError as e:
            raise NodeWriteError(f"Could not write node {record.name}: {e}", record.name) from e

        metadata_out = node.metadata
        return NodeRecord(
            name=record.name,
            labels=dict(metadata_out.labels or {}),
            resource_version=metadata_out.resource_version,
        )
