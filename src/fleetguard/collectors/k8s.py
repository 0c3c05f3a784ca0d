"""Kubernetes snapshot source covering every configured kubeconfig context."""

from __future__ import annotations

import logging
import os
import stat
from typing import Any

from fleetguard.collectors.base import BaseSnapshotSource, SnapshotError
from fleetguard.models import (
    DEFAULT_RESOURCE_POOL,
    ClusterInfo,
    FleetSnapshot,
    NodeCapacity,
    PodIssue,
)

logger = logging.getLogger("fleetguard.collectors.k8s")

# Pods in these phases no longer hold their resource requests
_TERMINAL_PHASES = {"Succeeded", "Failed"}


class KubernetesSnapshotSource(BaseSnapshotSource):
    """Builds a FleetSnapshot from one or more clusters.

    Each kubeconfig context is treated as one cluster named after the context.
    A cluster is healthy iff every node reports Ready. Resource-pool capacity
    comes from node allocatable, allocation from the requests of non-terminal
    pods scheduled on the node.

    Config keys (``collectors.kubernetes``): ``kubeconfig``, ``contexts``
    (empty = every context), ``gpu_resource``, ``restart_threshold``.
    """

    # Default timeout (seconds) for all K8s API calls
    _API_TIMEOUT: int = 30

    @property
    def name(self) -> str:
        return "kubernetes"

    @property
    def resource_pool(self) -> str:
        return self.config.get("gpu_resource") or DEFAULT_RESOURCE_POOL

    def is_available(self) -> bool:
        """True if at least one context's API server answers."""
        from kubernetes import client

        try:
            contexts = self._contexts()
        except Exception as e:
            logger.debug("No kubeconfig contexts available: %s", e)
            return False
        for context in contexts:
            try:
                api = self._api_client(context)
                client.VersionApi(api).get_code(_request_timeout=self._API_TIMEOUT)
                return True
            except Exception as e:
                logger.debug("Context %s not reachable: %s", context, e)
        return False

    def collect(self) -> FleetSnapshot:
        """Collect cluster health, node capacity and pod issues from every context.

        Raises:
            SnapshotError: If no context could be read.
        """
        from kubernetes import client

        contexts = self._contexts()
        if not contexts:
            raise SnapshotError("No kubeconfig contexts to collect from")

        snapshot = FleetSnapshot()
        reachable = 0
        for context in contexts:
            try:
                v1 = client.CoreV1Api(self._api_client(context))
                nodes = v1.list_node(_request_timeout=self._API_TIMEOUT).items
                pods = v1.list_pod_for_all_namespaces(_request_timeout=self._API_TIMEOUT).items
            except Exception as e:
                logger.warning("Cannot read cluster %s: %s", context, e, extra={"cluster": context})
                snapshot.clusters.append(ClusterInfo(name=context, healthy=None))
                continue

            reachable += 1
            snapshot.clusters.append(self._cluster_info(context, nodes))
            snapshot.nodes.extend(self._node_capacity(context, nodes, pods))
            snapshot.pod_issues.extend(self._pod_issues(context, pods))

        if reachable == 0:
            raise SnapshotError(f"None of {len(contexts)} cluster(s) could be reached")

        logger.info(
            "Collected %d cluster(s), %d node pool(s), %d pod issue(s)",
            reachable, len(snapshot.nodes), len(snapshot.pod_issues),
        )
        return snapshot

    # -------------------------------------------------------------------------
    # Kubeconfig
    # -------------------------------------------------------------------------

    def _contexts(self) -> list[str]:
        from kubernetes import config as k8s_config

        configured = self.config.get("contexts") or []
        if configured:
            return list(configured)

        kubeconfig = self._kubeconfig_path()
        all_contexts, _active = k8s_config.list_kube_config_contexts(config_file=kubeconfig)
        return [c["name"] for c in all_contexts]

    def _api_client(self, context: str) -> Any:
        from kubernetes import config as k8s_config

        return k8s_config.new_client_from_config(
            config_file=self._kubeconfig_path(),
            context=context,
        )

    def _kubeconfig_path(self) -> str | None:
        kubeconfig = self.config.get("kubeconfig")
        if not kubeconfig:
            return None
        kubeconfig = os.path.expanduser(kubeconfig)
        try:
            mode = os.stat(kubeconfig).st_mode
        except OSError:
            return kubeconfig
        if mode & (stat.S_IRGRP | stat.S_IROTH):
            logger.warning(
                "kubeconfig %s is readable by group/others (mode %o). "
                "Consider running: chmod 600 %s",
                kubeconfig,
                stat.S_IMODE(mode),
                kubeconfig,
            )
        return kubeconfig

    # -------------------------------------------------------------------------
    # Object -> record conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _is_ready(node: Any) -> bool:
        for cond in (node.status.conditions or []):
            if cond.type == "Ready":
                return cond.status == "True"
        return False

    def _cluster_info(self, context: str, nodes: list[Any]) -> ClusterInfo:
        return ClusterInfo(
            name=context,
            healthy=all(self._is_ready(n) for n in nodes) if nodes else None,
            node_count=len(nodes),
        )

    def _node_capacity(self, context: str, nodes: list[Any], pods: list[Any]) -> list[NodeCapacity]:
        pool = self.resource_pool
        allocated: dict[str, float] = {}
        for pod in pods:
            node_name = pod.spec.node_name
            if not node_name or (pod.status.phase or "") in _TERMINAL_PHASES:
                continue
            for container in (pod.spec.containers or []):
                requests = (container.resources.requests if container.resources else None) or {}
                if pool in requests:
                    allocated[node_name] = allocated.get(node_name, 0.0) + _quantity(requests[pool])

        records = []
        for node in nodes:
            capacity = _quantity((node.status.allocatable or {}).get(pool))
            if capacity <= 0:
                continue
            name = node.metadata.name
            records.append(NodeCapacity(
                name=name,
                cluster=context,
                resource=pool,
                capacity=capacity,
                allocated=allocated.get(name, 0.0),
            ))
        return records

    def _pod_issues(self, context: str, pods: list[Any]) -> list[PodIssue]:
        threshold = int(self.config.get("restart_threshold", 1))
        issues = []
        for pod in pods:
            restarts = 0
            reason = None
            for cs in (pod.status.container_statuses or []):
                restarts += cs.restart_count or 0
                waiting = cs.state.waiting if cs.state else None
                if waiting and waiting.reason and reason is None:
                    reason = waiting.reason
            if restarts < threshold and reason is None:
                continue
            issues.append(PodIssue(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace,
                cluster=context,
                restarts=restarts,
                status=reason or pod.status.phase or "Unknown",
                reason=reason,
            ))
        return issues


def _quantity(value: Any) -> float:
    """Parse a Kubernetes quantity ("4", "500m", "2Gi"); missing or bad -> 0."""
    if value is None:
        return 0.0
    from kubernetes.utils import parse_quantity

    try:
        return float(parse_quantity(value))
    except (ValueError, TypeError) as e:
        logger.debug("Unparseable quantity %r: %s", value, e)
        return 0.0
