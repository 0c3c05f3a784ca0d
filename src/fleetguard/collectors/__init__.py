"""Snapshot sources."""

from fleetguard.collectors.base import BaseSnapshotSource, SnapshotError
from fleetguard.collectors.file import FileSnapshotSource
from fleetguard.collectors.k8s import KubernetesSnapshotSource

__all__ = [
    "BaseSnapshotSource",
    "SnapshotError",
    "FileSnapshotSource",
    "KubernetesSnapshotSource",
]
