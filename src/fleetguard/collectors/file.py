"""Snapshot source backed by a JSON document on disk."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from fleetguard.collectors.base import BaseSnapshotSource, SnapshotError
from fleetguard.models import FleetSnapshot

logger = logging.getLogger("fleetguard.collectors.file")


class FileSnapshotSource(BaseSnapshotSource):
    """Reads a ``FleetSnapshot`` JSON document, re-read on every collect().

    Useful for offline evaluation and for feeding fleetguard from another
    tool that exports cluster state.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__({"path": str(path)})
        self.path = Path(path).expanduser()

    @property
    def name(self) -> str:
        return "file"

    def is_available(self) -> bool:
        return self.path.is_file()

    def collect(self) -> FleetSnapshot:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise SnapshotError(f"Cannot read snapshot {self.path}: {e}") from e
        except ValueError as e:
            raise SnapshotError(f"Snapshot {self.path} is not valid JSON: {e}") from e

        try:
            snapshot = FleetSnapshot.model_validate(raw)
        except ValidationError as e:
            raise SnapshotError(f"Snapshot {self.path} has an invalid shape: {e}") from e

        logger.debug(
            "Loaded snapshot from %s: %d cluster(s), %d node(s), %d pod issue(s)",
            self.path, len(snapshot.clusters), len(snapshot.nodes), len(snapshot.pod_issues),
        )
        return snapshot
