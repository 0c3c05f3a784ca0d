"""Abstract base class for fleet snapshot sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from fleetguard.models import FleetSnapshot


class SnapshotError(Exception):
    """Raised when a source cannot produce a snapshot at all."""


class BaseSnapshotSource(ABC):
    """Produces the point-in-time fleet view that rules are evaluated against.

    A source raises :class:`SnapshotError` when it has nothing usable to
    return; partial data (one unreachable cluster out of several) is returned
    as-is.
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config or {}

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique source name (e.g., 'kubernetes', 'file')."""
        ...

    @abstractmethod
    def collect(self) -> FleetSnapshot:
        """Collect the current fleet state."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this source can reach its data."""
        ...
