"""Mission Dispatch Interface: the contract with the external mission runner.

The mission runner executes an AI agent asynchronously. fleetguard only starts
missions and sends follow-up instructions; completion arrives later as a
:class:`MissionResult` through a separate channel (the HTTP callback or a
direct call from the embedding application).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class MissionDispatchError(Exception):
    """Raised when the mission runner cannot be reached or rejects a request."""


class MissionSpec(BaseModel):
    """Everything the runner needs to start a mission."""

    title: str
    description: str
    type: str = "troubleshoot"
    cluster: str | None = None
    initial_prompt: str
    context: dict[str, Any] = Field(default_factory=dict)


class MissionResult(BaseModel):
    """Completion signal for a mission (or for the latest instruction sent to it)."""

    mission_id: str
    success: bool = True
    output: str = ""
    error: str | None = None
    summary: str | None = None
    root_cause: str | None = None
    suggestions: list[str] = Field(default_factory=list)


class BaseMissionRunner(ABC):
    """Interface to the external mission runner.

    Both calls are fire-and-forget: they return as soon as the runner has
    accepted the request. Implementations raise :class:`MissionDispatchError`
    when dispatch fails and never retry on their own.
    """

    @abstractmethod
    def start_mission(self, spec: MissionSpec) -> str:
        """Start a mission and return its identifier."""
        ...

    @abstractmethod
    def send_message(self, mission_id: str, text: str) -> None:
        """Append a follow-up instruction to a running mission."""
        ...
