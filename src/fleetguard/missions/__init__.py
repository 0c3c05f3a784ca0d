"""Mission Dispatch Interface and its HTTP implementation."""

from fleetguard.missions.base import (
    BaseMissionRunner,
    MissionDispatchError,
    MissionResult,
    MissionSpec,
)
from fleetguard.missions.http import HttpMissionRunner

__all__ = [
    "BaseMissionRunner",
    "MissionDispatchError",
    "MissionResult",
    "MissionSpec",
    "HttpMissionRunner",
]
