"""Registry of live diagnose/repair sessions and mission-result routing."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable

from fleetguard.missions.base import BaseMissionRunner, MissionResult
from fleetguard.repair.loop import DiagnoseRepairLoop
from fleetguard.repair.models import DEFAULT_MAX_LOOPS

if TYPE_CHECKING:
    from fleetguard.alerts.manager import AlertManager

logger = logging.getLogger("fleetguard.repair.sessions")

DEFAULT_SESSION_RETENTION = 3600.0


class SessionRegistry:
    """Owns concurrent :class:`DiagnoseRepairLoop` sessions.

    Also the single entry point for mission completion signals:
    :meth:`deliver` hands a :class:`MissionResult` to the session that owns
    the mission, or to the alert manager when it is an alert diagnosis.

    Args:
        mission_runner: Runner shared by every session.
        alert_manager: Receives results of alert diagnosis missions.
        max_loops: Default loop bound for new sessions.
        repairable: Default repair capability for new sessions.
        retention: Seconds a finished session (complete, failed or cancelled)
            stays listed before it is evicted. None keeps sessions until
            :meth:`remove` is called.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        mission_runner: BaseMissionRunner,
        alert_manager: AlertManager | None = None,
        max_loops: int = DEFAULT_MAX_LOOPS,
        repairable: bool = True,
        retention: float | None = DEFAULT_SESSION_RETENTION,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner = mission_runner
        self._alerts = alert_manager
        self._max_loops = max_loops
        self._repairable = repairable
        self._lock = threading.Lock()
        self._retention = retention
        self._clock = clock
        self._sessions: dict[str, DiagnoseRepairLoop] = {}
        self._finished_since: dict[str, float] = {}

    def create(
        self,
        monitor_type: str,
        repairable: bool | None = None,
        max_loops: int | None = None,
    ) -> DiagnoseRepairLoop:
        session = DiagnoseRepairLoop(
            monitor_type,
            self._runner,
            repairable=self._repairable if repairable is None else repairable,
            max_loops=max_loops or self._max_loops,
        )
        with self._lock:
            self._prune_locked()
            self._sessions[session.session_id] = session
        logger.info(
            "Session created for %s (repairable=%s)", monitor_type, session.repairable,
            extra={"session_id": session.session_id},
        )
        return session

    def get(self, session_id: str) -> DiagnoseRepairLoop | None:
        with self._lock:
            self._prune_locked()
            return self._sessions.get(session_id)

    def list(self) -> list[DiagnoseRepairLoop]:
        with self._lock:
            self._prune_locked()
            return list(self._sessions.values())

    def remove(self, session_id: str) -> bool:
        """Drop a session. Its mission, if any, keeps running remotely."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._finished_since.pop(session_id, None)
        if session is None:
            return False
        session.cancel()
        return True

    def deliver(self, result: MissionResult) -> str | None:
        """Route a completion signal to whoever owns ``result.mission_id``.

        Returns:
            ``"session"`` or ``"alert"`` depending on the owner that took the
            result, or None if nobody did.
        """
        for session in self.list():
            if session.mission_id == result.mission_id:
                if session.handle_result(result):
                    return "session"
                return None

        if self._alerts is not None:
            if result.success:
                summary = result.summary or result.output or "AI analysis complete"
            else:
                summary = f"AI analysis failed: {result.error or 'unknown error'}"
            alert = self._alerts.record_ai_diagnosis(
                result.mission_id,
                summary=summary,
                root_cause=result.root_cause or "",
                suggestions=result.suggestions,
            )
            if alert is not None:
                logger.info(
                    "AI diagnosis recorded",
                    extra={"alert_id": alert.id, "mission_id": result.mission_id},
                )
                return "alert"

        logger.warning("No owner for mission result", extra={"mission_id": result.mission_id})
        return None

    def _prune_locked(self) -> None:
        # The clock starts when a session is first seen finished, not when it finished.
        now = self._clock()
        for session_id, session in list(self._sessions.items()):
            if not session.finished:
                self._finished_since.pop(session_id, None)
                continue
            since = self._finished_since.setdefault(session_id, now)
            if self._retention is not None and now - since >= self._retention:
                del self._sessions[session_id]
                del self._finished_since[session_id]
                logger.info(
                    "Session evicted after %.0fs finished", now - since,
                    extra={"session_id": session_id, "phase": session.phase.value},
                )
