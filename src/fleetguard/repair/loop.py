"""Diagnose-Repair Orchestrator.

Flow::

    idle -> scanning -> diagnosing -> proposing-repair -> awaiting-approval
         -> repairing -> verifying -> (diagnosing again | complete)

Diagnose-only sessions stop at ``complete`` right after diagnosis. Any phase
can drop to ``failed`` when dispatch fails or a mission reports an error.

The mission runner is asynchronous: :meth:`DiagnoseRepairLoop.start_diagnose`
and :meth:`DiagnoseRepairLoop.execute_repairs` only dispatch. The session
advances when the completion signal arrives through
:meth:`DiagnoseRepairLoop.on_diagnosis_complete` /
:meth:`DiagnoseRepairLoop.on_repair_complete` (or :meth:`handle_result`).
Callers that want to block use :meth:`wait_for`.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable

from fleetguard.missions.base import BaseMissionRunner, MissionResult, MissionSpec
from fleetguard.missions.prompts import render_diagnosis_prompt, render_repair_prompt
from fleetguard.models import new_id
from fleetguard.repair.derivation import propose_repairs
from fleetguard.repair.models import (
    DEFAULT_MAX_LOOPS,
    DiagnoseRepairPhase,
    DiagnoseRepairState,
    MonitoredResource,
    MonitorIssue,
)

logger = logging.getLogger("fleetguard.repair")

Phase = DiagnoseRepairPhase

_STARTABLE = {Phase.IDLE, Phase.COMPLETE, Phase.VERIFYING}
_APPROVABLE = {Phase.PROPOSING_REPAIR, Phase.AWAITING_APPROVAL}

CANCELLED_ERROR = "Cancelled by user"


class PhaseError(Exception):
    """Raised when an operation is not allowed in the session's current phase."""

    def __init__(self, operation: str, phase: DiagnoseRepairPhase) -> None:
        super().__init__(f"Cannot {operation} while session is {phase.value}")
        self.operation = operation
        self.phase = phase


class DiagnoseRepairLoop:
    """One diagnose/repair session over a set of monitored resources.

    Args:
        monitor_type: Workload kind being monitored, used in prompts and titles.
        mission_runner: Runner used to start the diagnosis mission and send the
            repair instruction.
        repairable: False for diagnose-only sessions.
        max_loops: Diagnose/repair iterations allowed before the session
            completes. Must be at least 1.
        session_id: Identifier used in logs and by the session registry.
    """

    def __init__(
        self,
        monitor_type: str,
        mission_runner: BaseMissionRunner,
        repairable: bool = True,
        max_loops: int = DEFAULT_MAX_LOOPS,
        session_id: str | None = None,
    ) -> None:
        if max_loops < 1:
            raise ValueError("max_loops must be at least 1")
        self.monitor_type = monitor_type
        self.repairable = repairable
        self.max_loops = max_loops
        self.session_id = session_id or new_id("session")
        self._runner = mission_runner
        self._cond = threading.Condition()
        self._state = DiagnoseRepairState(max_loops=max_loops)
        # Repair ids sent by the in-flight execute_repairs() call
        self._executing: list[str] = []
        # Bumped by start/cancel/reset so late dispatch results can be dropped
        self._generation = 0

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def state(self) -> DiagnoseRepairState:
        """Deep copy of the current state."""
        with self._cond:
            return self._state.model_copy(deep=True)

    @property
    def phase(self) -> DiagnoseRepairPhase:
        with self._cond:
            return self._state.phase

    @property
    def mission_id(self) -> str | None:
        with self._cond:
            return self._state.mission_id

    @property
    def finished(self) -> bool:
        """True when the session has stopped and nothing is waiting on it."""
        with self._cond:
            if self._state.phase in (Phase.COMPLETE, Phase.FAILED):
                return True
            return self._state.phase == Phase.IDLE and self._state.error == CANCELLED_ERROR

    def wait_for(self, *phases: DiagnoseRepairPhase | str, timeout: float | None = None) -> bool:
        """Block until the session reaches one of *phases*.

        Returns:
            True if a wanted phase was reached, False on timeout.
        """
        wanted = {Phase(p) for p in phases}
        with self._cond:
            return self._cond.wait_for(lambda: self._state.phase in wanted, timeout=timeout)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def start_diagnose(
        self,
        resources: Iterable[MonitoredResource],
        issues: Iterable[MonitorIssue],
        context: dict[str, Any] | None = None,
    ) -> str:
        """Start (or, from ``verifying``, continue) the session with a diagnosis mission.

        Args:
            resources: Monitored resources and their status.
            issues: Issues detected on those resources.
            context: Free-form workload context passed to the agent.

        Returns:
            The diagnosis mission id.

        Raises:
            PhaseError: Unless the session is idle, complete or verifying.
            MissionDispatchError: If the mission could not be started. The
                session is left in ``failed``.
        """
        resources = list(resources)
        issues = list(issues)
        context = dict(context or {})

        with self._cond:
            current = self._state.phase
            if current not in _STARTABLE:
                raise PhaseError("start diagnosis", current)

            continuing = current == Phase.VERIFYING
            self._generation += 1
            generation = self._generation
            self._executing = []
            self._state = DiagnoseRepairState(
                phase=Phase.SCANNING,
                issues_found=issues,
                completed_repairs=list(self._state.completed_repairs) if continuing else [],
                loop_count=self._state.loop_count + 1 if continuing else 0,
                max_loops=self.max_loops,
            )
            loop_count = self._state.loop_count
            self._cond.notify_all()

        prompt = render_diagnosis_prompt(
            monitor_type=self.monitor_type,
            resources=resources,
            issues=issues,
            context=context,
            repairable=self.repairable,
            loop_count=loop_count,
            max_loops=self.max_loops,
        )
        spec = MissionSpec(
            title=f"{self.monitor_type} Diagnosis",
            description=f"Diagnosing workload health issues for {self.monitor_type}",
            type="troubleshoot",
            cluster=context.get("cluster"),
            initial_prompt=prompt,
            context=context,
        )

        try:
            mission_id = self._runner.start_mission(spec)
        except Exception as e:
            self._fail_if_current(generation, f"Failed to start diagnosis: {e}")
            raise

        with self._cond:
            if self._generation != generation:
                logger.info(
                    "Session changed while dispatching, dropping mission",
                    extra={"session_id": self.session_id, "mission_id": mission_id},
                )
                return mission_id
            self._state.mission_id = mission_id
            self._state.phase = Phase.DIAGNOSING
            self._cond.notify_all()

        logger.info(
            "Diagnosis started (loop %d/%d, %d issue(s))",
            loop_count + 1, self.max_loops, len(issues),
            extra={"session_id": self.session_id, "mission_id": mission_id, "phase": "diagnosing"},
        )
        return mission_id

    def on_diagnosis_complete(self, result: MissionResult | None = None) -> bool:
        """Advance past ``diagnosing`` once the diagnosis mission has finished.

        Ignored unless the session is diagnosing and *result* (when given)
        belongs to the attached mission.

        Returns:
            True if the signal was applied.
        """
        with self._cond:
            if not self._accepts(Phase.DIAGNOSING, result):
                return False

            if result is not None and not result.success:
                self._fail_locked(result.error or "Diagnosis mission failed")
                return True

            if result is not None:
                self._state.analysis = result.summary or result.output or None

            if self.repairable and self._state.issues_found:
                self._state.proposed_repairs = propose_repairs(self._state.issues_found)
                self._state.phase = Phase.PROPOSING_REPAIR
            else:
                self._state.phase = Phase.COMPLETE
            self._cond.notify_all()
            phase = self._state.phase
            proposed = len(self._state.proposed_repairs)

        logger.info(
            "Diagnosis complete, %d repair(s) proposed", proposed,
            extra={"session_id": self.session_id, "phase": phase.value},
        )
        return True

    def approve_repair(self, repair_id: str) -> bool:
        """Approve one proposed repair.

        Returns:
            False if no proposed repair has that id.

        Raises:
            PhaseError: Unless repairs are being proposed or approved.
        """
        with self._cond:
            if self._state.phase not in _APPROVABLE:
                raise PhaseError("approve repairs", self._state.phase)
            for repair in self._state.proposed_repairs:
                if repair.id == repair_id:
                    repair.approved = True
                    break
            else:
                return False
            self._state.phase = Phase.AWAITING_APPROVAL
            self._cond.notify_all()
        logger.info("Repair %s approved", repair_id, extra={"session_id": self.session_id})
        return True

    def approve_all_repairs(self) -> int:
        """Approve every proposed repair and return how many there are."""
        with self._cond:
            if self._state.phase not in _APPROVABLE:
                raise PhaseError("approve repairs", self._state.phase)
            for repair in self._state.proposed_repairs:
                repair.approved = True
            self._state.phase = Phase.AWAITING_APPROVAL
            self._cond.notify_all()
            count = len(self._state.proposed_repairs)
        logger.info("All %d repair(s) approved", count, extra={"session_id": self.session_id})
        return count

    def execute_repairs(self) -> list[str]:
        """Send every approved, not yet completed repair to the mission.

        Does nothing when there is no such repair.

        Returns:
            Ids of the repairs sent, empty when nothing was done.

        Raises:
            PhaseError: If there are repairs to run but the session is not in
                an approval phase.
            MissionDispatchError: If the instruction could not be sent. The
                session is left in ``failed``.
        """
        with self._cond:
            done = set(self._state.completed_repairs)
            pending = [
                r.model_copy()
                for r in self._state.proposed_repairs
                if r.approved and r.id not in done
            ]
            if not pending:
                return []
            if self._state.phase not in _APPROVABLE:
                raise PhaseError("execute repairs", self._state.phase)

            mission_id = self._state.mission_id
            generation = self._generation
            self._executing = [r.id for r in pending]
            self._state.phase = Phase.REPAIRING
            self._cond.notify_all()

        if mission_id is None:
            self._fail_if_current(generation, "No mission attached to session")
            return []

        try:
            self._runner.send_message(mission_id, render_repair_prompt(pending))
        except Exception as e:
            self._fail_if_current(generation, f"Failed to send repairs: {e}")
            raise

        logger.info(
            "Executing %d repair(s)", len(pending),
            extra={"session_id": self.session_id, "mission_id": mission_id, "phase": "repairing"},
        )
        return [r.id for r in pending]

    def on_repair_complete(self, result: MissionResult | None = None) -> bool:
        """Record the executed repairs and move to ``verifying`` or ``complete``.

        Returns:
            True if the signal was applied.
        """
        with self._cond:
            if not self._accepts(Phase.REPAIRING, result):
                return False

            if result is not None and not result.success:
                self._fail_locked(result.error or "Repair mission failed")
                return True

            for repair_id in self._executing:
                if repair_id not in self._state.completed_repairs:
                    self._state.completed_repairs.append(repair_id)
            self._executing = []

            if self._state.loop_count >= self._state.max_loops - 1:
                self._state.phase = Phase.COMPLETE
            else:
                self._state.phase = Phase.VERIFYING
            self._cond.notify_all()
            phase = self._state.phase

        logger.info(
            "Repairs complete", extra={"session_id": self.session_id, "phase": phase.value},
        )
        return True

    def handle_result(self, result: MissionResult) -> bool:
        """Route a completion signal to the step the session is waiting on."""
        phase = self.phase
        if phase == Phase.DIAGNOSING:
            return self.on_diagnosis_complete(result)
        if phase == Phase.REPAIRING:
            return self.on_repair_complete(result)
        logger.debug(
            "Ignoring mission result in phase %s", phase.value,
            extra={"session_id": self.session_id, "mission_id": result.mission_id},
        )
        return False

    def fail(self, error: str) -> None:
        with self._cond:
            self._fail_locked(error)

    def cancel(self) -> None:
        """Detach from the mission and return to idle.

        The remote mission is not stopped; its completion signal is ignored.
        """
        with self._cond:
            self._generation += 1
            self._executing = []
            self._state.mission_id = None
            self._state.phase = Phase.IDLE
            self._state.error = CANCELLED_ERROR
            self._cond.notify_all()
        logger.info("Session cancelled", extra={"session_id": self.session_id})

    def reset(self) -> None:
        with self._cond:
            self._generation += 1
            self._executing = []
            self._state = DiagnoseRepairState(max_loops=self.max_loops)
            self._cond.notify_all()

    # -------------------------------------------------------------------------
    # Private helpers
    # -------------------------------------------------------------------------

    def _accepts(self, phase: DiagnoseRepairPhase, result: MissionResult | None) -> bool:
        if self._state.phase != phase:
            logger.debug(
                "Ignoring completion signal in phase %s", self._state.phase.value,
                extra={"session_id": self.session_id},
            )
            return False
        if result is not None and result.mission_id != self._state.mission_id:
            logger.debug(
                "Ignoring result for foreign mission",
                extra={"session_id": self.session_id, "mission_id": result.mission_id},
            )
            return False
        return True

    def _fail_locked(self, error: str) -> None:
        self._executing = []
        self._state.phase = Phase.FAILED
        self._state.error = error
        self._cond.notify_all()
        logger.error("Session failed: %s", error, extra={"session_id": self.session_id, "phase": "failed"})

    def _fail_if_current(self, generation: int, error: str) -> None:
        with self._cond:
            if self._generation == generation:
                self._fail_locked(error)
