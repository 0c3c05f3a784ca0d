"""Background evaluation thread: collect a snapshot, evaluate every enabled rule."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fleetguard.collectors.base import BaseSnapshotSource
from fleetguard.engine.breaker import CircuitBreaker, CircuitOpen
from fleetguard.models import Alert, FleetSnapshot

if TYPE_CHECKING:
    from fleetguard.alerts.manager import AlertManager
    from fleetguard.rules.store import RuleStore

logger = logging.getLogger("fleetguard.engine")

MIN_INTERVAL = 10


class EvaluationScheduler:
    """Runs :meth:`AlertManager.evaluate` on a fixed cadence in a daemon thread.

    Snapshot collection is wrapped with:
      - exponential backoff retry (tenacity): 3 attempts
      - a circuit breaker: opens after 3 consecutive failed collections,
        half-opens after 60s

    A tick whose collection fails evaluates nothing, so no alert is resolved
    on missing data.

    Thread safety: scheduling state is protected by ``self._lock``; callers
    read it through :meth:`get_state`.

    Args:
        manager: Alert manager to evaluate.
        source: Snapshot source polled every tick.
        interval: Seconds between evaluations.
        initial_delay: Seconds before the first evaluation after start().
        rule_store: When given, rule changes trigger an evaluation after
            ``rule_change_delay`` seconds.
        rule_change_delay: Delay used for rule-change triggers.
        retry_multiplier: Backoff multiplier; 0 disables waiting between retries.
    """

    _RETRY_ATTEMPTS = 3
    _RETRY_WAIT_MAX = 8       # seconds

    _CB_FAILURE_THRESHOLD = 3
    _CB_RESET_TIMEOUT = 60.0  # seconds

    def __init__(
        self,
        manager: AlertManager,
        source: BaseSnapshotSource,
        interval: int = 30,
        initial_delay: float = 1.0,
        rule_store: RuleStore | None = None,
        rule_change_delay: float = 1.0,
        retry_multiplier: float = 1.0,
    ) -> None:
        if interval < MIN_INTERVAL:
            raise ValueError(f"Interval must be at least {MIN_INTERVAL} seconds")
        self._manager = manager
        self._source = source
        self._interval = interval
        self._initial_delay = initial_delay
        self._rule_change_delay = rule_change_delay
        self._retry_multiplier = retry_multiplier
        self._breaker = CircuitBreaker(
            name=source.name,
            failure_threshold=self._CB_FAILURE_THRESHOLD,
            reset_timeout=self._CB_RESET_TIMEOUT,
        )

        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

        # Mutable state -- always write under lock
        self._next_run: float | None = None
        self._last_run: datetime | None = None
        self._last_error: str | None = None
        self._last_firing = 0
        self._runs = 0

        if rule_store is not None:
            rule_store.add_listener(self._on_rules_changed)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the daemon thread; the first evaluation runs after ``initial_delay``."""
        if self.running:
            return
        self._stopping.clear()
        with self._lock:
            self._next_run = time.monotonic() + self._initial_delay
        self._thread = threading.Thread(target=self._loop, daemon=True, name="fleetguard-eval")
        self._thread.start()
        logger.info("EvaluationScheduler started (interval=%ds)", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the thread and wait up to *timeout* seconds for it to exit."""
        self._stopping.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("EvaluationScheduler stopped")

    def trigger(self, delay: float = 1.0) -> None:
        """Bring the next evaluation forward to at most *delay* seconds from now."""
        target = time.monotonic() + max(delay, 0.0)
        with self._lock:
            if self._next_run is None or target < self._next_run:
                self._next_run = target
        self._wake.set()

    def set_interval(self, seconds: int) -> None:
        """Update the cadence. Takes effect after the next evaluation."""
        if seconds < MIN_INTERVAL:
            raise ValueError(f"Interval must be at least {MIN_INTERVAL} seconds")
        with self._lock:
            self._interval = seconds
        logger.info("Evaluation interval updated to %ds", seconds)

    def get_state(self) -> dict[str, Any]:
        with self._lock:
            next_in = None
            if self._next_run is not None and self.running:
                next_in = max(self._next_run - time.monotonic(), 0.0)
            return {
                "running": self.running,
                "interval": self._interval,
                "runs": self._runs,
                "last_run": self._last_run.isoformat() if self._last_run else None,
                "last_error": self._last_error,
                "last_firing": self._last_firing,
                "next_run_in": next_in,
                "source": self._source.name,
                "circuit": self._breaker.state,
                "evaluating": self._manager.is_evaluating,
            }

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def run_once(self) -> list[Alert]:
        """Collect a snapshot and evaluate it now, in the calling thread.

        Returns:
            Firing alerts, or an empty list if collection failed or another
            evaluation was already running.
        """
        snapshot = self._collect()
        if snapshot is None:
            return []

        firing = self._manager.evaluate(snapshot)
        with self._lock:
            self._runs += 1
            self._last_run = datetime.now(timezone.utc)
            self._last_error = None
            self._last_firing = len(firing)
        return firing

    def _collect(self) -> FleetSnapshot | None:
        try:
            return self._breaker.call(self._collect_with_retry)
        except CircuitOpen as e:
            error = str(e)
            logger.warning("Snapshot collection skipped: %s", e)
        except RetryError as e:
            error = str(e.last_attempt.exception())
            logger.error(
                "Snapshot collection from %s failed after %d attempts: %s",
                self._source.name, self._RETRY_ATTEMPTS, error,
            )
        with self._lock:
            self._last_error = error
        return None

    def _collect_with_retry(self) -> FleetSnapshot:
        @retry(
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(self._RETRY_ATTEMPTS),
            wait=wait_exponential(multiplier=self._retry_multiplier, max=self._RETRY_WAIT_MAX),
            reraise=False,
        )
        def _run() -> FleetSnapshot:
            return self._source.collect()

        return _run()

    def _on_rules_changed(self, _rules: Any) -> None:
        if self.running:
            self.trigger(self._rule_change_delay)

    def _loop(self) -> None:
        """Main scheduling loop -- runs in the daemon thread."""
        while not self._stopping.is_set():
            with self._lock:
                now = time.monotonic()
                remaining = (self._next_run or now) - now
                if remaining <= 0:
                    # Set before running so a trigger() during the run can pull it in
                    self._next_run = now + self._interval

            if remaining > 0:
                self._wake.wait(remaining)
                self._wake.clear()
                continue

            try:
                self.run_once()
            except Exception as e:
                logger.error("Evaluation cycle failed: %s", e)
                with self._lock:
                    self._last_error = str(e)
