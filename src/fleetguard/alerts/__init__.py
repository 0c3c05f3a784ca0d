"""Alert Lifecycle Manager."""

from fleetguard.alerts.manager import AlertManager

__all__ = ["AlertManager"]
