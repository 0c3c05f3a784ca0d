"""fleetguard: rule-based alerting and AI diagnose/repair loops for Kubernetes fleets."""

__version__ = "0.3.0"
