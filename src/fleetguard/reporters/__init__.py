"""Output formatting reporters."""

from fleetguard.reporters.console import (
    print_alert_detail,
    print_alerts,
    print_error,
    print_info,
    print_rules,
    print_session,
    print_stats,
    print_success,
)
from fleetguard.reporters.json_reporter import (
    alerts_to_json,
    evaluation_to_json,
    rules_to_json,
    session_to_dict,
)

__all__ = [
    "print_alerts",
    "print_alert_detail",
    "print_rules",
    "print_session",
    "print_stats",
    "print_error",
    "print_success",
    "print_info",
    "alerts_to_json",
    "evaluation_to_json",
    "rules_to_json",
    "session_to_dict",
]
