"""Alert rule storage and built-in presets."""

from fleetguard.rules.presets import PRESET_RULES, build_preset_rules
from fleetguard.rules.store import RuleStore

__all__ = ["PRESET_RULES", "build_preset_rules", "RuleStore"]
