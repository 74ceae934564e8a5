"""
Resource group cleanup: activity evaluation, safety classification and sweep.
"""

from .models import CleanupStatus, ResourceGroupRecord, SafetyContext, Activity
from .rules import CleanupPolicy, SafetyRule, classify, explain, DEFAULT_RULES, UNSAFE_RESOURCE_TYPES
from .sweep import CleanupReport, CleanupResult, run_cleanup

__all__ = [
    "CleanupStatus",
    "ResourceGroupRecord",
    "SafetyContext",
    "Activity",
    "CleanupPolicy",
    "SafetyRule",
    "classify",
    "explain",
    "DEFAULT_RULES",
    "UNSAFE_RESOURCE_TYPES",
    "CleanupReport",
    "CleanupResult",
    "run_cleanup",
]
