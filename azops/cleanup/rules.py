"""
Ordered safety rules for resource group cleanup.

Rules are evaluated in order and the first one whose predicate matches
decides the outcome. A rule with no status excludes the group from the
report.
"""

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Callable, Iterable, List, Optional

from .models import CleanupStatus, SafetyContext

UNSAFE_RESOURCE_TYPES = frozenset({
    "microsoft.compute/virtualmachines",
    "microsoft.network/networkinterfaces",
    "microsoft.network/virtualnetworks",
    "microsoft.sql/servers",
    "microsoft.containerservice/managedclusters",
})


@dataclass
class CleanupPolicy:
    """Inputs to classification that are fixed for a whole run."""
    patterns: List[str]
    inactive_days: int
    delete: bool = False
    unsafe_types: frozenset = UNSAFE_RESOURCE_TYPES


@dataclass
class SafetyRule:
    """A named predicate with the status it yields when it matches."""
    id: str
    predicate: Callable[[SafetyContext, CleanupPolicy], bool]
    status: Optional[CleanupStatus]
    description: str = ""


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive glob match of a resource group name."""
    lowered = name.lower()
    return any(fnmatchcase(lowered, p.lower()) for p in patterns)


def critical_types(resource_types: Iterable[str], unsafe_types: Iterable[str] = UNSAFE_RESOURCE_TYPES) -> List[str]:
    """Resource types in the group that are never auto-deleted."""
    unsafe = {t.lower() for t in unsafe_types}
    return sorted({t for t in resource_types if t.lower() in unsafe})


DEFAULT_RULES: List[SafetyRule] = [
    SafetyRule(
        id="name_not_matched",
        predicate=lambda ctx, policy: not matches_any(ctx.name, policy.patterns),
        status=None,
        description="Name matches no configured pattern",
    ),
    SafetyRule(
        id="activity_unknown",
        predicate=lambda ctx, policy: not ctx.activity.known,
        status=CleanupStatus.UNKNOWN_ACTIVITY,
        description="No change time on any resource and no valid creation tag",
    ),
    SafetyRule(
        id="recently_active",
        predicate=lambda ctx, policy: ctx.activity.days_inactive < policy.inactive_days,
        status=None,
        description="Inactive for fewer days than the threshold",
    ),
    SafetyRule(
        id="critical_resources",
        predicate=lambda ctx, policy: bool(critical_types(ctx.resource_types, policy.unsafe_types)),
        status=CleanupStatus.SKIPPED_CRITICAL_RESOURCES,
        description="Contains resource types that are never auto-deleted",
    ),
    SafetyRule(
        id="locked",
        predicate=lambda ctx, policy: ctx.locked,
        status=CleanupStatus.SKIPPED_LOCKED,
        description="A management lock exists on the group",
    ),
    SafetyRule(
        id="delete",
        predicate=lambda ctx, policy: policy.delete,
        status=CleanupStatus.DELETED,
        description="Deletion mode enabled",
    ),
    SafetyRule(
        id="mark",
        predicate=lambda ctx, policy: True,
        status=CleanupStatus.MARKED_FOR_CLEANUP,
        description="Tag the group for later cleanup",
    ),
]


def classify(ctx: SafetyContext, policy: CleanupPolicy,
             rules: Optional[List[SafetyRule]] = None) -> Optional[CleanupStatus]:
    """
    Classify a resource group.
    
    Args:
        ctx: Facts about the group
        policy: Run-wide settings
        rules: Ordered rules (defaults to DEFAULT_RULES)
        
    Returns:
        The status of the first matching rule, or None if the group is
        excluded from the report
    """
    rule = explain(ctx, policy, rules)
    return rule.status if rule else None


def explain(ctx: SafetyContext, policy: CleanupPolicy,
            rules: Optional[List[SafetyRule]] = None) -> Optional[SafetyRule]:
    """Return the rule that decides a group's classification."""
    for rule in rules or DEFAULT_RULES:
        if rule.predicate(ctx, policy):
            return rule
    return None
