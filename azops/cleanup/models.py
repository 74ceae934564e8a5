"""
Data models for resource group cleanup.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional


class CleanupStatus(Enum):
    """Outcome of classifying one resource group."""
    SKIPPED_CRITICAL_RESOURCES = "SKIPPED_CRITICAL_RESOURCES"
    SKIPPED_LOCKED = "SKIPPED_LOCKED"
    DELETED = "DELETED"
    MARKED_FOR_CLEANUP = "MARKED_FOR_CLEANUP"
    UNKNOWN_ACTIVITY = "UNKNOWN_ACTIVITY"
    ERROR = "ERROR"


REPORT_COLUMNS = [
    "subscription",
    "resource_group",
    "location",
    "last_modified",
    "days_inactive",
    "status",
]


@dataclass(frozen=True)
class ResourceGroupRecord:
    """One evaluated resource group, as written to the report."""
    subscription_id: str
    resource_group: str
    location: str
    last_modified: Optional[datetime]
    days_inactive: Optional[int]
    status: CleanupStatus

    @property
    def key(self) -> tuple:
        return (self.subscription_id.lower(), self.resource_group.lower())

    def to_row(self) -> Dict[str, Any]:
        return {
            "subscription": self.subscription_id,
            "resource_group": self.resource_group,
            "location": self.location,
            "last_modified": self.last_modified.strftime("%Y-%m-%dT%H:%M:%SZ") if self.last_modified else "",
            "days_inactive": "" if self.days_inactive is None else self.days_inactive,
            "status": self.status.value,
        }


@dataclass
class Activity:
    """Last activity of a resource group and where it came from."""
    last_modified: Optional[datetime]
    days_inactive: Optional[int]
    source: str  # "resources", "tag" or "unknown"

    @property
    def known(self) -> bool:
        return self.last_modified is not None


@dataclass
class SafetyContext:
    """Transient facts about one resource group used during classification."""
    name: str
    resource_types: FrozenSet[str]
    activity: Activity
    lock_loader: Callable[[], bool] = field(repr=False, default=lambda: False)
    _locked: Optional[bool] = field(default=None, repr=False)

    @property
    def locked(self) -> bool:
        # Locks are only looked up when a rule asks for them
        if self._locked is None:
            self._locked = bool(self.lock_loader())
        return self._locked
