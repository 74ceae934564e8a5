"""
Resource group activity evaluation.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from ..tags import creation_time_from_tags
from .models import Activity

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def latest_change(resources: Iterable) -> Optional[datetime]:
    """
    Most recent changed_time among a group's resources.
    
    Args:
        resources: GenericResourceExpanded objects listed with
            expand="changedTime"
        
    Returns:
        Latest change time, or None if no resource reports one
    """
    latest = None
    for resource in resources:
        changed = _as_utc(getattr(resource, "changed_time", None))
        if changed is not None and (latest is None or changed > latest):
            latest = changed
    return latest


def days_between(start: datetime, now: datetime) -> int:
    """Whole days elapsed from start to now, never negative."""
    delta = _as_utc(now) - _as_utc(start)
    return max(0, delta.days)


def evaluate_activity(resources: List, group_tags: Optional[dict], creation_tag_keys: Iterable[str],
                      now: Optional[datetime] = None) -> Activity:
    """
    Determine when a resource group was last active.
    
    The most recently changed contained resource wins; a group with no
    change times falls back to its creation tag. When neither is
    available the activity is unknown.
    
    Args:
        resources: Resources in the group
        group_tags: Tags on the resource group itself
        creation_tag_keys: Tag keys that may hold the creation date
        now: Reference time (defaults to current UTC time)
        
    Returns:
        Activity with last-modified time and whole days inactive
    """
    now = now or datetime.now(timezone.utc)
    
    last = latest_change(resources)
    source = "resources"
    if last is None:
        last = _as_utc(creation_time_from_tags(group_tags, creation_tag_keys))
        source = "tag"
    
    if last is None:
        return Activity(last_modified=None, days_inactive=None, source="unknown")
    
    return Activity(last_modified=last, days_inactive=days_between(last, now), source=source)
