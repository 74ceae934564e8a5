"""
Tagging utilities for resource group cleanup.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

CLEANUP_TAG = "cleanup"
CLEANUP_TAG_VALUE = "marked"
CLEANUP_MARKED_AT_TAG = "cleanup_marked_at"
CLEANUP_RUN_TAG = "cleanup_run_id"

# Formats accepted for creation-date tags besides ISO 8601
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%Y/%m/%d")


def cleanup_tags(run_id: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Generate the tags applied to a resource group marked for cleanup.
    
    Args:
        run_id: Run ID that marked the group
        extra: Additional tags to include
        
    Returns:
        Dictionary of tags to merge into the resource group
    """
    tags = {
        CLEANUP_TAG: CLEANUP_TAG_VALUE,
        CLEANUP_MARKED_AT_TAG: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        CLEANUP_RUN_TAG: run_id,
    }
    
    if extra:
        tags.update(extra)
    
    return tags


def merge_tags(existing: Optional[Dict[str, str]], new: Dict[str, str]) -> Dict[str, str]:
    """Merge new tags over existing ones without mutating either."""
    merged = dict(existing or {})
    merged.update(new)
    return merged


def parse_user_tags(tag_strings: list[str]) -> Dict[str, str]:
    """
    Parse user-provided tag strings in format "key=value".
    
    Args:
        tag_strings: List of tag strings in "key=value" format
        
    Returns:
        Dictionary of parsed tags
        
    Raises:
        ValueError: If tag string format is invalid
    """
    tags = {}
    
    for tag_str in tag_strings:
        if "=" not in tag_str:
            raise ValueError(f"Invalid tag format: {tag_str}. Expected 'key=value'")
        
        key, value = tag_str.split("=", 1)
        if not key.strip() or not value.strip():
            raise ValueError(f"Invalid tag format: {tag_str}. Key and value must not be empty")
        
        tags[key.strip()] = value.strip()
    
    return tags


def parse_tag_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a timestamp stored in a tag value.
    
    Naive values are taken to be UTC.
    
    Args:
        value: Raw tag value
        
    Returns:
        Timezone-aware datetime, or None if the value is missing or malformed
    """
    if not value or not isinstance(value, str):
        return None
    
    raw = value.strip()
    parsed = None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
    
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def creation_time_from_tags(tags: Optional[Dict[str, str]], keys: Iterable[str]) -> Optional[datetime]:
    """
    Look up the creation time of a resource group from its tags.
    
    Tag keys are matched case-insensitively; the first key that holds a
    parseable timestamp wins.
    
    Args:
        tags: Resource group tags
        keys: Candidate tag keys, in priority order
        
    Returns:
        Creation time, or None if no key holds a valid timestamp
    """
    if not tags:
        return None
    
    lowered = {k.lower(): v for k, v in tags.items()}
    for key in keys:
        parsed = parse_tag_timestamp(lowered.get(key.lower()))
        if parsed is not None:
            return parsed
    return None


def is_marked_for_cleanup(tags: Optional[Dict[str, str]]) -> bool:
    """Check if a resource group already carries the cleanup mark."""
    return bool(tags) and tags.get(CLEANUP_TAG) == CLEANUP_TAG_VALUE
