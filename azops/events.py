"""
Event logging utilities for NDJSON format.
"""

import json
from datetime import datetime
from typing import Any, Dict

from .state import get_run_dir


def emit_event(run_id: str, event_type: str, data: Dict[str, Any]) -> None:
    """
    Append an event to the run's events.ndjson file.
    
    Args:
        run_id: Run ID
        event_type: Event type (e.g., "RUN_START", "RG_CLASSIFIED")
        data: Event data
    """
    run_dir = get_run_dir(run_id)
    run_dir.mkdir(parents=True, exist_ok=True)
    events_file = run_dir / "events.ndjson"
    
    event = {
        "ts": datetime.now().isoformat(),
        "type": event_type,
        "data": data
    }
    
    with open(events_file, "a") as f:
        f.write(json.dumps(event, default=str) + "\n")
        f.flush()


def read_events(run_id: str) -> list[Dict[str, Any]]:
    """
    Read all events from a run's events.ndjson file.
    
    Args:
        run_id: Run ID
        
    Returns:
        List of events
    """
    events_file = get_run_dir(run_id) / "events.ndjson"
    
    if not events_file.exists():
        return []
    
    events = []
    with open(events_file, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue  # Skip malformed lines
    
    return events


class EventTypes:
    RUN_START = "RUN_START"
    RUN_DONE = "RUN_DONE"
    SUBSCRIPTION_START = "SUBSCRIPTION_START"
    SUBSCRIPTION_ERROR = "SUBSCRIPTION_ERROR"
    # Resource group cleanup
    RG_CLASSIFIED = "RG_CLASSIFIED"
    RG_DELETE_SUBMITTED = "RG_DELETE_SUBMITTED"
    RG_MARKED = "RG_MARKED"
    RG_ERROR = "RG_ERROR"
    # Secret rotation
    SECRET_ROTATED = "SECRET_ROTATED"
    APP_SETTINGS_UPDATED = "APP_SETTINGS_UPDATED"
    APP_RESTARTED = "APP_RESTARTED"
    APP_ERROR = "APP_ERROR"
    # AKS
    AKS_RESTART_START = "AKS_RESTART_START"
    AKS_RESTART_DONE = "AKS_RESTART_DONE"
    AKS_RESTART_FAILED = "AKS_RESTART_FAILED"
    # Audit
    AUDIT_EXPORTED = "AUDIT_EXPORTED"
