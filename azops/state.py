"""
Local state for azops runs.

Each run gets an ID like r-20260118-093000-k3x9 and a directory under
$AZOPS_HOME (default .azops) holding its event trail.
"""

import os
import re
import secrets
import string
from datetime import datetime
from pathlib import Path

_RUN_ID_RE = re.compile(r"^r-\d{8}-\d{6}-[a-z0-9]{4}$")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def new_run_id() -> str:
    """Generate a run ID from the local time plus a random suffix."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"r-{datetime.now():%Y%m%d-%H%M%S}-{suffix}"


def is_valid_run_id(run_id: str) -> bool:
    return bool(_RUN_ID_RE.match(run_id or ""))


def get_azops_home() -> Path:
    """
    Get the azops home directory.
    
    Returns:
        Path: azops home directory
    """
    azops_home = os.environ.get("AZOPS_HOME", ".azops")
    return Path(azops_home).resolve()


def get_run_dir(run_id: str) -> Path:
    """
    Get the directory for a specific run.
    
    Args:
        run_id: Run ID
        
    Returns:
        Path: Run directory
        
    Raises:
        ValueError: If run ID is invalid
    """
    if not is_valid_run_id(run_id):
        raise ValueError(f"Invalid run ID: {run_id}")
    
    return get_azops_home() / run_id


def list_runs() -> list[str]:
    """
    List all run IDs.
    
    Returns:
        List of run IDs, most recent first
    """
    azops_home = get_azops_home()
    
    if not azops_home.exists():
        return []
    
    runs = [item.name for item in azops_home.iterdir() if item.is_dir() and is_valid_run_id(item.name)]
    return sorted(runs, reverse=True)
