"""
Configuration loading for azops.

Settings are resolved from defaults, an optional YAML file, environment
variables and finally explicit overrides (usually CLI options), in that
order.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = ["*-test-*", "*-dev-*", "tmp-*"]
DEFAULT_CREATION_TAG_KEYS = ["created_at", "CreatedDate", "CreatedOn"]


@dataclass
class Settings:
    """Runtime settings shared by all commands."""
    subscriptions: List[str] = field(default_factory=list)
    inactive_days: int = 30
    patterns: List[str] = field(default_factory=lambda: list(DEFAULT_PATTERNS))
    creation_tag_keys: List[str] = field(default_factory=lambda: list(DEFAULT_CREATION_TAG_KEYS))
    delete: bool = False
    wait_for_deletion: bool = False
    report_path: str = "rg_cleanup_report.csv"
    audit_path: str = "keyvault_access_audit.xlsx"
    extra_tags: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """
        Validate setting values.
        
        Raises:
            ValueError: If a setting is out of range or empty
        """
        if self.inactive_days < 0:
            raise ValueError(f"inactive_days must be >= 0, got {self.inactive_days}")
        if not self.patterns:
            raise ValueError("At least one resource group name pattern is required")
        if any(not p.strip() for p in self.patterns):
            raise ValueError("Resource group name patterns must not be empty")


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Read a YAML config file into a dict."""
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    
    known = {f.name for f in fields(Settings)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {path}: {sorted(unknown)}")
    return {k: v for k, v in data.items() if k in known}


def _read_env() -> Dict[str, Any]:
    """Read settings from environment variables."""
    env: Dict[str, Any] = {}
    
    subs = os.getenv("AZURE_SUBSCRIPTION_IDS") or os.getenv("AZURE_SUBSCRIPTION_ID")
    if subs:
        env["subscriptions"] = _split_csv(subs)
    
    days = os.getenv("AZOPS_INACTIVE_DAYS")
    if days:
        try:
            env["inactive_days"] = int(days)
        except ValueError:
            raise ValueError(f"AZOPS_INACTIVE_DAYS must be an integer, got {days!r}")
    
    patterns = os.getenv("AZOPS_RG_PATTERNS")
    if patterns:
        env["patterns"] = _split_csv(patterns)
    
    return env


_LIST_FIELDS = ("subscriptions", "patterns", "creation_tag_keys")
_BOOL_FIELDS = ("delete", "wait_for_deletion")
_STR_FIELDS = ("report_path", "audit_path")


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize raw values to the types Settings expects.
    
    Comma-separated strings are accepted for list settings and numeric
    strings for inactive_days.
    
    Raises:
        ValueError: If a value has the wrong type
    """
    out = dict(values)
    for key in _LIST_FIELDS:
        if key not in out:
            continue
        value = out[key]
        if isinstance(value, str):
            out[key] = _split_csv(value)
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            out[key] = list(value)
        else:
            raise ValueError(f"{key} must be a list of strings, got {value!r}")
    
    if "inactive_days" in out:
        value = out["inactive_days"]
        if isinstance(value, bool):
            raise ValueError(f"inactive_days must be an integer, got {value!r}")
        try:
            out["inactive_days"] = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"inactive_days must be an integer, got {value!r}")
    
    for key in _BOOL_FIELDS:
        if key in out and not isinstance(out[key], bool):
            raise ValueError(f"{key} must be true or false, got {out[key]!r}")
    
    for key in _STR_FIELDS:
        if key in out and not isinstance(out[key], str):
            raise ValueError(f"{key} must be a string, got {out[key]!r}")
    
    if "extra_tags" in out:
        tags = out["extra_tags"]
        if not isinstance(tags, dict):
            raise ValueError(f"extra_tags must be a mapping, got {tags!r}")
        out["extra_tags"] = {str(k): str(v) for k, v in tags.items()}
    
    return out


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> Settings:
    """
    Build settings from defaults, YAML file, environment and overrides.
    
    Args:
        config_path: Optional YAML config file; falls back to $AZOPS_CONFIG
        **overrides: Explicit values; None values are ignored
        
    Returns:
        Validated settings
        
    Raises:
        ValueError: If a value is invalid
        FileNotFoundError: If an explicit config file does not exist
    """
    values: Dict[str, Any] = {}
    
    path = config_path or os.getenv("AZOPS_CONFIG")
    if path:
        config_file = Path(path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")
        values.update(_read_yaml(config_file))
    
    values.update(_read_env())
    
    for key, value in overrides.items():
        if value is None:
            continue
        # Empty tuples come from click options with multiple=True
        if isinstance(value, (list, tuple)) and not value:
            continue
        values[key] = list(value) if isinstance(value, tuple) else value
    
    settings = Settings(**_coerce(values))
    settings.validate()
    return settings
