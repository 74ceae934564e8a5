"""
Key Vault access policy audit across subscriptions.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from azure.core.exceptions import AzureError

from .events import EventTypes, emit_event
from .state import new_run_id
from .report import write_table

logger = logging.getLogger(__name__)

AUDIT_COLUMNS = [
    "subscription",
    "vault",
    "resource_group",
    "location",
    "rbac_authorization",
    "tenant_id",
    "object_id",
    "application_id",
    "keys",
    "secrets",
    "certificates",
    "storage",
]


def _resource_group_from_id(resource_id: str) -> str:
    parts = (resource_id or "").split("/")
    for i, part in enumerate(parts):
        if part.lower() == "resourcegroups" and i + 1 < len(parts):
            return parts[i + 1]
    return ""


def _join(values) -> str:
    if not values:
        return ""
    return ",".join(str(getattr(v, "value", v)) for v in values)


def vault_rows(subscription_id: str, vault) -> List[Dict[str, Any]]:
    """
    Flatten one vault into audit rows, one per access policy entry.
    
    A vault without access policies still yields a single row so it shows
    up in the audit.
    """
    props = vault.properties
    base = {
        "subscription": subscription_id,
        "vault": vault.name,
        "resource_group": _resource_group_from_id(vault.id),
        "location": vault.location or "",
        "rbac_authorization": bool(getattr(props, "enable_rbac_authorization", False)),
    }
    
    policies = getattr(props, "access_policies", None) or []
    if not policies:
        return [dict(base, tenant_id="", object_id="", application_id="",
                     keys="", secrets="", certificates="", storage="")]
    
    rows = []
    for policy in policies:
        perms = policy.permissions
        rows.append(dict(
            base,
            tenant_id=str(policy.tenant_id or ""),
            object_id=policy.object_id or "",
            application_id=str(policy.application_id or ""),
            keys=_join(getattr(perms, "keys", None)),
            secrets=_join(getattr(perms, "secrets", None)),
            certificates=_join(getattr(perms, "certificates", None)),
            storage=_join(getattr(perms, "storage", None)),
        ))
    return rows


def collect_access_policies(subscriptions: Iterable) -> List[Dict[str, Any]]:
    """
    Collect access policy rows for every vault in the given subscriptions.
    
    Args:
        subscriptions: SubscriptionContext objects
        
    Returns:
        Audit rows
    """
    rows: List[Dict[str, Any]] = []
    for sub_ctx in subscriptions:
        logger.info(f"Auditing Key Vaults in {sub_ctx.display_name}")
        try:
            vaults = list(sub_ctx.keyvault.vaults.list_by_subscription())
        except AzureError as e:
            logger.error(f"Failed to list Key Vaults in {sub_ctx.subscription_id}: {e}")
            continue
        for vault in vaults:
            rows.extend(vault_rows(sub_ctx.subscription_id, vault))
    return rows


def export_access_policies(subscriptions: Iterable, path: str, run_id: Optional[str] = None):
    """
    Collect access policy rows and write them to a spreadsheet.
    
    Returns:
        Tuple of (written path, rows)
    """
    run_id = run_id or new_run_id()
    rows = collect_access_policies(subscriptions)
    out = write_table(rows, AUDIT_COLUMNS, path, sheet_name="access_policies")
    emit_event(run_id, EventTypes.AUDIT_EXPORTED, {"path": str(out), "rows": len(rows)})
    return out, rows
