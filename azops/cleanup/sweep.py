"""
Resource group sweep: scan, evaluate, classify and act.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from azure.core.exceptions import AzureError

from ..config import Settings
from ..events import EventTypes, emit_event
from ..state import new_run_id
from ..report import write_table
from ..subscriptions import iter_subscriptions
from ..tags import cleanup_tags, is_marked_for_cleanup, merge_tags
from .activity import evaluate_activity
from .models import REPORT_COLUMNS, CleanupStatus, ResourceGroupRecord, SafetyContext
from .rules import CleanupPolicy, explain, matches_any

logger = logging.getLogger(__name__)


class CleanupReport:
    """Accumulates at most one record per (subscription, resource group)."""

    def __init__(self):
        self.records: List[ResourceGroupRecord] = []
        self._keys = set()

    def __len__(self) -> int:
        return len(self.records)

    def add(self, record: ResourceGroupRecord) -> bool:
        """
        Add a record unless its resource group is already reported.
        
        Returns:
            True if the record was added
        """
        if record.key in self._keys:
            logger.warning(f"Resource group {record.resource_group} in {record.subscription_id} already reported; ignoring")
            return False
        self._keys.add(record.key)
        self.records.append(record)
        return True

    def rows(self) -> List[Dict]:
        return [r.to_row() for r in self.records]

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.records:
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts

    def write(self, path: str):
        return write_table(self.rows(), REPORT_COLUMNS, path, sheet_name="cleanup")


@dataclass
class CleanupResult:
    """Outcome of a cleanup run."""
    run_id: str
    report: CleanupReport
    report_path: Optional[str] = None
    errors: int = 0
    subscriptions: List[str] = field(default_factory=list)


def _provisioning_state(group) -> str:
    props = getattr(group, "properties", None)
    return str(getattr(props, "provisioning_state", "") or "")


def scan_resource_groups(sub_ctx, patterns: Iterable[str]) -> List:
    """
    List resource groups in a subscription whose names match a pattern.
    
    Groups that are already being deleted are left out.
    
    Args:
        sub_ctx: SubscriptionContext
        patterns: Name glob patterns
        
    Returns:
        Matching ResourceGroup objects
    """
    patterns = list(patterns)
    matched = []
    for group in sub_ctx.resources.resource_groups.list():
        if not matches_any(group.name, patterns):
            continue
        if _provisioning_state(group).lower() == "deleting":
            logger.info(f"Resource group {group.name} is already being deleted, skipping")
            continue
        matched.append(group)
    logger.debug(f"{len(matched)} resource groups match {patterns} in {sub_ctx.subscription_id}")
    return matched


def has_lock(sub_ctx, group_name: str) -> bool:
    """Check whether any management lock applies to a resource group."""
    for _ in sub_ctx.locks.management_locks.list_at_resource_group_level(group_name):
        return True
    return False


def build_safety_context(sub_ctx, group, settings: Settings, now: Optional[datetime] = None) -> SafetyContext:
    """
    Gather the facts needed to classify a resource group.
    
    Args:
        sub_ctx: SubscriptionContext
        group: ResourceGroup object
        settings: Run settings
        now: Reference time
        
    Returns:
        SafetyContext with a lazy lock lookup
    """
    resources = list(sub_ctx.resources.resources.list_by_resource_group(
        group.name, expand="changedTime,createdTime"
    ))
    activity = evaluate_activity(resources, group.tags, settings.creation_tag_keys, now=now)
    resource_types = frozenset(r.type for r in resources if getattr(r, "type", None))
    
    return SafetyContext(
        name=group.name,
        resource_types=resource_types,
        activity=activity,
        lock_loader=lambda: has_lock(sub_ctx, group.name),
    )


def apply_action(sub_ctx, group, status: CleanupStatus, settings: Settings, run_id: str) -> CleanupStatus:
    """
    Carry out the action for a classified group.
    
    Deletion is submitted and, unless wait_for_deletion is set, not awaited.
    
    Returns:
        The status to report; ERROR if the action could not be submitted
    """
    try:
        if status == CleanupStatus.DELETED:
            poller = sub_ctx.resources.resource_groups.begin_delete(group.name)
            if settings.wait_for_deletion:
                poller.result()
                logger.info(f"Deleted resource group {group.name}")
            else:
                logger.info(f"Deletion submitted for resource group {group.name}")
            emit_event(run_id, EventTypes.RG_DELETE_SUBMITTED, {
                "subscription": sub_ctx.subscription_id,
                "resource_group": group.name,
                "waited": settings.wait_for_deletion,
            })
        elif status == CleanupStatus.MARKED_FOR_CLEANUP:
            if is_marked_for_cleanup(group.tags):
                logger.debug(f"Resource group {group.name} already marked; refreshing mark")
            tags = merge_tags(group.tags, cleanup_tags(run_id, settings.extra_tags))
            sub_ctx.resources.resource_groups.update(group.name, {"tags": tags})
            logger.info(f"Marked resource group {group.name} for cleanup")
            emit_event(run_id, EventTypes.RG_MARKED, {
                "subscription": sub_ctx.subscription_id,
                "resource_group": group.name,
            })
    except AzureError as e:
        logger.error(f"Failed to apply {status.value} to {group.name}: {e}")
        emit_event(run_id, EventTypes.RG_ERROR, {
            "subscription": sub_ctx.subscription_id,
            "resource_group": group.name,
            "stage": "action",
            "error": str(e),
        })
        return CleanupStatus.ERROR
    return status


def sweep_subscription(sub_ctx, settings: Settings, report: CleanupReport, run_id: str,
                       now: Optional[datetime] = None) -> int:
    """
    Evaluate every matching resource group in one subscription.
    
    Args:
        sub_ctx: SubscriptionContext
        settings: Run settings
        report: Report to append records to
        run_id: Run ID for events and tags
        now: Reference time
        
    Returns:
        Number of resource groups that failed before classification
    """
    policy = CleanupPolicy(patterns=settings.patterns, inactive_days=settings.inactive_days, delete=settings.delete)
    errors = 0
    
    for group in scan_resource_groups(sub_ctx, policy.patterns):
        try:
            ctx = build_safety_context(sub_ctx, group, settings, now=now)
            rule = explain(ctx, policy)
        except AzureError as e:
            errors += 1
            logger.error(f"Error evaluating resource group {group.name} in {sub_ctx.subscription_id}: {e}")
            emit_event(run_id, EventTypes.RG_ERROR, {
                "subscription": sub_ctx.subscription_id,
                "resource_group": group.name,
                "stage": "evaluate",
                "error": str(e),
            })
            continue
        
        status = rule.status if rule else None
        logger.debug(f"Resource group {group.name}: rule {rule.id if rule else None} decided {status}")
        if status is None:
            continue
        
        emit_event(run_id, EventTypes.RG_CLASSIFIED, {
            "subscription": sub_ctx.subscription_id,
            "resource_group": group.name,
            "status": status.value,
            "rule": rule.id,
            "activity_source": ctx.activity.source,
        })
        
        if status in (CleanupStatus.DELETED, CleanupStatus.MARKED_FOR_CLEANUP):
            status = apply_action(sub_ctx, group, status, settings, run_id)
        
        report.add(ResourceGroupRecord(
            subscription_id=sub_ctx.subscription_id,
            resource_group=group.name,
            location=group.location or "",
            last_modified=ctx.activity.last_modified,
            days_inactive=ctx.activity.days_inactive,
            status=status,
        ))
    
    return errors


def run_cleanup(credential, settings: Settings, run_id: Optional[str] = None,
                now: Optional[datetime] = None, write_report: bool = True) -> CleanupResult:
    """
    Run resource group cleanup across subscriptions.
    
    A failure in one subscription is logged and the next one is processed.
    
    Args:
        credential: Azure credential
        settings: Run settings
        run_id: Optional run ID
        now: Reference time (defaults to current UTC time)
        write_report: Write the report to settings.report_path
        
    Returns:
        CleanupResult
    """
    run_id = run_id or new_run_id()
    now = now or datetime.now(timezone.utc)
    report = CleanupReport()
    result = CleanupResult(run_id=run_id, report=report)
    
    emit_event(run_id, EventTypes.RUN_START, {
        "command": "cleanup-rgs",
        "patterns": settings.patterns,
        "inactive_days": settings.inactive_days,
        "delete": settings.delete,
    })
    
    for sub_ctx in iter_subscriptions(credential, settings.subscriptions):
        result.subscriptions.append(sub_ctx.subscription_id)
        logger.info(f"Scanning subscription {sub_ctx.display_name}")
        emit_event(run_id, EventTypes.SUBSCRIPTION_START, {"subscription": sub_ctx.subscription_id})
        try:
            result.errors += sweep_subscription(sub_ctx, settings, report, run_id, now=now)
        except AzureError as e:
            result.errors += 1
            logger.error(f"Failed to scan subscription {sub_ctx.subscription_id}: {e}")
            emit_event(run_id, EventTypes.SUBSCRIPTION_ERROR, {
                "subscription": sub_ctx.subscription_id,
                "error": str(e),
            })
    
    if write_report:
        result.report_path = str(report.write(settings.report_path))
    
    emit_event(run_id, EventTypes.RUN_DONE, {"counts": report.counts(), "errors": result.errors})
    return result
