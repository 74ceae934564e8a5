"""
Tests for the resource group sweep with mocked Azure clients.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
from azure.core.exceptions import HttpResponseError, ServiceRequestError

from azops.cleanup.models import CleanupStatus, ResourceGroupRecord
from azops.cleanup.sweep import CleanupReport, has_lock, run_cleanup, scan_resource_groups, sweep_subscription
from azops.config import Settings
from azops.events import read_events

NOW = datetime(2026, 10, 18, tzinfo=timezone.utc)
RUN_ID = "r-20261018-120000-test"


@pytest.fixture(autouse=True)
def azops_home(tmp_path, monkeypatch):
    monkeypatch.setenv("AZOPS_HOME", str(tmp_path / "home"))
    return tmp_path


def group(name, location="westeurope", tags=None, state="Succeeded"):
    return SimpleNamespace(name=name, location=location, tags=tags,
                           id=f"/subscriptions/sub-1/resourceGroups/{name}",
                           properties=SimpleNamespace(provisioning_state=state))


def resource(days_ago, type_="Microsoft.Storage/storageAccounts"):
    return SimpleNamespace(type=type_, changed_time=NOW - timedelta(days=days_ago), created_time=None)


def fake_subscription(groups, resources, locks=None, sub_id="sub-1"):
    """Build a SubscriptionContext stand-in from plain data."""
    locks = locks or {}
    ctx = MagicMock()
    ctx.subscription_id = sub_id
    ctx.display_name = sub_id
    ctx.resources.resource_groups.list.return_value = groups
    ctx.resources.resources.list_by_resource_group.side_effect = lambda name, expand=None: resources.get(name, [])
    ctx.locks.management_locks.list_at_resource_group_level.side_effect = lambda name: locks.get(name, [])
    return ctx


def settings(**kw):
    base = dict(patterns=["*-test-*"], inactive_days=30)
    base.update(kw)
    return Settings(**base)


def statuses(report):
    return {r.resource_group: r.status for r in report.records}


def test_example_group_is_marked():
    ctx = fake_subscription([group("proj-test-01", tags={"env": "test"})], {"proj-test-01": [resource(45)]})
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(), report, RUN_ID, now=NOW)
    
    assert statuses(report) == {"proj-test-01": CleanupStatus.MARKED_FOR_CLEANUP}
    record = report.records[0]
    assert record.days_inactive == 45
    assert record.location == "westeurope"
    ctx.resources.resource_groups.begin_delete.assert_not_called()
    name, body = ctx.resources.resource_groups.update.call_args[0]
    assert name == "proj-test-01"
    assert body["tags"]["env"] == "test"
    assert body["tags"]["cleanup"] == "marked"
    assert body["tags"]["cleanup_run_id"] == RUN_ID


def test_unmatched_and_recent_groups_not_reported():
    groups = [group("production"), group("proj-test-02")]
    resources = {"production": [resource(400)], "proj-test-02": [resource(3)]}
    ctx = fake_subscription(groups, resources)
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(delete=True), report, RUN_ID, now=NOW)
    
    assert len(report) == 0
    ctx.resources.resources.list_by_resource_group.assert_called_once_with("proj-test-02", expand="changedTime,createdTime")
    ctx.locks.management_locks.list_at_resource_group_level.assert_not_called()


def test_delete_mode_deletes_only_eligible_groups():
    groups = [group("a-test-vm"), group("b-test-locked"), group("c-test-free")]
    resources = {
        "a-test-vm": [resource(90, "Microsoft.Compute/virtualMachines")],
        "b-test-locked": [resource(90)],
        "c-test-free": [resource(90)],
    }
    locks = {"b-test-locked": [SimpleNamespace(name="CanNotDelete")]}
    ctx = fake_subscription(groups, resources, locks)
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(delete=True), report, RUN_ID, now=NOW)
    
    assert statuses(report) == {
        "a-test-vm": CleanupStatus.SKIPPED_CRITICAL_RESOURCES,
        "b-test-locked": CleanupStatus.SKIPPED_LOCKED,
        "c-test-free": CleanupStatus.DELETED,
    }
    ctx.resources.resource_groups.begin_delete.assert_called_once_with("c-test-free")
    # Fire and forget unless waiting is configured
    ctx.resources.resource_groups.begin_delete.return_value.result.assert_not_called()


def test_wait_for_deletion():
    ctx = fake_subscription([group("x-test-1")], {"x-test-1": [resource(90)]})
    sweep_subscription(ctx, settings(delete=True, wait_for_deletion=True), CleanupReport(), RUN_ID, now=NOW)
    ctx.resources.resource_groups.begin_delete.return_value.result.assert_called_once()


def test_unknown_activity_reported_without_action():
    ctx = fake_subscription([group("x-test-empty", tags={"CreatedDate": "bogus"})], {})
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(delete=True), report, RUN_ID, now=NOW)
    
    assert statuses(report) == {"x-test-empty": CleanupStatus.UNKNOWN_ACTIVITY}
    assert report.records[0].days_inactive is None
    ctx.resources.resource_groups.begin_delete.assert_not_called()
    ctx.resources.resource_groups.update.assert_not_called()


def test_empty_group_uses_creation_tag():
    ctx = fake_subscription([group("x-test-empty", tags={"created_at": "2026-01-01T00:00:00Z"})], {})
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(), report, RUN_ID, now=NOW)
    
    assert report.records[0].status == CleanupStatus.MARKED_FOR_CLEANUP
    assert report.records[0].days_inactive == 290


def test_api_error_skips_group_and_continues():
    groups = [group("a-test-bad"), group("b-test-good")]
    
    def list_resources(name, expand=None):
        if name == "a-test-bad":
            raise HttpResponseError(message="throttled")
        return [resource(60)]
    
    ctx = fake_subscription(groups, {})
    ctx.resources.resources.list_by_resource_group.side_effect = list_resources
    report = CleanupReport()
    
    errors = sweep_subscription(ctx, settings(), report, RUN_ID, now=NOW)
    
    assert errors == 1
    assert statuses(report) == {"b-test-good": CleanupStatus.MARKED_FOR_CLEANUP}
    assert any(e["type"] == "RG_ERROR" for e in read_events(RUN_ID))


def test_failed_action_reported_as_error():
    ctx = fake_subscription([group("x-test-1")], {"x-test-1": [resource(90)]})
    ctx.resources.resource_groups.begin_delete.side_effect = HttpResponseError(message="forbidden")
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(delete=True), report, RUN_ID, now=NOW)
    
    assert statuses(report) == {"x-test-1": CleanupStatus.ERROR}


def test_scan_skips_groups_being_deleted():
    ctx = fake_subscription([group("x-test-1", state="Deleting"), group("x-test-2")], {})
    assert [g.name for g in scan_resource_groups(ctx, ["*-test-*"])] == ["x-test-2"]


def test_has_lock():
    ctx = fake_subscription([], {}, locks={"locked": [object()]})
    assert has_lock(ctx, "locked")
    assert not has_lock(ctx, "open")


def test_report_ignores_duplicates():
    report = CleanupReport()
    record = ResourceGroupRecord("sub-1", "x-test-1", "", None, None, CleanupStatus.UNKNOWN_ACTIVITY)
    
    assert report.add(record)
    assert not report.add(ResourceGroupRecord("sub-1", "X-TEST-1", "", None, None, CleanupStatus.DELETED))
    assert len(report) == 1
    assert report.counts() == {"UNKNOWN_ACTIVITY": 1}


def test_run_cleanup_across_subscriptions(tmp_path):
    sub1 = fake_subscription([group("x-test-1")], {"x-test-1": [resource(90)]}, sub_id="sub-1")
    sub2 = fake_subscription([], {}, sub_id="sub-2")
    sub2.resources.resource_groups.list.side_effect = HttpResponseError(message="no access")
    out = tmp_path / "report.csv"
    
    with patch("azops.cleanup.sweep.iter_subscriptions", return_value=[sub1, sub2]):
        result = run_cleanup(object(), settings(report_path=str(out)), run_id=RUN_ID, now=NOW)
    
    assert result.subscriptions == ["sub-1", "sub-2"]
    assert result.errors == 1
    rows = pd.read_csv(out, dtype=str, keep_default_na=False).to_dict(orient="records")
    assert rows == [{
        "subscription": "sub-1",
        "resource_group": "x-test-1",
        "location": "westeurope",
        "last_modified": "2026-07-20T00:00:00Z",
        "days_inactive": "90",
        "status": "MARKED_FOR_CLEANUP",
    }]
    types = [e["type"] for e in read_events(RUN_ID)]
    assert types[0] == "RUN_START"
    assert types[-1] == "RUN_DONE"
    assert "SUBSCRIPTION_ERROR" in types


def test_transport_error_skips_group_and_run_completes(tmp_path):
    groups = [group("a-test-bad"), group("b-test-good")]
    
    def list_resources(name, expand=None):
        if name == "a-test-bad":
            raise ServiceRequestError("connection reset")
        return [resource(60)]
    
    sub1 = fake_subscription(groups, {})
    sub1.resources.resources.list_by_resource_group.side_effect = list_resources
    sub2 = fake_subscription([], {}, sub_id="sub-2")
    sub2.resources.resource_groups.list.side_effect = ServiceRequestError("dns failure")
    out = tmp_path / "report.csv"
    
    with patch("azops.cleanup.sweep.iter_subscriptions", return_value=[sub1, sub2]):
        result = run_cleanup(object(), settings(report_path=str(out)), run_id=RUN_ID, now=NOW)
    
    assert result.errors == 2
    assert statuses(result.report) == {"b-test-good": CleanupStatus.MARKED_FOR_CLEANUP}
    assert out.exists()
    assert read_events(RUN_ID)[-1]["type"] == "RUN_DONE"


def test_transport_error_on_action_reported_as_error():
    ctx = fake_subscription([group("x-test-1")], {"x-test-1": [resource(90)]})
    ctx.resources.resource_groups.update.side_effect = ServiceRequestError("timed out")
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(), report, RUN_ID, now=NOW)
    
    assert statuses(report) == {"x-test-1": CleanupStatus.ERROR}


def test_offset_creation_tag_reported_in_utc():
    ctx = fake_subscription([group("x-test-empty", tags={"created_at": "2026-01-01T10:00:00+05:00"})], {})
    report = CleanupReport()
    
    sweep_subscription(ctx, settings(), report, RUN_ID, now=NOW)
    
    assert report.rows()[0]["last_modified"] == "2026-01-01T05:00:00Z"


def test_classified_event_names_deciding_rule():
    groups = [group("a-test-locked"), group("b-test-free")]
    resources = {"a-test-locked": [resource(90)], "b-test-free": [resource(90)]}
    ctx = fake_subscription(groups, resources, locks={"a-test-locked": [object()]})
    
    sweep_subscription(ctx, settings(), CleanupReport(), RUN_ID, now=NOW)
    
    classified = [e["data"] for e in read_events(RUN_ID) if e["type"] == "RG_CLASSIFIED"]
    assert {d["resource_group"]: d["rule"] for d in classified} == {
        "a-test-locked": "locked",
        "b-test-free": "mark",
    }
