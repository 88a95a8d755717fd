"""
Unit tests for the in-memory domain stores.
"""

from datetime import datetime, timedelta, timezone

import pytest

from service_gateway.app.domain import (
    AdminStore,
    AnalyticsService,
    AuditLogStore,
    NotificationStore,
    WorkflowStore,
)
from service_gateway.app.domain.admin import BackupRequest, ConfigPatch, MaintenanceRequest
from service_gateway.app.domain.common import page_params, paginate, parse_timestamp
from service_gateway.app.domain.notifications import credential_namespace
from service_gateway.app.domain.workflows import WorkflowCreate, WorkflowPatch, WorkflowStep
from shared.errors import NotFoundError, PayloadTooLargeError, ValidationError


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


def steps(*specs):
    return [WorkflowStep(id=i, name=i.title(), type="task", depends_on=list(deps)) for i, deps in specs]


class TestCommon:
    """Test cases for shared domain helpers."""

    @pytest.mark.parametrize("value,valid", [
        ("2025-01-01T00:00:00Z", True),
        ("2025-01-01T00:00:00.123456Z", True),
        ("2025-01-01T00:00:00+02:00", True),
        ("2025-01-01T00:00:00", False),
        ("yesterday", False),
        ("", False),
    ])
    def test_parse_timestamp(self, value, valid):
        assert (parse_timestamp(value) is not None) == valid

    def test_page_params_and_paginate(self):
        assert page_params(None, None, default_limit=20) == (1, 20)
        assert page_params("0", "-5", default_limit=20) == (1, 20)
        assert page_params("2", "5000", default_limit=50, max_limit=1000) == (2, 1000)
        assert paginate(list(range(5)), 2, 2) == [2, 3]
        assert paginate(list(range(5)), 9, 2) == []

    def test_credential_namespace(self):
        assert credential_namespace({"authorization": "Bearer a"}) == "Bearer a"
        assert credential_namespace({"x-api-key": "k"}) == "apikey:k"
        assert credential_namespace({}) == "anon"


class TestNotificationStore:
    """Test cases for NotificationStore."""

    @pytest.fixture
    def store(self):
        return NotificationStore()

    def test_create_defaults(self, store):
        """Test type, priority and status defaults."""
        notification = store.create("ns", {"title": "Hello", "message": "World"})

        assert notification.id.startswith("notif-")
        assert notification.type == "info"
        assert notification.priority == "normal"
        assert notification.status == "unread"
        assert "metadata" not in notification.to_dict()

    @pytest.mark.parametrize("payload,message", [
        ({"message": "m"}, "title is required"),
        ({"title": "t" * 301, "message": "m"}, "title length too long"),
        ({"title": "t"}, "message is required"),
        ({"title": "t", "message": "m", "recipient": "nope"}, "invalid recipient"),
        ({"title": "t", "message": "m", "type": "shout"}, "type is invalid"),
        ({"title": "t", "message": "m", "priority": "urgent"}, "priority is invalid"),
        ({"title": 5, "message": "m"}, "invalid payload"),
    ])
    def test_create_validation(self, store, payload, message):
        with pytest.raises(ValidationError) as exc_info:
            store.create("ns", payload)

        assert exc_info.value.message == message

    def test_message_too_long(self, store):
        with pytest.raises(PayloadTooLargeError):
            store.create("ns", {"title": "t", "message": "m" * 4001})

    def test_namespaces_are_isolated(self, store):
        """Test one credential never sees another's notifications."""
        created = store.create("alice", {"title": "t", "message": "m"})

        assert store.list("bob")["total"] == 0
        with pytest.raises(NotFoundError):
            store.get("bob", created.id)
        assert store.get("alice", created.id) == created

    def test_list_filters_and_priority_sort(self, store):
        store.create("ns", {"title": "Low", "message": "quiet", "priority": "low"})
        store.create("ns", {"title": "Crit", "message": "server down", "priority": "critical", "type": "alert"})
        store.create("ns", {"title": "High", "message": "disk", "priority": "high"})

        result = store.list("ns", sort="priority", order="desc")
        assert [n["title"] for n in result["notifications"]] == ["Crit", "High", "Low"]

        result = store.list("ns", search="DOWN")
        assert result["total"] == 1
        assert result["search_query"] == "down"

        result = store.list("ns", type="alert", limit="1", page="1")
        assert result["total"] == 1
        assert result["type_filter"] == "alert"
        assert result["limit"] == 1

    def test_update_merges_metadata(self, store):
        created = store.create("ns", {"title": "t", "message": "m", "metadata": {"a": 1}})

        updated = store.update("ns", created.id, {"title": "new", "priority": "bogus", "metadata": {"b": 2}})

        assert updated.title == "new"
        assert updated.priority == "normal"
        assert updated.metadata == {"a": 1, "b": 2}

    def test_read_unread_cycle(self, store):
        created = store.create("ns", {"title": "t", "message": "m"})

        read = store.mark_read("ns", created.id)
        assert read.status == "read"
        assert read.read_by == "system"
        assert read.read_at

        unread = store.mark_unread("ns", created.id)
        assert unread.status == "unread"
        assert unread.read_by is None
        assert unread.read_at is None

    def test_delete(self, store):
        created = store.create("ns", {"title": "t", "message": "m"})

        store.delete("ns", created.id)

        with pytest.raises(NotFoundError):
            store.delete("ns", created.id)

    def test_broadcast_immediate(self, store):
        status, body = store.broadcast("ns", {
            "title": "t", "message": "m",
            "recipients": ["a@example.com", "b@example.com"],
            "immediate": True,
        })

        assert status == 201
        assert body["status"] == "sent"
        assert len(body["notifications_created"]) == 2
        assert store.list("ns")["total"] == 2

    def test_broadcast_scheduled(self, store):
        status, body = store.broadcast("ns", {"title": "t", "message": "m", "recipients": ["a@example.com"]})

        assert status == 202
        assert body["status"] == "scheduled"
        assert body["recipients_count"] == 1
        assert store.list("ns")["total"] == 0

    @pytest.mark.parametrize("recipients,message", [
        ([], "recipients are required"),
        (["not-an-email"], "recipient email invalid"),
        ("a@example.com", "invalid payload"),
    ])
    def test_broadcast_validation(self, store, recipients, message):
        with pytest.raises(ValidationError) as exc_info:
            store.broadcast("ns", {"title": "t", "message": "m", "recipients": recipients})

        assert exc_info.value.message == message


class TestWorkflowStore:
    """Test cases for WorkflowStore."""

    @pytest.fixture
    def store(self, clock):
        return WorkflowStore(clock=clock)

    def test_create_and_get(self, store):
        workflow = store.create(WorkflowCreate(name="Onboard", steps=steps(("a", []), ("b", ["a"]))))

        assert workflow.status == "draft"
        assert workflow.created_at == "2025-01-01T12:00:00Z"
        assert store.get(workflow.id) == workflow

    @pytest.mark.parametrize("step_list,message", [
        ([], "steps must not be empty"),
        ([WorkflowStep(id="a", name="", type="task")], "step missing required fields"),
        (steps(("a", []), ("a", [])), "duplicate step id"),
        (steps(("a", ["b"]), ("b", ["a"])), "circular dependency detected"),
        (steps(("a", ["a"])), "circular dependency detected"),
    ])
    def test_step_validation(self, store, step_list, message):
        with pytest.raises(ValidationError) as exc_info:
            store.create(WorkflowCreate(name="wf", steps=step_list))

        assert exc_info.value.message == message

    def test_name_required(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.create(WorkflowCreate(name="  ", steps=steps(("a", []))))

        assert exc_info.value.message == "name is required"

    def test_update_partial(self, store, clock):
        workflow = store.create(WorkflowCreate(name="wf", description="old", steps=steps(("a", []))))
        clock.advance(minutes=1)

        updated = store.update(workflow.id, WorkflowPatch(description="new"))

        assert updated.name == "wf"
        assert updated.description == "new"
        assert updated.updated_at == "2025-01-01T12:01:00Z"

    def test_execute_starts_at_first_independent_step(self, store):
        workflow = store.create(WorkflowCreate(name="wf", steps=steps(("b", ["a"]), ("a", []))))

        execution = store.execute(workflow.id, triggered_by="tester")

        assert execution.status == "started"
        assert execution.current_step == "a"
        assert execution.triggered_by == "tester"
        assert store.status(workflow.id)["total_steps"] == 2

    def test_timeout_drill(self, store, clock):
        """Test a workflow with a timeout step reports timeout after 1.5s."""
        workflow = store.create(WorkflowCreate(name="wf", steps=steps(("timeout_step", []))))
        store.execute(workflow.id)

        clock.advance(milliseconds=1000)
        assert store.status(workflow.id)["status"] == "started"

        clock.advance(milliseconds=600)
        assert store.status(workflow.id)["status"] == "timeout"

    def test_status_without_execution(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.status("wf-missing")

        assert exc_info.value.message == "no execution found"

    def test_approve_and_reject(self, store):
        workflow = store.create(WorkflowCreate(name="wf", steps=steps(("a", []))))
        store.execute(workflow.id)

        approved = store.approve(workflow.id, {"approver": "boss", "decision": "approved"})
        assert approved["updated_status"] == "in_progress"

        rejected = store.reject(workflow.id, {"decision": "rejected", "reason": "typo"})
        assert rejected["workflow_status"] == "waiting_correction"
        assert rejected["reason"] == "typo"

        with pytest.raises(ValidationError):
            store.approve(workflow.id, {"approver": "boss", "decision": "maybe"})
        with pytest.raises(ValidationError):
            store.approve(workflow.id, {"decision": "approved"})

    def test_list_filters(self, store, clock):
        store.create(WorkflowCreate(name="Alpha", steps=steps(("a", []))))
        clock.advance(seconds=1)
        store.create(WorkflowCreate(name="Beta", steps=steps(("a", []))))

        result = store.list()
        assert [wf["name"] for wf in result["workflows"]] == ["Beta", "Alpha"]
        assert result["limit"] == 10

        assert store.list(name="alp")["total"] == 1
        assert [wf["name"] for wf in store.list(sort_by="name", order="asc")["workflows"]] == ["Alpha", "Beta"]


class TestAuditLogStore:
    """Test cases for AuditLogStore."""

    @pytest.fixture
    def store(self):
        return AuditLogStore()

    def test_create_fills_request_context(self, store):
        entry = store.create(
            {"user_id": "u1", "action": "user:login", "resource": "session"},
            client_ip="10.0.0.1",
            user_agent="pytest",
        )

        assert entry.resource_type == "session"
        assert entry.ip_address == "10.0.0.1"
        assert entry.user_agent == "pytest"
        assert parse_timestamp(entry.timestamp) is not None
        assert store.get(entry.id) == entry

    def test_passwords_redacted(self, store):
        entry = store.create({
            "user_id": "u1", "action": "password_change", "resource_type": "user",
            "details": {"old_password": "a", "new_password": "b", "reason": "rotation"},
        })

        assert entry.details == {
            "old_password": "***redacted***",
            "new_password": "***redacted***",
            "reason": "rotation",
        }

    @pytest.mark.parametrize("payload,message", [
        ({"action": "login", "resource_type": "user"}, "missing required field"),
        ({"user_id": "u1", "action": "login"}, "missing required field: resource_type or resource"),
        ({"user_id": "u1", "action": "drop table;", "resource_type": "db"}, "action is invalid"),
    ])
    def test_create_validation(self, store, payload, message):
        with pytest.raises(ValidationError) as exc_info:
            store.create(payload)

        assert exc_info.value.message == message

    def test_details_too_large(self, store):
        with pytest.raises(PayloadTooLargeError):
            store.create({
                "user_id": "u1", "action": "upload", "resource_type": "file",
                "details": {"blob": "x" * 6000},
            })

    def test_list_sorted_and_filtered(self, store):
        store.create({"user_id": "u1", "action": "a", "resource_type": "r", "timestamp": "2025-01-01T00:00:00Z"})
        store.create({"user_id": "u2", "action": "b", "resource_type": "r", "timestamp": "2025-01-03T00:00:00Z"})
        store.create({"user_id": "u1", "action": "c", "resource_type": "r", "timestamp": "2025-01-02T00:00:00Z"})

        result = store.list()
        assert [log["action"] for log in result["logs"]] == ["b", "c", "a"]
        assert result["limit"] == 50

        result = store.list(user_id="u1", order="asc")
        assert [log["action"] for log in result["logs"]] == ["a", "c"]
        assert result["filters"]["user_id"] == "u1"

        result = store.list(start_date="2025-01-02T00:00:00Z")
        assert result["total"] == 2

    def test_list_invalid_date(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.list(start_date="last week")

        assert exc_info.value.message == "invalid date format"

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.get("audit-nope")

        assert exc_info.value.message == "audit log not found"


class TestAnalyticsService:
    """Test cases for AnalyticsService."""

    @pytest.fixture
    def analytics(self, clock):
        return AnalyticsService(clock=clock)

    def test_usage_defaults(self, analytics):
        report = analytics.usage()

        assert report["total_requests"] == 1000
        assert report["generated_at"] == "2025-01-01T12:00:00Z"
        assert "time_series" not in report

    def test_usage_future_range_is_empty(self, analytics):
        report = analytics.usage("2030-01-01T00:00:00Z", "2030-02-01T00:00:00Z", group_by="hour")

        assert report["total_requests"] == 0
        assert report["unique_users"] == 0
        assert len(report["time_series"]) == 5

    @pytest.mark.parametrize("start,end,message", [
        ("not-a-date", None, "invalid date format"),
        ("2025-02-01T00:00:00Z", "2025-01-01T00:00:00Z", "invalid date range"),
    ])
    def test_usage_validation(self, analytics, start, end, message):
        with pytest.raises(ValidationError) as exc_info:
            analytics.usage(start, end)

        assert exc_info.value.message == message

    def test_performance_flags(self, analytics):
        report = analytics.performance(include_trends="true", check_thresholds="TRUE")

        assert len(report["trends"]["response_time_trend"]) == 6
        assert report["threshold_checks"]["overall_health"] == "healthy"
        assert analytics.performance("/non/existent/endpoint")["response_times"]["avg"] == 0

    def test_errors_filters(self, analytics):
        report = analytics.errors(limit="10", status_code="401")

        assert report["status_code_filter"] == 401
        assert all(e["status_code"] == 401 for e in report["recent_errors"])

        with pytest.raises(ValidationError):
            analytics.errors(limit="ten")
        with pytest.raises(ValidationError):
            analytics.errors(status_code="5xx")

    def test_track_event(self, analytics):
        result = analytics.track_event({"event_type": "page_view", "event_name": "home"})

        assert result["status"] == "recorded"
        assert result["timestamp"] == "2025-01-01T12:00:00Z"

    @pytest.mark.parametrize("payload,error", [
        ({}, ValidationError),
        ({"event_type": "bad type!"}, ValidationError),
        ({"event_type": 7}, ValidationError),
        ({"event_type": "ok", "properties": {"large_data": "x" * 5001}}, PayloadTooLargeError),
    ])
    def test_track_event_validation(self, analytics, payload, error):
        with pytest.raises(error):
            analytics.track_event(payload)

    def test_track_batch(self, analytics):
        assert analytics.track_batch({"events": [{}, {}]})["events_received"] == 2
        with pytest.raises(ValidationError):
            analytics.track_batch({"events": []})


class TestAdminStore:
    """Test cases for AdminStore."""

    @pytest.fixture
    def store(self, clock):
        return AdminStore(clock=clock)

    def test_maintenance_degrades_status(self, store):
        assert store.system_status()["overall_status"] == "healthy"

        result = store.set_maintenance(MaintenanceRequest(enabled=True, estimated_duration=600, maintenance_type="Upgrade"))

        assert result["maintenance_mode"] is True
        assert result["maintenance_type"] == "upgrade"
        assert result["estimated_end_time"] == "2025-01-01T12:10:00Z"
        assert store.system_status()["overall_status"] == "degraded"

        store.set_maintenance(MaintenanceRequest(enabled=False, completion_message="done"))
        assert store.system_status()["overall_status"] == "healthy"

    def test_maintenance_validation_collects_problems(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.set_maintenance(MaintenanceRequest(enabled=True, estimated_duration=0, allowed_ips=["10.0.0.1", "nope"]))

        assert exc_info.value.validation_errors == ["estimated duration invalid", "allowed ip invalid: nope"]
        assert not store.maintenance_enabled

    def test_config_update_applies_typed_patch(self, store):
        patch = ConfigPatch.parse({
            "performance": {"max_connections": 50, "cache_ttl": 30},
            "security": {"rate_limit_requests": 10},
            "features": {"analytics_enabled": False},
        })

        result = store.update_config(patch)

        config = store.get_config()
        assert config["performance"]["max_connections"] == 50
        assert config["performance"]["cache_settings"]["cache_ttl"] == 30
        assert config["security"]["rate_limiting"]["rate_limit_requests"] == 10
        assert config["features"]["analytics_enabled"] is False
        assert set(result["updated_settings"]) == {"performance", "security", "features"}

    def test_config_invalid_patch_applies_nothing(self, store):
        before = store.get_config()

        with pytest.raises(ValidationError) as exc_info:
            ConfigPatch.parse({
                "performance": {"max_connections": -1, "cache_ttl": "soon"},
                "features": {"analytics_enabled": "yes"},
            })

        assert exc_info.value.message == "configuration invalid"
        assert "performance.max_connections invalid" in exc_info.value.validation_errors
        assert "performance.cache_ttl invalid" in exc_info.value.validation_errors
        assert store.get_config() == before

    def test_backup_progress(self, store, clock):
        backup = store.create_backup(BackupRequest(backup_type="Full"))
        assert backup["status"] == "started"
        assert backup["backup_type"] == "full"

        clock.advance(seconds=2)
        assert store.backup_status(backup["backup_id"])["status"] == "in_progress"

        clock.advance(seconds=2)
        done = store.backup_status(backup["backup_id"])
        assert done["status"] == "completed"
        assert done["progress"] == 100
        assert done["download_url"].endswith(".tar.gz")

        listing = store.list_backups(backup_type="full", status="completed")
        assert listing["total"] == 1
        assert listing["storage_usage"] == done["file_size"]

    def test_unknown_backup_is_synthesized(self, store):
        assert store.backup_status("backup-unknown")["status"] == "in_progress"
