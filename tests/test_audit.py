"""Tests for the audit log."""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from accesscore import AccessEngine, AuditAction, AuditQuery, Permissions, ValidationError
from accesscore.audit import AuditLog

from conftest import FakeClock


@pytest.fixture
def audit(clock: FakeClock) -> AuditLog:
    return AuditLog(clock=clock)


class TestRecording:
    """Recording and enable flags."""

    def test_entries_are_immutable(self, audit: AuditLog) -> None:
        entry = audit.log_check("u1", Permissions.STORAGE_READ, True)
        assert entry is not None
        with pytest.raises(Exception):
            entry.granted = False  # type: ignore[misc]

    def test_disabled_records_nothing(self, clock: FakeClock) -> None:
        audit = AuditLog(enabled=False, clock=clock)
        assert audit.log_check("u1", Permissions.STORAGE_READ, True) is None
        assert audit.log_role_change("u1", "ops", "user", assigned=True) is None
        assert len(audit) == 0

    def test_checks_can_be_skipped(self, clock: FakeClock) -> None:
        audit = AuditLog(record_checks=False, clock=clock)
        audit.log_check("u1", Permissions.STORAGE_READ, True)
        audit.log_role_change("u1", "ops", "user", assigned=True)
        assert [e.action for e in audit.query()] == [AuditAction.ROLE_ASSIGNED]

    def test_timestamp_from_clock(self, audit: AuditLog, clock: FakeClock) -> None:
        entry = audit.log_check("u1", Permissions.STORAGE_READ, True)
        assert entry.timestamp == datetime.fromtimestamp(clock(), tz=timezone.utc)

    def test_capacity_drops_oldest(self, clock: FakeClock) -> None:
        audit = AuditLog(max_entries=3, clock=clock)
        for i in range(5):
            audit.log_check(f"u{i}", Permissions.STORAGE_READ, True)
        assert len(audit) == 3
        assert audit.dropped == 2
        assert [e.user_id for e in audit.query()] == ["u4", "u3", "u2"]

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValidationError):
            AuditLog(max_entries=0)


class TestQuery:
    """Filtering and ordering."""

    def test_newest_first(self, audit: AuditLog, clock: FakeClock) -> None:
        for user in ("a", "b", "c"):
            audit.log_check(user, Permissions.STORAGE_READ, True)
            clock.advance(1)
        assert [e.user_id for e in audit.query()] == ["c", "b", "a"]

    def test_filters_are_anded(self, audit: AuditLog) -> None:
        audit.log_check("u1", Permissions.STORAGE_READ, True)
        audit.log_check("u1", Permissions.STORAGE_WRITE, False)
        audit.log_check("u2", Permissions.STORAGE_READ, True)
        audit.log_role_change("u1", "ops", "user", assigned=True)

        result = audit.query(AuditQuery(user_id="u1", permission=Permissions.STORAGE_READ))
        assert len(result) == 1
        assert result[0].granted is True

        assert len(audit.query(AuditQuery(user_id="u1", action=AuditAction.CHECK))) == 2
        assert len(audit.query(AuditQuery(performed_by="ops"))) == 1

    def test_time_window(self, audit: AuditLog, clock: FakeClock) -> None:
        audit.log_check("old", Permissions.STORAGE_READ, True)
        clock.advance(100)
        audit.log_check("new", Permissions.STORAGE_READ, True)
        start = datetime.fromtimestamp(clock() - 10, tz=timezone.utc)
        assert [e.user_id for e in audit.query(AuditQuery(start_time=start))] == ["new"]
        end = datetime.fromtimestamp(clock() - 10, tz=timezone.utc)
        assert [e.user_id for e in audit.query(AuditQuery(end_time=end))] == ["old"]

    def test_limit(self, audit: AuditLog) -> None:
        for i in range(150):
            audit.log_check(f"u{i}", Permissions.STORAGE_READ, True)
        assert len(audit.query()) == 100
        assert len(audit.query(AuditQuery(limit=10))) == 10
        assert len(audit.get_user_logs("u3")) == 1


class TestStats:
    """Per-permission and per-role statistics."""

    def test_permission_stats(self, audit: AuditLog) -> None:
        audit.log_check("u1", Permissions.STORAGE_READ, True)
        audit.log_check("u1", Permissions.STORAGE_READ, False)
        audit.log_check("u2", Permissions.STORAGE_READ, True)
        audit.log_check("u2", Permissions.STORAGE_WRITE, True)

        stats = audit.stats(Permissions.STORAGE_READ)
        assert stats.total_checks == 3
        assert stats.granted == 2
        assert stats.denied == 1
        assert stats.unique_users == 2

    def test_role_stats(self, audit: AuditLog) -> None:
        audit.log_role_change("u1", None, "user", assigned=True)
        audit.log_role_change("u2", None, "user", assigned=True)
        audit.log_role_change("u2", None, "viewer", assigned=True)
        audit.log_role_change("u1", None, "user", assigned=False)
        assert audit.role_stats() == {"user": 2, "viewer": 1}


class TestRetention:
    """prune()."""

    def test_prune_by_seconds(self, audit: AuditLog, clock: FakeClock) -> None:
        audit.log_check("old", Permissions.STORAGE_READ, True)
        clock.advance(3600)
        audit.log_check("new", Permissions.STORAGE_READ, True)
        assert audit.prune(60) == 1
        assert [e.user_id for e in audit.query()] == ["new"]

    def test_prune_by_timedelta(self, audit: AuditLog, clock: FakeClock) -> None:
        audit.log_check("old", Permissions.STORAGE_READ, True)
        clock.advance(timedelta(days=2).total_seconds())
        assert audit.prune(timedelta(days=1)) == 1
        assert len(audit) == 0

    def test_negative_retention(self, audit: AuditLog) -> None:
        with pytest.raises(ValidationError):
            audit.prune(-1)


class TestExport:
    """JSON and CSV export."""

    def test_json(self, audit: AuditLog) -> None:
        audit.log_check("u1", Permissions.STORAGE_READ, True, context={"ip": "10.0.0.1"})
        data = json.loads(audit.export("json"))
        assert len(data) == 1
        assert data[0]["user_id"] == "u1"
        assert data[0]["action"] == "check"
        assert data[0]["context"] == {"ip": "10.0.0.1"}

    def test_csv(self, audit: AuditLog) -> None:
        audit.log_check("u1", Permissions.STORAGE_READ, True, resource="bucket-1")
        audit.log_role_change("u2", "ops", "viewer", assigned=True)
        rows = list(csv.DictReader(io.StringIO(audit.export("CSV"))))
        assert [r["user_id"] for r in rows] == ["u2", "u1"]
        assert rows[0]["action"] == "role_assigned"
        assert rows[1]["resource"] == "bucket-1"

    def test_export_respects_query(self, audit: AuditLog) -> None:
        audit.log_check("u1", Permissions.STORAGE_READ, True)
        audit.log_check("u2", Permissions.STORAGE_READ, True)
        data = json.loads(audit.export("json", AuditQuery(user_id="u2")))
        assert [e["user_id"] for e in data] == ["u2"]

    def test_invalid_format(self, audit: AuditLog) -> None:
        with pytest.raises(ValidationError, match="Invalid export format"):
            audit.export("xml")


class TestEngineAuditing:
    """What the engine records."""

    def test_checks_recorded_with_reason(self, engine: AccessEngine) -> None:
        engine.has_permission("u1", Permissions.STORAGE_READ)
        entry = engine.query_audit()[0]
        assert entry.action == AuditAction.CHECK
        assert entry.granted is False
        assert entry.context["reason"] == "no_grant"

    def test_noop_changes_not_recorded(self, engine: AccessEngine) -> None:
        engine.assign_role("u1", "user", performed_by="ops")
        engine.assign_role("u1", "user", performed_by="ops")
        engine.revoke_role("u1", "viewer")
        entries = engine.query_audit(AuditQuery(user_id="u1"))
        assert [e.action for e in entries] == [AuditAction.ROLE_ASSIGNED]
        assert entries[0].performed_by == "ops"

    def test_grant_changes_recorded(self, engine: AccessEngine) -> None:
        engine.grant_permission("viewer", Permissions.BUCKET_CREATE, performed_by="ops")
        engine.revoke_permission("viewer", Permissions.BUCKET_CREATE, performed_by="ops")
        actions = [e.action for e in engine.query_audit(AuditQuery(role="viewer"))]
        assert actions == [AuditAction.PERMISSION_REVOKED, AuditAction.PERMISSION_GRANTED]

    def test_permission_stats(self, engine: AccessEngine) -> None:
        engine.assign_role("u1", "viewer")
        engine.has_permission("u1", Permissions.STORAGE_READ)
        engine.has_permission("u2", Permissions.STORAGE_READ)
        stats = engine.permission_stats(Permissions.STORAGE_READ)
        assert (stats.granted, stats.denied, stats.unique_users) == (1, 1, 2)
