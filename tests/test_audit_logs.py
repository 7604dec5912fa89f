"""
Audit + activity trail tests.

Every successful create / update / delete writes exactly one AuditLog row
and one ActivityLog row; failed writes leave no trace.
"""

import json

import pytest

from tracker.core.exceptions import TransactionError
from tracker.models import db
from tracker.models.audit import AuditLog, ActivityLog, audit_trail, write_audit
from tracker.services.hierarchy_service import systems


class TestWriters:
    def test_write_audit_serialises_diff(self):
        row = write_audit(entity_type="system", entity_id=7, action="updated", diff={"name": {"old": "a", "new": "b"}})
        assert row.entity_id == "7"
        assert json.loads(row.diff_json) == {"name": {"old": "a", "new": "b"}}

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            write_audit(entity_type="system", entity_id=1, action="exploded")

    def test_trail_is_newest_first(self):
        write_audit(entity_type="system", entity_id=1, action="created")
        write_audit(entity_type="system", entity_id=1, action="updated")
        write_audit(entity_type="system", entity_id=2, action="created")
        assert [r["action"] for r in audit_trail("system", 1)] == ["updated", "created"]


class TestOneRowPerMutation:
    def test_create_update_delete(self, client, admin, admin_headers, system):
        client.put(
            "/api/v1/systems/billing", json={"name": "Billing", "description": "v2"}, headers=admin_headers,
        )
        client.delete("/api/v1/systems/billing", headers=admin_headers)

        audits = AuditLog.query.filter_by(entity_type="system").order_by(AuditLog.id).all()
        assert [a.action for a in audits] == ["created", "updated", "deleted"]
        assert {a.actor_user_id for a in audits} == {admin.id}

        activity = ActivityLog.query.filter_by(subject_type="system").order_by(ActivityLog.id).all()
        assert [a.description for a in activity] == ["System created", "System updated", "System deleted"]
        assert activity[1].properties == {
            "attributes": {"description": "v2"},
            "old": {"description": "Invoices and payments"},
        }

    def test_create_diff_has_all_fields(self, system):
        row = AuditLog.query.filter_by(entity_type="system", action="created").one()
        assert row.diff == {
            "name": {"old": None, "new": "Billing"},
            "description": {"old": None, "new": "Invoices and payments"},
        }

    def test_delete_diff_snapshots_fields(self, client, admin_headers, process):
        client.delete(f"/api/v1/processes/{process['id']}", headers=admin_headers)
        row = AuditLog.query.filter_by(entity_type="process", action="deleted").one()
        assert row.diff["name"] == {"old": "Invoice run", "new": None}

    def test_rejected_write_logs_nothing(self, client, admin_headers, system):
        before = (AuditLog.query.count(), ActivityLog.query.count())
        client.put("/api/v1/systems/billing", json={"name": ""}, headers=admin_headers)
        assert (AuditLog.query.count(), ActivityLog.query.count()) == before


class TestTransactionRollback:
    def test_failure_rolls_back_and_wraps(self, admin, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr("tracker.services.resource_service.write_activity", explode)
        with pytest.raises(TransactionError) as exc:
            systems.create({"name": "HR", "description": "People"}, user_id=admin.id)

        assert str(exc.value) == "Failed to create system: disk full"
        assert exc.value.old_input == {"name": "HR", "description": "People"}
        db.session.expire_all()
        assert AuditLog.query.count() == 0
        assert systems.model.query.count() == 0

    def test_failure_is_500_over_http(self, client, admin_headers, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr("tracker.services.resource_service.write_audit", explode)
        res = client.post("/api/v1/systems", json={"name": "HR", "description": "x"}, headers=admin_headers)
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_TRANSACTION"
        assert body["old_input"]["name"] == "HR"


class TestLogEndpoints:
    def test_activity_logs(self, client, admin_headers, process):
        res = client.get("/api/v1/activity-logs?filter[subject_type]=process", headers=admin_headers)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert [a["description"] for a in data] == ["Process created"]
        assert data[0]["causer"]["email"] == "admin@example.com"

    def test_activity_description_filter(self, client, admin_headers, process):
        res = client.get("/api/v1/activity-logs?filter[description]=system", headers=admin_headers)
        assert [a["description"] for a in res.get_json()["data"]] == ["System created"]

    def test_audits(self, client, admin_headers, system):
        res = client.get(
            f"/api/v1/audits?filter[entity_type]=system&filter[entity_id]={system['id']}",
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert [a["action"] for a in res.get_json()["data"]] == ["created"]

    def test_audits_unknown_filter(self, client, admin_headers):
        assert client.get("/api/v1/audits?filter[diff]=x", headers=admin_headers).status_code == 400

    def test_viewer_cannot_read_logs(self, client, viewer_headers):
        assert client.get("/api/v1/activity-logs", headers=viewer_headers).status_code == 403
        assert client.get("/api/v1/audits", headers=viewer_headers).status_code == 403
