"""
Task list tests — ownership, completed_at tracking, hard delete.
"""

from datetime import datetime, timedelta, timezone

from tracker.models import db
from tracker.models.audit import ActivityLog
from tracker.models.task import Task


def _now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _create(client, headers, **overrides):
    payload = {"title": "Review invoices", "status": "pending", "priority": "medium"}
    payload.update(overrides)
    return client.post("/api/v1/tasks", json=payload, headers=headers)


class TestCreateTask:
    def test_owner_is_caller(self, client, viewer, viewer_headers):
        res = _create(client, viewer_headers)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["user_id"] == viewer.id
        assert data["completed_at"] is None

    def test_required_fields(self, client, admin_headers):
        res = client.post("/api/v1/tasks", json={}, headers=admin_headers)
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"title", "status", "priority"}

    def test_bad_priority(self, client, admin_headers):
        assert _create(client, admin_headers, priority="asap").status_code == 422

    def test_assignee_must_exist(self, client, admin_headers, viewer):
        assert _create(client, admin_headers, assigned_to=9999).status_code == 422
        res = _create(client, admin_headers, assigned_to=viewer.id)
        assert res.get_json()["data"]["assigned_user"]["id"] == viewer.id

    def test_due_date_parsed(self, client, admin_headers):
        res = _create(client, admin_headers, due_date="2025-03-01T09:30:00")
        assert res.get_json()["data"]["due_date"] == "2025-03-01T09:30:00"

    def test_created_completed_sets_timestamp(self, client, admin_headers):
        res = _create(client, admin_headers, status="completed")
        assert res.get_json()["data"]["completed_at"] is not None


class TestCompletedAt:
    def test_follows_status(self, client, admin_headers):
        task = _create(client, admin_headers).get_json()["data"]
        url = f"/api/v1/tasks/{task['id']}"
        body = {"title": "Review invoices", "priority": "medium"}

        done = client.put(url, json={**body, "status": "completed"}, headers=admin_headers).get_json()["data"]
        assert done["completed_at"] is not None

        again = client.put(url, json={**body, "status": "completed"}, headers=admin_headers).get_json()["data"]
        assert again["completed_at"] == done["completed_at"]

        reopened = client.put(url, json={**body, "status": "in_progress"}, headers=admin_headers)
        assert reopened.get_json()["data"]["completed_at"] is None


class TestTaskQueries:
    def test_due_soon_scope(self, client, admin_headers):
        soon = (_now() + timedelta(days=2)).isoformat(timespec="seconds")
        later = (_now() + timedelta(days=40)).isoformat(timespec="seconds")
        _create(client, admin_headers, title="soon", due_date=soon)
        _create(client, admin_headers, title="later", due_date=later)

        res = client.get("/api/v1/tasks?filter[due_soon]=true", headers=admin_headers)
        assert [t["title"] for t in res.get_json()["data"]] == ["soon"]
        res = client.get("/api/v1/tasks?filter[due_soon]=60", headers=admin_headers)
        assert res.get_json()["meta"]["total"] == 2

    def test_filter_by_owner(self, client, admin, admin_headers, viewer_headers):
        _create(client, admin_headers, title="mine")
        _create(client, viewer_headers, title="theirs")
        res = client.get(f"/api/v1/tasks?filter[user_id]={admin.id}", headers=admin_headers)
        assert [t["title"] for t in res.get_json()["data"]] == ["mine"]


class TestDeleteTask:
    def test_hard_delete(self, client, admin_headers):
        task = _create(client, admin_headers).get_json()["data"]
        res = client.delete(f"/api/v1/tasks/{task['id']}", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["message"] == "Task deleted successfully."
        assert db.session.get(Task, task["id"]) is None

        logged = ActivityLog.query.filter_by(subject_type="task", description="Task deleted").one()
        assert logged.subject_id == str(task["id"])

    def test_viewer_cannot_delete(self, client, viewer_headers):
        task = _create(client, viewer_headers).get_json()["data"]
        assert client.delete(f"/api/v1/tasks/{task['id']}", headers=viewer_headers).status_code == 403
