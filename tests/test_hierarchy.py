"""
Hierarchy tests — processes, functions requirements, tasks tracking,
correspondences and cascade behaviour.
"""

from tracker.models import db
from tracker.models.hierarchy import (
    Correspondence,
    FunctionsRequirement,
    Process,
    System,
    TasksTracking,
)


# ═════════════════════════════════════════════════════════════════════════════
# PROCESSES
# ═════════════════════════════════════════════════════════════════════════════


class TestProcesses:
    def test_create_links_system(self, process, system):
        assert process["system_id"] == system["id"]
        assert process["system"]["slug"] == "billing"

    def test_unknown_system_is_422(self, client, admin_headers):
        res = client.post(
            "/api/v1/processes",
            json={"system_id": 999, "name": "Orphan", "description": "x"},
            headers=admin_headers,
        )
        assert res.status_code == 422
        assert res.get_json()["details"]["system_id"] == ["The selected system is invalid."]

    def test_deleted_system_is_not_a_valid_parent(self, client, admin_headers, system):
        client.delete("/api/v1/systems/billing", headers=admin_headers)
        res = client.post(
            "/api/v1/processes",
            json={"system_id": system["id"], "name": "Late", "description": "x"},
            headers=admin_headers,
        )
        assert res.status_code == 422

    def test_show_lists_children(self, client, admin_headers, process, functions_requirement):
        res = client.get(f"/api/v1/processes/{process['id']}", headers=admin_headers)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert [f["name"] for f in data["functions_requirements"]] == ["Generate PDF"]

    def test_non_numeric_id_is_404(self, client, admin_headers):
        assert client.get("/api/v1/processes/abc", headers=admin_headers).status_code == 404

    def test_form_options_lists_systems(self, client, admin_headers, system):
        res = client.get("/api/v1/processes/form-options", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["data"]["systems"][0]["slug"] == "billing"


# ═════════════════════════════════════════════════════════════════════════════
# FUNCTIONS REQUIREMENTS
# ═════════════════════════════════════════════════════════════════════════════


class TestFunctionsRequirements:
    def _payload(self, process_id, **overrides):
        payload = {
            "process_id": process_id,
            "name": "Dunning",
            "requirement": "Reminder letters",
            "planned_start_date": "2025-02-01",
            "planned_end_date": "2025-02-28",
        }
        payload.update(overrides)
        return payload

    def test_dates_are_iso(self, functions_requirement):
        assert functions_requirement["planned_start_date"] == "2025-01-01"
        assert functions_requirement["planned_end_date"] == "2025-01-31"

    def test_end_before_start_is_422(self, client, admin_headers, process):
        res = client.post(
            "/api/v1/functions-requirements",
            json=self._payload(process["id"], planned_end_date="2025-01-15"),
            headers=admin_headers,
        )
        assert res.status_code == 422
        assert res.get_json()["details"]["planned_end_date"] == [
            "Planned end date must be after planned start date."
        ]

    def test_same_day_end_is_422(self, client, admin_headers, process):
        res = client.post(
            "/api/v1/functions-requirements",
            json=self._payload(process["id"], planned_end_date="2025-02-01"),
            headers=admin_headers,
        )
        assert res.status_code == 422

    def test_bad_date_is_422(self, client, admin_headers, process):
        res = client.post(
            "/api/v1/functions-requirements",
            json=self._payload(process["id"], planned_start_date="soon"),
            headers=admin_headers,
        )
        assert res.status_code == 422
        assert res.get_json()["details"]["planned_start_date"] == [
            "Planned start date must be a valid date."
        ]


# ═════════════════════════════════════════════════════════════════════════════
# TASKS TRACKING / CORRESPONDENCES
# ═════════════════════════════════════════════════════════════════════════════


class TestTasksTracking:
    def test_invalid_status_is_422(self, client, admin_headers, functions_requirement):
        res = client.post(
            "/api/v1/tasks-tracking",
            json={
                "function_id": functions_requirement["id"],
                "correspondence": "x",
                "actual_start_date": "2025-01-02",
                "actual_end_date": "2025-01-03",
                "status": "done",
            },
            headers=admin_headers,
        )
        assert res.status_code == 422
        assert res.get_json()["details"]["status"] == [
            "Status must be one of: pending, in_progress, completed, cancelled."
        ]

    def test_any_status_change_is_allowed(self, client, admin_headers, tasks_tracking):
        """No transition graph is enforced; every status may follow every other."""
        payload = {
            "function_id": tasks_tracking["function_id"],
            "correspondence": "Kick-off mail",
            "actual_start_date": "2025-01-02",
            "actual_end_date": "2025-01-10",
        }
        for status in ("completed", "pending", "cancelled"):
            res = client.put(
                f"/api/v1/tasks-tracking/{tasks_tracking['id']}",
                json={**payload, "status": status},
                headers=admin_headers,
            )
            assert res.status_code == 200
            assert res.get_json()["data"]["status"] == status


class TestCorrespondences:
    def test_create(self, correspondence, tasks_tracking):
        assert correspondence["task_id"] == tasks_tracking["id"]
        assert correspondence["type"] == "email"

    def test_invalid_type_is_422(self, client, admin_headers, tasks_tracking):
        res = client.post(
            "/api/v1/correspondences",
            json={"task_id": tasks_tracking["id"], "type": "fax", "reference": "R"},
            headers=admin_headers,
        )
        assert res.status_code == 422
        assert "type" in res.get_json()["details"]

    def test_form_options(self, client, admin_headers, tasks_tracking):
        res = client.get("/api/v1/correspondences/form-options", headers=admin_headers)
        data = res.get_json()["data"]
        assert data["types"] == ["email", "letter", "phone", "meeting", "document", "other"]
        assert data["tasks_tracking"][0]["id"] == tasks_tracking["id"]


# ═════════════════════════════════════════════════════════════════════════════
# CASCADE
# ═════════════════════════════════════════════════════════════════════════════


class TestCascadeDelete:
    def test_system_delete_purges_subtree(self, client, admin_headers, correspondence):
        res = client.delete("/api/v1/systems/billing", headers=admin_headers)
        assert res.status_code == 200

        db.session.expire_all()
        assert System.query.count() == 1
        assert Process.query.count() == 0
        assert FunctionsRequirement.query.count() == 0
        assert TasksTracking.query.count() == 0
        assert Correspondence.query.count() == 0

    def test_process_delete_keeps_siblings(self, client, admin_headers, system, functions_requirement):
        other = client.post(
            "/api/v1/processes",
            json={"system_id": system["id"], "name": "Refunds", "description": "x"},
            headers=admin_headers,
        ).get_json()["data"]

        client.delete(f"/api/v1/processes/{functions_requirement['process_id']}", headers=admin_headers)

        db.session.expire_all()
        assert FunctionsRequirement.query.count() == 0
        assert Process.query_active().one().id == other["id"]

    def test_correspondence_delete_is_soft(self, client, admin_headers, correspondence):
        res = client.delete(f"/api/v1/correspondences/{correspondence['id']}", headers=admin_headers)
        assert res.status_code == 200
        db.session.expire_all()
        assert Correspondence.query.count() == 1
        assert Correspondence.query_active().count() == 0
