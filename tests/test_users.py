"""
User management tests.

Covers:
  - /api/v1/users CRUD, search/role filters, sort_by allow-list
  - bulk role assign/revoke and role permission grants
  - /api/v1/settings/users single grants (idempotent, one activity row per change)
"""

import pytest

from tracker.models import db
from tracker.models.audit import ActivityLog
from tracker.models.auth import User


def _activity(description):
    return ActivityLog.query.filter_by(description=description).all()


# ═════════════════════════════════════════════════════════════════════════════
# USERS CRUD
# ═════════════════════════════════════════════════════════════════════════════


class TestUserCrud:
    def _payload(self, **overrides):
        payload = {
            "name": "Ann Lee",
            "email": "ann@example.com",
            "password": "password123",
            "password_confirmation": "password123",
            "roles": ["user"],
        }
        payload.update(overrides)
        return payload

    def test_create(self, client, admin, admin_headers):
        res = client.post("/api/v1/users", json=self._payload(email_verified=True), headers=admin_headers)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert [r["name"] for r in data["roles"]] == ["user"]
        assert data["email_verified_at"] is not None
        assert "password_hash" not in data

        row = _activity("User created")[0]
        assert row.causer_id == admin.id
        assert row.subject_id == str(data["id"])

    def test_password_confirmation_must_match(self, client, admin_headers):
        res = client.post(
            "/api/v1/users", json=self._payload(password_confirmation="different"), headers=admin_headers,
        )
        assert res.status_code == 422
        body = res.get_json()
        assert "password" in body["details"]
        assert "password" not in body["old_input"]

    def test_duplicate_email(self, client, admin_headers):
        res = client.post("/api/v1/users", json=self._payload(email="admin@example.com"), headers=admin_headers)
        assert res.status_code == 422
        assert "email" in res.get_json()["details"]

    def test_unknown_role(self, client, admin_headers):
        res = client.post("/api/v1/users", json=self._payload(roles=["wizard"]), headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["details"]["roles"] == ["The selected role is invalid."]

    def test_update_replaces_roles(self, client, admin_headers, viewer):
        res = client.put(
            f"/api/v1/users/{viewer.id}",
            json={"name": "Viewer", "email": "viewer@example.com", "roles": ["manager"]},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert [r["name"] for r in res.get_json()["data"]["roles"]] == ["manager"]

    def test_update_without_password_keeps_it(self, client, admin_headers, viewer):
        old_hash = viewer.password_hash
        client.patch(
            f"/api/v1/users/{viewer.id}",
            json={"name": "Renamed", "email": "viewer@example.com"},
            headers=admin_headers,
        )
        db.session.expire_all()
        assert db.session.get(User, viewer.id).password_hash == old_hash

    def test_delete(self, client, admin_headers, viewer):
        res = client.delete(f"/api/v1/users/{viewer.id}", headers=admin_headers)
        assert res.status_code == 200
        assert db.session.get(User, viewer.id) is None
        assert len(_activity("User deleted")) == 1

    def test_cannot_delete_self(self, client, admin, admin_headers):
        res = client.delete(f"/api/v1/users/{admin.id}", headers=admin_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "You cannot delete your own account."

    def test_missing_user_is_404(self, client, admin_headers):
        assert client.get("/api/v1/users/9999", headers=admin_headers).status_code == 404

    def test_manager_cannot_list_users(self, client, make_user, auth_headers):
        manager = make_user(roles=["manager"])
        assert client.get("/api/v1/users", headers=auth_headers(manager)).status_code == 403


class TestUserListing:
    def test_search_and_role_filter(self, client, admin_headers, viewer, make_user):
        make_user("zed@example.com", name="Zed", roles=["manager"])
        res = client.get("/api/v1/users?search=zed", headers=admin_headers)
        assert [u["email"] for u in res.get_json()["data"]] == ["zed@example.com"]

        res = client.get("/api/v1/users?role=user", headers=admin_headers)
        assert [u["email"] for u in res.get_json()["data"]] == ["viewer@example.com"]

    def test_sort_by(self, client, admin_headers, viewer):
        res = client.get("/api/v1/users?sort_by=name&sort_direction=desc", headers=admin_headers)
        assert [u["name"] for u in res.get_json()["data"]] == ["Viewer", "Admin"]

    def test_unknown_sort_by_is_400(self, client, admin_headers):
        res = client.get("/api/v1/users?sort_by=password_hash", headers=admin_headers)
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# ROLES & PERMISSIONS
# ═════════════════════════════════════════════════════════════════════════════


class TestRoleAssignment:
    def test_assign_keeps_existing_roles(self, client, admin_headers, viewer):
        res = client.post(
            f"/api/v1/users/{viewer.id}/assign-role", json={"roles": ["manager"]}, headers=admin_headers,
        )
        assert res.status_code == 200
        assert [r["name"] for r in res.get_json()["data"]["roles"]] == ["manager", "user"]
        assert len(_activity("Roles assigned to user")) == 1

    def test_assign_requires_roles(self, client, admin_headers, viewer):
        res = client.post(f"/api/v1/users/{viewer.id}/assign-role", json={}, headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["details"]["roles"] == ["At least one role must be selected."]

    def test_revoke(self, client, admin_headers, viewer):
        res = client.delete(
            f"/api/v1/users/{viewer.id}/revoke-role", json={"roles": ["user"]}, headers=admin_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["data"]["roles"] == []

    def test_give_and_revoke_role_permissions(self, client, admin_headers, rbac):
        role_id = rbac["user"].id
        res = client.post(
            f"/api/v1/users/roles/{role_id}/give-permission",
            json={"permissions": ["delete tasks"]},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert "delete tasks" in res.get_json()["data"]["permissions"]

        res = client.delete(
            f"/api/v1/users/roles/{role_id}/revoke-permission",
            json={"permissions": ["delete tasks"]},
            headers=admin_headers,
        )
        assert "delete tasks" not in res.get_json()["data"]["permissions"]
        assert ActivityLog.query.filter_by(subject_type="role").count() == 2

    def test_catalogue_endpoints(self, client, admin_headers):
        roles = client.get("/api/v1/users/roles", headers=admin_headers).get_json()["data"]
        assert [r["name"] for r in roles] == ["admin", "manager", "user"]
        perms = client.get("/api/v1/users/permissions", headers=admin_headers).get_json()["data"]
        assert "manage users" in {p["name"] for p in perms}


# ═════════════════════════════════════════════════════════════════════════════
# SETTINGS: single grants
# ═════════════════════════════════════════════════════════════════════════════


class TestSettingsGrants:
    @pytest.fixture()
    def url(self, viewer):
        return f"/api/v1/settings/users/{viewer.id}"

    def test_show_breakdown(self, client, admin_headers, url, viewer):
        res = client.get(url, headers=admin_headers)
        data = res.get_json()["data"]
        assert data["user"]["id"] == viewer.id
        assert "view systems" in data["permissions_via_roles"]
        assert data["direct_permissions"] == []

    def test_assign_role_then_noop(self, client, admin_headers, url):
        res = client.post(f"{url}/roles", json={"role": "manager"}, headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["message"] == "Role 'manager' assigned to Viewer."
        assert len(_activity("Role assigned to user")) == 1

        res = client.post(f"{url}/roles", json={"role": "manager"}, headers=admin_headers)
        assert res.status_code == 200
        assert len(_activity("Role assigned to user")) == 1

    def test_remove_role_not_held_is_noop(self, client, admin_headers, url):
        res = client.delete(f"{url}/roles", json={"role": "admin"}, headers=admin_headers)
        assert res.status_code == 200
        assert _activity("Role removed from user") == []

    def test_unknown_role_is_422(self, client, admin_headers, url):
        res = client.post(f"{url}/roles", json={"role": "wizard"}, headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["details"]["role"] == ["The selected role is invalid."]

    def test_direct_permission_round_trip(self, client, admin_headers, url):
        res = client.post(f"{url}/permissions", json={"permission": "delete tasks"}, headers=admin_headers)
        assert res.get_json()["data"]["direct_permissions"] == ["delete tasks"]

        res = client.delete(f"{url}/permissions", json={"permission": "delete tasks"}, headers=admin_headers)
        assert res.get_json()["data"]["direct_permissions"] == []
        assert len(_activity("Permission assigned to user")) == 1
        assert len(_activity("Permission removed from user")) == 1

    def test_bulk_assign_counts_new_grants(self, client, admin, admin_headers, viewer):
        res = client.post(
            "/api/v1/settings/users/bulk/assign-role",
            json={"user_ids": [admin.id, viewer.id], "role": "manager"},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["data"] == {"assigned": 2}

        res = client.post(
            "/api/v1/settings/users/bulk/assign-role",
            json={"user_ids": [viewer.id], "role": "manager"},
            headers=admin_headers,
        )
        assert res.get_json()["data"] == {"assigned": 0}
        assert len(_activity("Role bulk assigned to user")) == 2

    def test_bulk_unknown_user_is_422(self, client, admin_headers):
        res = client.post(
            "/api/v1/settings/users/bulk/assign-role",
            json={"user_ids": [9999], "role": "manager"},
            headers=admin_headers,
        )
        assert res.status_code == 422

    def test_requires_manage_users(self, client, make_user, auth_headers, url):
        manager = make_user(roles=["manager"])
        assert client.get(url, headers=auth_headers(manager)).status_code == 403

    def test_settings_index_page_size(self, app, client, admin_headers, make_user):
        for _ in range(app.config["SETTINGS_PER_PAGE"]):
            make_user()
        res = client.get("/api/v1/settings/users", headers=admin_headers)
        meta = res.get_json()["meta"]
        assert meta["per_page"] == 15
        assert len(res.get_json()["data"]) == 15
        assert meta["total"] == 16
