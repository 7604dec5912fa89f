"""
Authorization tests — every resource route is gated by a "<verb> <subject>"
permission, held through a role or granted directly.
"""

import pytest

from tracker.models import db
from tracker.models.auth import Permission, Role, RolePermission
from tracker.services.permission_service import (
    get_user_permissions,
    has_permission,
    seed_permissions,
    seed_roles,
)


RESOURCE_URLS = [
    "/api/v1/systems",
    "/api/v1/processes",
    "/api/v1/functions-requirements",
    "/api/v1/tasks-tracking",
    "/api/v1/correspondences",
]


class TestAuthentication:
    @pytest.mark.parametrize("url", RESOURCE_URLS + ["/api/v1/tasks", "/api/v1/users"])
    def test_no_token_is_401(self, client, url):
        res = client.get(url)
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_garbage_token_is_401(self, client, rbac):
        res = client.get("/api/v1/systems", headers={"Authorization": "Bearer not-a-token"})
        assert res.status_code == 401

    def test_health_is_public(self, client):
        assert client.get("/api/v1/health").status_code == 200
        assert client.get("/api/v1/health/live").get_json()["database"]["status"] == "ok"


class TestViewerRole:
    @pytest.mark.parametrize("url", RESOURCE_URLS)
    def test_viewer_can_list(self, client, viewer_headers, url):
        assert client.get(url, headers=viewer_headers).status_code == 200

    def test_viewer_can_show(self, client, viewer_headers, system):
        assert client.get("/api/v1/systems/billing", headers=viewer_headers).status_code == 200

    def test_viewer_cannot_create(self, client, viewer_headers):
        res = client.post(
            "/api/v1/systems", json={"name": "HR", "description": "x"}, headers=viewer_headers,
        )
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_viewer_cannot_edit_or_delete(self, client, viewer_headers, system):
        payload = {"name": "Billing", "description": "x"}
        assert client.put("/api/v1/systems/billing", json=payload, headers=viewer_headers).status_code == 403
        assert client.delete("/api/v1/systems/billing", headers=viewer_headers).status_code == 403

    def test_viewer_cannot_open_form_options(self, client, viewer_headers):
        assert client.get("/api/v1/processes/form-options", headers=viewer_headers).status_code == 403

    def test_viewer_can_create_tasks(self, client, viewer_headers):
        res = client.post(
            "/api/v1/tasks",
            json={"title": "Call vendor", "status": "pending", "priority": "low"},
            headers=viewer_headers,
        )
        assert res.status_code == 201

    def test_forbidden_write_leaves_no_rows(self, client, viewer_headers):
        client.post("/api/v1/systems", json={"name": "HR", "description": "x"}, headers=viewer_headers)
        assert client.get("/api/v1/systems", headers=viewer_headers).get_json()["meta"]["total"] == 0


class TestDirectGrants:
    def test_direct_permission_allows_create(self, client, make_user, auth_headers):
        user = make_user(roles=["user"], permissions=["create systems"])
        res = client.post(
            "/api/v1/systems", json={"name": "HR", "description": "x"}, headers=auth_headers(user),
        )
        assert res.status_code == 201

    def test_user_without_roles_sees_nothing(self, client, make_user, auth_headers):
        user = make_user()
        assert client.get("/api/v1/systems", headers=auth_headers(user)).status_code == 403

    def test_role_change_applies_on_next_request(self, client, make_user, auth_headers, rbac):
        user = make_user(roles=["user"])
        headers = auth_headers(user)
        body = {"name": "HR", "description": "x"}
        assert client.post("/api/v1/systems", json=body, headers=headers).status_code == 403

        perm = Permission.query.filter_by(name="create systems").one()
        db.session.add(RolePermission(role_id=rbac["user"].id, permission_id=perm.id))
        db.session.commit()
        assert client.post("/api/v1/systems", json=body, headers=headers).status_code == 201


class TestPermissionService:
    def test_effective_permissions_union(self, make_user):
        user = make_user(roles=["user"], permissions=["delete tasks"])
        perms = get_user_permissions(user.id)
        assert "view systems" in perms
        assert "delete tasks" in perms
        assert "create systems" not in perms

    def test_admin_has_everything(self, admin):
        assert has_permission(admin.id, "manage users")
        assert has_permission(admin.id, "delete correspondences")

    def test_manager_cannot_manage_users(self, make_user):
        user = make_user(roles=["manager"])
        assert has_permission(user.id, "edit systems")
        assert not has_permission(user.id, "manage users")

    def test_seeding_is_idempotent(self, rbac):
        assert seed_permissions() == 0
        assert seed_roles() == (0, 0)
        assert Role.query.count() == 3
