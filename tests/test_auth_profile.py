"""
Login, /me and the signed-in user's own profile settings.
"""

from tracker.models import db
from tracker.models.audit import ActivityLog
from tracker.models.auth import User
from tracker.utils.crypto import verify_password


# ═════════════════════════════════════════════════════════════════════════════
# LOGIN
# ═════════════════════════════════════════════════════════════════════════════


class TestLogin:
    def test_login_returns_token(self, client, viewer):
        res = client.post(
            "/api/v1/auth/login", json={"email": "Viewer@Example.com", "password": "password123"},
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["token_type"] == "Bearer"
        assert body["user"]["email"] == "viewer@example.com"

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert "view systems" in me.get_json()["effective_permissions"]

    def test_wrong_password_is_401(self, client, viewer):
        res = client.post("/api/v1/auth/login", json={"email": "viewer@example.com", "password": "nope"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid email or password"

    def test_missing_fields_is_400(self, client):
        assert client.post("/api/v1/auth/login", json={"email": "x@example.com"}).status_code == 400

    def test_me_requires_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401


# ═════════════════════════════════════════════════════════════════════════════
# PROFILE
# ═════════════════════════════════════════════════════════════════════════════


class TestProfile:
    def test_show(self, client, viewer_headers):
        res = client.get("/api/v1/settings/profile", headers=viewer_headers)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["user"]["email"] == "viewer@example.com"
        assert data["can_manage_users"] is False

    def test_email_change_clears_verification(self, client, viewer, viewer_headers):
        viewer.email_verified_at = db.func.now()
        db.session.commit()

        res = client.patch(
            "/api/v1/settings/profile",
            json={"name": "Vee", "email": "vee@example.com"},
            headers=viewer_headers,
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["email"] == "vee@example.com"
        assert data["email_verified_at"] is None
        assert ActivityLog.query.filter_by(description="Profile updated").count() == 1

    def test_same_email_keeps_verification(self, client, viewer, viewer_headers):
        viewer.email_verified_at = db.func.now()
        db.session.commit()

        res = client.patch(
            "/api/v1/settings/profile",
            json={"name": "Vee", "email": "viewer@example.com"},
            headers=viewer_headers,
        )
        assert res.get_json()["data"]["email_verified_at"] is not None

    def test_email_taken_by_other_user(self, client, admin, viewer_headers):
        res = client.patch(
            "/api/v1/settings/profile",
            json={"name": "Vee", "email": "admin@example.com"},
            headers=viewer_headers,
        )
        assert res.status_code == 422


class TestPassword:
    def test_change_password(self, client, viewer, viewer_headers):
        res = client.put(
            "/api/v1/settings/password",
            json={
                "current_password": "password123",
                "password": "new-password-1",
                "password_confirmation": "new-password-1",
            },
            headers=viewer_headers,
        )
        assert res.status_code == 200
        db.session.expire_all()
        assert verify_password("new-password-1", db.session.get(User, viewer.id).password_hash)

    def test_wrong_current_password(self, client, viewer_headers):
        res = client.put(
            "/api/v1/settings/password",
            json={
                "current_password": "guess",
                "password": "new-password-1",
                "password_confirmation": "new-password-1",
            },
            headers=viewer_headers,
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["details"]["current_password"] == ["The password is incorrect."]
        assert "current_password" not in body["old_input"]


class TestDeleteAccount:
    def test_requires_password(self, client, viewer_headers):
        res = client.delete("/api/v1/settings/profile", json={}, headers=viewer_headers)
        assert res.status_code == 422

    def test_wrong_password(self, client, viewer, viewer_headers):
        res = client.delete("/api/v1/settings/profile", json={"password": "nope"}, headers=viewer_headers)
        assert res.status_code == 422
        assert db.session.get(User, viewer.id) is not None

    def test_delete_account(self, client, viewer, viewer_headers):
        viewer_id = viewer.id
        res = client.delete(
            "/api/v1/settings/profile", json={"password": "password123"}, headers=viewer_headers,
        )
        assert res.status_code == 200
        assert db.session.get(User, viewer_id) is None
        assert client.get("/api/v1/auth/me", headers=viewer_headers).status_code == 401
