"""
Shared pytest fixtures for the Systems Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - rbac: Seeded permissions + admin/manager/user roles
    - make_user: factory for users with chosen roles / direct permissions
    - auth_headers: JWT Authorization header for a user
    - admin / admin_headers, viewer / viewer_headers
"""

import pytest

from tracker import create_app
from tracker.models import db as _db
from tracker.models.auth import Permission, Role, User, UserPermission, UserRole
from tracker.services.jwt_service import generate_access_token
from tracker.services.permission_service import seed_permissions, seed_roles
from tracker.utils.crypto import hash_password

DEFAULT_PASSWORD = "password123"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── RBAC fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def rbac():
    """Seed the permission catalogue and the default roles."""
    seed_permissions()
    seed_roles()
    _db.session.commit()
    return {r.name: r for r in Role.query.all()}


@pytest.fixture()
def make_user(rbac):
    """Factory: ``make_user("ann@example.com", roles=["user"], permissions=["create systems"])``."""
    counter = {"n": 0}

    def _make(email=None, *, name=None, roles=(), permissions=(), password=DEFAULT_PASSWORD):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user = User(
            name=name or email.split("@")[0].title(),
            email=email,
            password_hash=hash_password(password),
        )
        _db.session.add(user)
        _db.session.flush()
        for role_name in roles:
            _db.session.add(UserRole(user_id=user.id, role_id=rbac[role_name].id))
        for perm_name in permissions:
            perm = Permission.query.filter_by(name=perm_name).one()
            _db.session.add(UserPermission(user_id=user.id, permission_id=perm.id))
        _db.session.commit()
        return user

    return _make


def _auth_headers(user):
    """Generate JWT Authorization header."""
    token = generate_access_token(user.id, user.role_names)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers():
    return _auth_headers


@pytest.fixture()
def admin(make_user):
    return make_user("admin@example.com", name="Admin", roles=["admin"])


@pytest.fixture()
def admin_headers(admin):
    return _auth_headers(admin)


@pytest.fixture()
def viewer(make_user):
    return make_user("viewer@example.com", name="Viewer", roles=["user"])


@pytest.fixture()
def viewer_headers(viewer):
    return _auth_headers(viewer)


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def system(client, admin_headers):
    """Create and return a System via the API."""
    res = client.post(
        "/api/v1/systems",
        json={"name": "Billing", "description": "Invoices and payments"},
        headers=admin_headers,
    )
    assert res.status_code == 201
    return res.get_json()["data"]


@pytest.fixture()
def process(client, admin_headers, system):
    res = client.post(
        "/api/v1/processes",
        json={"system_id": system["id"], "name": "Invoice run", "description": "Monthly run"},
        headers=admin_headers,
    )
    assert res.status_code == 201
    return res.get_json()["data"]


@pytest.fixture()
def functions_requirement(client, admin_headers, process):
    res = client.post(
        "/api/v1/functions-requirements",
        json={
            "process_id": process["id"],
            "name": "Generate PDF",
            "requirement": "Every invoice has a PDF copy",
            "planned_start_date": "2025-01-01",
            "planned_end_date": "2025-01-31",
        },
        headers=admin_headers,
    )
    assert res.status_code == 201
    return res.get_json()["data"]


@pytest.fixture()
def tasks_tracking(client, admin_headers, functions_requirement):
    res = client.post(
        "/api/v1/tasks-tracking",
        json={
            "function_id": functions_requirement["id"],
            "correspondence": "Kick-off mail",
            "actual_start_date": "2025-01-02",
            "actual_end_date": "2025-01-10",
            "status": "pending",
        },
        headers=admin_headers,
    )
    assert res.status_code == 201
    return res.get_json()["data"]


@pytest.fixture()
def correspondence(client, admin_headers, tasks_tracking):
    res = client.post(
        "/api/v1/correspondences",
        json={"task_id": tasks_tracking["id"], "type": "email", "reference": "REF-001"},
        headers=admin_headers,
    )
    assert res.status_code == 201
    return res.get_json()["data"]
