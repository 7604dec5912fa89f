"""
Permission Service — DB-driven RBAC.

A user's effective permission set is the union of:
  - permissions granted to any role the user holds
  - permissions granted to the user directly

Evaluated on every call; there is no cache, so a grant or revoke is
visible to the very next request.
"""

import logging

from tracker.models import db
from tracker.models.auth import (
    Permission,
    Role,
    RolePermission,
    UserPermission,
    UserRole,
)

logger = logging.getLogger(__name__)

# ── Permission catalogue ─────────────────────────────────────────────────────

RESOURCE_PERMISSION_SUBJECTS = (
    "systems",
    "processes",
    "functions requirements",
    "tasks tracking",
    "correspondences",
    "tasks",
    "users",
)
CRUD_VERBS = ("view", "create", "edit", "delete")

ADMIN_PERMISSIONS = (
    "assign roles",
    "manage permissions",
    "manage users",
    "view activity logs",
    "view audits",
)

ALL_PERMISSIONS = tuple(
    f"{verb} {subject}" for subject in RESOURCE_PERMISSION_SUBJECTS for verb in CRUD_VERBS
) + ADMIN_PERMISSIONS

_HIERARCHY_SUBJECTS = RESOURCE_PERMISSION_SUBJECTS[:5]

DEFAULT_ROLES = {
    "admin": ALL_PERMISSIONS,
    "manager": tuple(
        f"{verb} {subject}" for subject in _HIERARCHY_SUBJECTS + ("tasks",) for verb in CRUD_VERBS
    ) + ("view activity logs", "view audits"),
    "user": tuple(f"view {subject}" for subject in _HIERARCHY_SUBJECTS)
    + ("view tasks", "create tasks", "edit tasks"),
}


def get_permissions_via_roles(user_id: int) -> set[str]:
    rows = (
        db.session.query(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def get_direct_permissions(user_id: int) -> set[str]:
    rows = (
        db.session.query(Permission.name)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .filter(UserPermission.user_id == user_id)
        .all()
    )
    return {r[0] for r in rows}


def get_user_permissions(user_id: int) -> set[str]:
    """Effective permissions: role grants ∪ direct grants."""
    return get_permissions_via_roles(user_id) | get_direct_permissions(user_id)


def has_permission(user_id: int, name: str) -> bool:
    return name in get_user_permissions(user_id)


def has_any_permission(user_id: int, names: list[str]) -> bool:
    return bool(get_user_permissions(user_id) & set(names))


# ═══════════════════════════════════════════════════════════════
# Seeding (idempotent)
# ═══════════════════════════════════════════════════════════════
def seed_permissions() -> int:
    """Create every catalogue permission that is missing; returns how many."""
    existing = {r[0] for r in db.session.query(Permission.name).all()}
    created = 0
    for name in ALL_PERMISSIONS:
        if name not in existing:
            db.session.add(Permission(name=name))
            created += 1
    db.session.flush()
    return created


def seed_roles() -> tuple[int, int]:
    """Create the default roles and top up their grants.

    Returns ``(roles_created, grants_added)``.  Grants a role already has
    beyond its default set are left alone.
    """
    permissions = {p.name: p for p in Permission.query.all()}
    created_roles = 0
    assigned = 0

    for role_name, names in DEFAULT_ROLES.items():
        role = Role.query.filter_by(name=role_name).first()
        if not role:
            role = Role(name=role_name)
            db.session.add(role)
            db.session.flush()
            created_roles += 1

        held = {rp.permission_id for rp in role.role_permissions.all()}
        for name in names:
            perm = permissions.get(name)
            if perm and perm.id not in held:
                db.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
                assigned += 1

    db.session.flush()
    logger.info("Seeded roles: %d created, %d grants added", created_roles, assigned)
    return created_roles, assigned
