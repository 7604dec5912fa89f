"""
User Service — accounts, role/permission assignment, profile and login.

Every mutation writes an activity row ("User created", "Role assigned to
user", ...).  Single role/permission assignment on the settings screen is
idempotent: granting something already held, or removing something not
held, changes nothing and logs nothing.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import or_

from tracker.core.exceptions import InvalidQueryError, NotFoundError, ValidationError
from tracker.models import db
from tracker.models.audit import write_activity
from tracker.models.auth import Permission, Role, RolePermission, User, UserPermission, UserRole
from tracker.services.query_builder import paginate
from tracker.services.resource_service import run_in_transaction
from tracker.services.validation import Field, Validator
from tracker.utils.crypto import hash_password, verify_password
from tracker.utils.helpers import old_input, to_db_int

logger = logging.getLogger(__name__)

USER_SORTS = ("id", "name", "email", "created_at", "updated_at")


class UserServiceError(Exception):
    """Custom exception for user service errors."""
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# Validators
# ═══════════════════════════════════════════════════════════════
_ROLE_LIST = dict(
    kind="list", each_exists=(Role, "name"),
    messages={"array": "The roles must be an array.", "exists": "The selected role is invalid."},
)
_PERMISSION_LIST = dict(
    kind="list", each_exists=(Permission, "name"),
    messages={
        "array": "The permissions must be an array.",
        "exists": "The selected permission is invalid.",
    },
)


def _user_fields(password_required: bool) -> tuple:
    return (
        Field("name", "user name", required=True, max_length=255),
        Field("email", "email address", required=True, kind="email", max_length=255,
              unique=(User, "email")),
        Field("password", "password", required=password_required, min_length=8, confirmed=True),
        Field("email_verified", "email verified", kind="boolean"),
        Field("roles", "roles", **_ROLE_LIST),
        Field("permissions", "permissions", **_PERMISSION_LIST),
    )


store_user_validator = Validator(_user_fields(password_required=True))
update_user_validator = Validator(_user_fields(password_required=False))

assign_roles_validator = Validator((
    Field("roles", "roles", required=True, **dict(
        _ROLE_LIST, messages=dict(_ROLE_LIST["messages"], required="At least one role must be selected."),
    )),
))
role_permissions_validator = Validator((
    Field("permissions", "permissions", required=True, **dict(
        _PERMISSION_LIST,
        messages=dict(_PERMISSION_LIST["messages"], required="At least one permission must be selected."),
    )),
))

single_role_validator = Validator((
    Field("role", required=True),
))
single_permission_validator = Validator((
    Field("permission", required=True),
))
bulk_role_validator = Validator((
    Field("user_ids", "user ids", required=True, kind="list", each_exists=(User, "id")),
    Field("role", required=True),
))

profile_validator = Validator((
    Field("name", required=True, max_length=255),
    Field("email", required=True, kind="email", max_length=255, unique=(User, "email")),
))
password_validator = Validator((
    Field("current_password", "current password", required=True),
    Field("password", required=True, min_length=8, confirmed=True),
))


def _now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════
def get_user(user_id) -> User:
    try:
        user = db.session.get(User, to_db_int(user_id))
    except (TypeError, ValueError):
        user = None
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def get_role(role_id) -> Role:
    try:
        role = db.session.get(Role, to_db_int(role_id))
    except (TypeError, ValueError):
        role = None
    if role is None:
        raise NotFoundError("Role", role_id)
    return role


def _role_named(name: str, data: dict, field: str = "role") -> Role:
    role = Role.query.filter_by(name=name).first()
    if role is None:
        raise ValidationError(
            "The given data was invalid.",
            details={field: [f"The selected {field} is invalid."]},
            old_input=old_input(data),
        )
    return role


def _permission_named(name: str, data: dict) -> Permission:
    permission = Permission.query.filter_by(name=name).first()
    if permission is None:
        raise ValidationError(
            "The given data was invalid.",
            details={"permission": ["The selected permission is invalid."]},
            old_input=old_input(data),
        )
    return permission


def list_roles() -> list[dict]:
    return [r.to_dict(include_permissions=True) for r in Role.query.order_by(Role.name).all()]


def list_permissions() -> list[dict]:
    return [p.to_dict() for p in Permission.query.order_by(Permission.name).all()]


def list_users(args, per_page: int):
    """Users filtered by ``search`` (name/email) and ``role``, sorted by ``sort_by``."""
    query = User.query
    search = (args.get("search") or "").strip()
    if search:
        query = query.filter(or_(User.name.ilike(f"%{search}%"), User.email.ilike(f"%{search}%")))
    role = (args.get("role") or "").strip()
    if role:
        query = query.filter(User.roles.any(Role.name == role))

    sort_by = args.get("sort_by")
    if sort_by:
        if sort_by not in USER_SORTS:
            raise InvalidQueryError(
                f"Requested sort(s) `{sort_by}` is not allowed. "
                f"Allowed sort(s) are `{', '.join(USER_SORTS)}`.",
                allowed=list(USER_SORTS),
            )
        column = getattr(User, sort_by)
        query = query.order_by(column.desc() if args.get("sort_direction") == "desc" else column.asc())
    else:
        query = query.order_by(User.created_at.desc(), User.id.desc())
    return paginate(query, args, per_page)


def permission_breakdown(user: User) -> dict:
    """Permissions a user holds via roles versus direct grants."""
    via_roles = sorted({p.name for r in user.roles for p in r.permissions})
    return {
        "user": user.to_dict(include_roles=True),
        "permissions_via_roles": via_roles,
        "direct_permissions": user.direct_permission_names,
    }


# ═══════════════════════════════════════════════════════════════
# Grants (flush only; callers own the transaction)
# ═══════════════════════════════════════════════════════════════
def _sync_roles(user: User, names: list[str], assigned_by: int | None) -> None:
    wanted = {r.id: r for r in Role.query.filter(Role.name.in_(names)).all()} if names else {}
    for link in user.user_roles.all():
        if link.role_id not in wanted:
            db.session.delete(link)
        else:
            wanted.pop(link.role_id)
    for role_id in wanted:
        db.session.add(UserRole(user_id=user.id, role_id=role_id, assigned_by=assigned_by))


def _sync_permissions(user: User, names: list[str], assigned_by: int | None) -> None:
    wanted = (
        {p.id: p for p in Permission.query.filter(Permission.name.in_(names)).all()} if names else {}
    )
    for link in user.user_permissions.all():
        if link.permission_id not in wanted:
            db.session.delete(link)
        else:
            wanted.pop(link.permission_id)
    for permission_id in wanted:
        db.session.add(UserPermission(user_id=user.id, permission_id=permission_id, assigned_by=assigned_by))


def _has_role(user: User, role: Role) -> bool:
    return user.user_roles.filter_by(role_id=role.id).first() is not None


def _has_direct_permission(user: User, permission: Permission) -> bool:
    return user.user_permissions.filter_by(permission_id=permission.id).first() is not None


def _user_activity(description: str, user: User, causer_id: int | None, properties: dict | None = None):
    write_activity(
        description,
        subject_type="user",
        subject_id=user.id,
        causer_id=causer_id,
        properties=properties,
    )


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(data: dict, *, acting_user_id: int) -> User:
    clean = store_user_validator.validate(data)

    def _do():
        user = User(
            name=clean["name"],
            email=clean["email"],
            password_hash=hash_password(clean["password"]),
            email_verified_at=_now() if clean.get("email_verified") else None,
        )
        db.session.add(user)
        db.session.flush()
        if clean.get("roles"):
            _sync_roles(user, clean["roles"], acting_user_id)
        if clean.get("permissions"):
            _sync_permissions(user, clean["permissions"], acting_user_id)
        db.session.flush()
        _user_activity("User created", user, acting_user_id)
        return user

    user = run_in_transaction("create", "user", data, _do)
    logger.info("User created id=%s", user.id,
                extra={"resource": "user", "resource_id": user.id, "user_id": acting_user_id,
                       "action": "created"})
    return user


def update_user(user: User, data: dict, *, acting_user_id: int) -> User:
    clean = update_user_validator.validate(data, instance=user)

    def _do():
        user.name = clean["name"]
        user.email = clean["email"]
        user.email_verified_at = (user.email_verified_at or _now()) if clean.get("email_verified") else None
        if clean.get("password"):
            user.password_hash = hash_password(clean["password"])
        if "roles" in clean:
            _sync_roles(user, clean["roles"] or [], acting_user_id)
        if "permissions" in clean:
            _sync_permissions(user, clean["permissions"] or [], acting_user_id)
        db.session.flush()
        _user_activity("User updated", user, acting_user_id)
        return user

    run_in_transaction("update", "user", data, _do)
    logger.info("User updated id=%s", user.id,
                extra={"resource": "user", "resource_id": user.id, "user_id": acting_user_id,
                       "action": "updated"})
    return user


def delete_user(user: User, *, acting_user_id: int) -> None:
    if user.id == acting_user_id:
        raise UserServiceError("You cannot delete your own account.", 400)
    user_id = user.id

    def _do():
        _user_activity("User deleted", user, acting_user_id)
        db.session.delete(user)
        db.session.flush()

    run_in_transaction("delete", "user", {}, _do)
    logger.info("User deleted id=%s", user_id,
                extra={"resource": "user", "resource_id": user_id, "user_id": acting_user_id,
                       "action": "deleted"})


# ═══════════════════════════════════════════════════════════════
# Role Management
# ═══════════════════════════════════════════════════════════════
def assign_roles(user: User, data: dict, *, acting_user_id: int) -> User:
    """Add every role in ``roles``; roles already held are kept."""
    clean = assign_roles_validator.validate(data)

    def _do():
        for role in Role.query.filter(Role.name.in_(clean["roles"])).all():
            if not _has_role(user, role):
                db.session.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=acting_user_id))
        db.session.flush()
        _user_activity("Roles assigned to user", user, acting_user_id, {"roles": clean["roles"]})
        return user

    return run_in_transaction("assign", "roles", data, _do)


def revoke_roles(user: User, data: dict, *, acting_user_id: int) -> User:
    clean = assign_roles_validator.validate(data)

    def _do():
        role_ids = [r.id for r in Role.query.filter(Role.name.in_(clean["roles"])).all()]
        user.user_roles.filter(UserRole.role_id.in_(role_ids)).delete(synchronize_session=False)
        db.session.flush()
        _user_activity("Roles revoked from user", user, acting_user_id, {"roles": clean["roles"]})
        return user

    return run_in_transaction("revoke", "roles", data, _do)


def give_permissions_to_role(role: Role, data: dict, *, acting_user_id: int) -> Role:
    clean = role_permissions_validator.validate(data)

    def _do():
        held = {rp.permission_id for rp in role.role_permissions.all()}
        for permission in Permission.query.filter(Permission.name.in_(clean["permissions"])).all():
            if permission.id not in held:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        db.session.flush()
        write_activity(
            "Permissions given to role",
            subject_type="role", subject_id=role.id, causer_id=acting_user_id,
            properties={"permissions": clean["permissions"]},
        )
        return role

    return run_in_transaction("assign", "permissions", data, _do)


def revoke_permissions_from_role(role: Role, data: dict, *, acting_user_id: int) -> Role:
    clean = role_permissions_validator.validate(data)

    def _do():
        ids = [p.id for p in Permission.query.filter(Permission.name.in_(clean["permissions"])).all()]
        role.role_permissions.filter(RolePermission.permission_id.in_(ids)).delete(synchronize_session=False)
        db.session.flush()
        write_activity(
            "Permissions revoked from role",
            subject_type="role", subject_id=role.id, causer_id=acting_user_id,
            properties={"permissions": clean["permissions"]},
        )
        return role

    return run_in_transaction("revoke", "permissions", data, _do)


# ═══════════════════════════════════════════════════════════════
# Single grants (settings screen)
# ═══════════════════════════════════════════════════════════════
def assign_role(user: User, data: dict, *, acting_user_id: int) -> bool:
    """Grant one role. Returns False (and logs nothing) when already held."""
    clean = single_role_validator.validate(data)
    role = _role_named(clean["role"], data)
    if _has_role(user, role):
        return False

    def _do():
        db.session.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=acting_user_id))
        db.session.flush()
        _user_activity("Role assigned to user", user, acting_user_id,
                       {"role": role.name, "action": "assigned"})

    run_in_transaction("assign", "role", data, _do)
    logger.info("Role %s assigned to user id=%s", role.name, user.id,
                extra={"resource": "user", "resource_id": user.id, "user_id": acting_user_id})
    return True


def remove_role(user: User, data: dict, *, acting_user_id: int) -> bool:
    """Remove one role. Returns False (and logs nothing) when not held."""
    clean = single_role_validator.validate(data)
    role = _role_named(clean["role"], data)
    if not _has_role(user, role):
        return False

    def _do():
        user.user_roles.filter_by(role_id=role.id).delete(synchronize_session=False)
        db.session.flush()
        _user_activity("Role removed from user", user, acting_user_id,
                       {"role": role.name, "action": "removed"})

    run_in_transaction("remove", "role", data, _do)
    logger.info("Role %s removed from user id=%s", role.name, user.id,
                extra={"resource": "user", "resource_id": user.id, "user_id": acting_user_id})
    return True


def assign_permission(user: User, data: dict, *, acting_user_id: int) -> bool:
    clean = single_permission_validator.validate(data)
    permission = _permission_named(clean["permission"], data)
    if _has_direct_permission(user, permission):
        return False

    def _do():
        db.session.add(UserPermission(user_id=user.id, permission_id=permission.id, assigned_by=acting_user_id))
        db.session.flush()
        _user_activity("Permission assigned to user", user, acting_user_id,
                       {"permission": permission.name, "action": "assigned"})

    run_in_transaction("assign", "permission", data, _do)
    return True


def remove_permission(user: User, data: dict, *, acting_user_id: int) -> bool:
    clean = single_permission_validator.validate(data)
    permission = _permission_named(clean["permission"], data)
    if not _has_direct_permission(user, permission):
        return False

    def _do():
        user.user_permissions.filter_by(permission_id=permission.id).delete(synchronize_session=False)
        db.session.flush()
        _user_activity("Permission removed from user", user, acting_user_id,
                       {"permission": permission.name, "action": "removed"})

    run_in_transaction("remove", "permission", data, _do)
    return True


def bulk_assign_role(data: dict, *, acting_user_id: int) -> int:
    """Grant one role to many users; returns how many actually gained it."""
    clean = bulk_role_validator.validate(data)
    role = _role_named(clean["role"], data)
    user_ids = {to_db_int(i) for i in clean["user_ids"]}

    def _do():
        assigned = 0
        for user in User.query.filter(User.id.in_(user_ids)).order_by(User.id).all():
            if _has_role(user, role):
                continue
            db.session.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=acting_user_id))
            _user_activity("Role bulk assigned to user", user, acting_user_id,
                           {"role": role.name, "action": "bulk_assigned"})
            assigned += 1
        db.session.flush()
        return assigned

    return run_in_transaction("assign", "role", data, _do)


# ═══════════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════════
def update_profile(user: User, data: dict) -> User:
    """Update name/email; a changed email clears ``email_verified_at``."""
    clean = profile_validator.validate(data, instance=user)

    def _do():
        if clean["email"] != user.email:
            user.email_verified_at = None
        user.name = clean["name"]
        user.email = clean["email"]
        db.session.flush()
        _user_activity("Profile updated", user, user.id)
        return user

    return run_in_transaction("update", "profile", data, _do)


def _require_current_password(user: User, data: dict, field: str) -> None:
    if not verify_password(data.get(field) or "", user.password_hash):
        raise ValidationError(
            "The given data was invalid.",
            details={field: ["The password is incorrect."]},
            old_input=old_input(data),
        )


def change_password(user: User, data: dict) -> None:
    clean = password_validator.validate(data)
    _require_current_password(user, data, "current_password")

    def _do():
        user.password_hash = hash_password(clean["password"])
        db.session.flush()
        _user_activity("Password updated", user, user.id)

    run_in_transaction("update", "password", data, _do)
    logger.info("Password changed for user id=%s", user.id, extra={"user_id": user.id})


def delete_account(user: User, data: dict) -> None:
    """Delete the caller's own account after re-checking their password."""
    if not (data or {}).get("password"):
        raise ValidationError(
            "The given data was invalid.",
            details={"password": ["The password field is required."]},
            old_input=old_input(data),
        )
    _require_current_password(user, data, "password")
    user_id = user.id

    def _do():
        _user_activity("Account deleted", user, None)
        db.session.delete(user)
        db.session.flush()

    run_in_transaction("delete", "account", {}, _do)
    logger.info("Account deleted id=%s", user_id, extra={"resource": "user", "resource_id": user_id})


# ═══════════════════════════════════════════════════════════════
# Seeding
# ═══════════════════════════════════════════════════════════════
def ensure_admin_user(email: str, password: str, name: str = "Administrator") -> tuple[User, bool]:
    """Return the user with ``email`` holding the admin role, creating it if needed.

    The second element is True when the account was created.  Flush only.
    """
    try:
        email = validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise UserServiceError(f"Invalid email: {e}")
    if len(password or "") < 8:
        raise UserServiceError("The password must be at least 8 characters.")

    role = Role.query.filter_by(name="admin").first()
    if role is None:
        raise UserServiceError("Role 'admin' not found; seed roles first", 404)

    user = User.query.filter_by(email=email).first()
    created = user is None
    if created:
        user = User(name=name, email=email, password_hash=hash_password(password), email_verified_at=_now())
        db.session.add(user)
        db.session.flush()
    if not _has_role(user, role):
        db.session.add(UserRole(user_id=user.id, role_id=role.id))
        db.session.flush()
    return user, created


# ═══════════════════════════════════════════════════════════════
# Login helpers
# ═══════════════════════════════════════════════════════════════
def authenticate_user(email: str, password: str) -> User:
    """Authenticate a user with email + password. Returns User on success."""
    email = (email or "").strip().lower()
    user = User.query.filter(db.func.lower(User.email) == email).first() if email else None
    if not user or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", email or "<blank>")
        raise UserServiceError("Invalid email or password", 401)
    return user
