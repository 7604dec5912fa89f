"""
Users Blueprint — user accounts, role assignment and role permissions.

Endpoints summary:
    USERS   /api/v1/users                               GET, POST
            /api/v1/users/<id>                          GET, PUT, PATCH, DELETE
            /api/v1/users/<id>/assign-role              POST    (body: roles[])
            /api/v1/users/<id>/revoke-role              DELETE  (body: roles[])

    ROLES   /api/v1/users/roles                         GET
            /api/v1/users/roles/<id>/give-permission    POST    (body: permissions[])
            /api/v1/users/roles/<id>/revoke-permission  DELETE  (body: permissions[])

    PERMS   /api/v1/users/permissions                   GET
"""

from flask import Blueprint, request

from tracker.blueprints import current_user_id, paginated_response, per_page, request_data
from tracker.middleware.permission_required import require_permission
from tracker.services import user_service
from tracker.utils.errors import api_success

users_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


def _with_grants(user):
    return user.to_dict(include_roles=True, include_permissions=True)


# ═══════════════════════════════════════════════════════════════════════════
#  USER CRUD
# ═══════════════════════════════════════════════════════════════════════════

@users_bp.route("", methods=["GET"])
@require_permission("view users")
def list_users():
    items, meta = user_service.list_users(request.args, per_page())
    return paginated_response(items, meta, _with_grants)


@users_bp.route("", methods=["POST"])
@require_permission("create users")
def create_user():
    user = user_service.create_user(request_data(), acting_user_id=current_user_id())
    return api_success(_with_grants(user), "User created successfully.", status=201)


@users_bp.route("/<int:user_id>", methods=["GET"])
@require_permission("view users")
def get_user(user_id):
    return api_success(_with_grants(user_service.get_user(user_id)))


@users_bp.route("/<int:user_id>", methods=["PUT", "PATCH"])
@require_permission("edit users")
def update_user(user_id):
    user = user_service.update_user(
        user_service.get_user(user_id), request_data(), acting_user_id=current_user_id(),
    )
    return api_success(_with_grants(user), "User updated successfully.")


@users_bp.route("/<int:user_id>", methods=["DELETE"])
@require_permission("delete users")
def delete_user(user_id):
    user_service.delete_user(user_service.get_user(user_id), acting_user_id=current_user_id())
    return api_success(None, "User deleted successfully.")


# ═══════════════════════════════════════════════════════════════════════════
#  ROLE ASSIGNMENT
# ═══════════════════════════════════════════════════════════════════════════

@users_bp.route("/<int:user_id>/assign-role", methods=["POST"])
@require_permission("assign roles")
def assign_role(user_id):
    user = user_service.assign_roles(
        user_service.get_user(user_id), request_data(), acting_user_id=current_user_id(),
    )
    return api_success(_with_grants(user), "Roles assigned successfully.")


@users_bp.route("/<int:user_id>/revoke-role", methods=["DELETE"])
@require_permission("assign roles")
def revoke_role(user_id):
    user = user_service.revoke_roles(
        user_service.get_user(user_id), request_data(), acting_user_id=current_user_id(),
    )
    return api_success(_with_grants(user), "Roles revoked successfully.")


# ═══════════════════════════════════════════════════════════════════════════
#  ROLES & PERMISSIONS
# ═══════════════════════════════════════════════════════════════════════════

@users_bp.route("/roles", methods=["GET"])
@require_permission("view users")
def list_roles():
    return api_success(user_service.list_roles())


@users_bp.route("/permissions", methods=["GET"])
@require_permission("view users")
def list_permissions():
    return api_success(user_service.list_permissions())


@users_bp.route("/roles/<int:role_id>/give-permission", methods=["POST"])
@require_permission("manage permissions")
def give_permission(role_id):
    role = user_service.give_permissions_to_role(
        user_service.get_role(role_id), request_data(), acting_user_id=current_user_id(),
    )
    return api_success(role.to_dict(include_permissions=True), "Permissions assigned to role successfully.")


@users_bp.route("/roles/<int:role_id>/revoke-permission", methods=["DELETE"])
@require_permission("manage permissions")
def revoke_permission(role_id):
    role = user_service.revoke_permissions_from_role(
        user_service.get_role(role_id), request_data(), acting_user_id=current_user_id(),
    )
    return api_success(role.to_dict(include_permissions=True), "Permissions revoked from role successfully.")
