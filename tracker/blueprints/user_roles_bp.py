"""
Settings user-roles blueprint — one-at-a-time role and permission grants.

All endpoints require ``manage users``.  Granting something already held,
or removing something not held, succeeds without writing an activity row.

    GET     /api/v1/settings/users                      index (search, page size 15)
    GET     /api/v1/settings/users/<id>                 permissions via roles vs direct
    POST    /api/v1/settings/users/<id>/roles           body: role
    DELETE  /api/v1/settings/users/<id>/roles           body: role
    POST    /api/v1/settings/users/<id>/permissions     body: permission
    DELETE  /api/v1/settings/users/<id>/permissions     body: permission
    POST    /api/v1/settings/users/bulk/assign-role     body: user_ids[], role
"""

from flask import Blueprint, request

from tracker.blueprints import current_user_id, paginated_response, per_page, request_data
from tracker.middleware.permission_required import require_permission
from tracker.services import user_service
from tracker.utils.errors import api_success

user_roles_bp = Blueprint("user_roles", __name__, url_prefix="/api/v1/settings/users")


@user_roles_bp.route("", methods=["GET"])
@require_permission("manage users")
def index():
    args = request.args.to_dict()
    # Settings screen offers search only
    args.pop("role", None)
    args.pop("sort_by", None)
    items, meta = user_service.list_users(args, per_page("SETTINGS_PER_PAGE"))
    return paginated_response(items, meta, lambda u: u.to_dict(include_roles=True, include_permissions=True))


@user_roles_bp.route("/<int:user_id>", methods=["GET"])
@require_permission("manage users")
def show(user_id):
    data = user_service.permission_breakdown(user_service.get_user(user_id))
    data["all_roles"] = user_service.list_roles()
    data["all_permissions"] = user_service.list_permissions()
    return api_success(data)


@user_roles_bp.route("/<int:user_id>/roles", methods=["POST"])
@require_permission("manage users")
def assign_role(user_id):
    user = user_service.get_user(user_id)
    data = request_data()
    user_service.assign_role(user, data, acting_user_id=current_user_id())
    return api_success(
        user_service.permission_breakdown(user), f"Role '{data['role']}' assigned to {user.name}.",
    )


@user_roles_bp.route("/<int:user_id>/roles", methods=["DELETE"])
@require_permission("manage users")
def remove_role(user_id):
    user = user_service.get_user(user_id)
    data = request_data()
    user_service.remove_role(user, data, acting_user_id=current_user_id())
    return api_success(
        user_service.permission_breakdown(user), f"Role '{data['role']}' removed from {user.name}.",
    )


@user_roles_bp.route("/<int:user_id>/permissions", methods=["POST"])
@require_permission("manage users")
def assign_permission(user_id):
    user = user_service.get_user(user_id)
    data = request_data()
    user_service.assign_permission(user, data, acting_user_id=current_user_id())
    return api_success(
        user_service.permission_breakdown(user),
        f"Permission '{data['permission']}' assigned to {user.name}.",
    )


@user_roles_bp.route("/<int:user_id>/permissions", methods=["DELETE"])
@require_permission("manage users")
def remove_permission(user_id):
    user = user_service.get_user(user_id)
    data = request_data()
    user_service.remove_permission(user, data, acting_user_id=current_user_id())
    return api_success(
        user_service.permission_breakdown(user),
        f"Permission '{data['permission']}' removed from {user.name}.",
    )


@user_roles_bp.route("/bulk/assign-role", methods=["POST"])
@require_permission("manage users")
def bulk_assign_role():
    data = request_data()
    assigned = user_service.bulk_assign_role(data, acting_user_id=current_user_id())
    return api_success({"assigned": assigned}, f"Role '{data['role']}' assigned to multiple users.")
