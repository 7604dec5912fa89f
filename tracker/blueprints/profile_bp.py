"""
Profile Blueprint — the signed-in user's own account.

  GET    /api/v1/settings/profile    — profile with roles and permission breakdown
  PATCH  /api/v1/settings/profile    — update name / email
  DELETE /api/v1/settings/profile    — delete account (body: password)
  PUT    /api/v1/settings/password   — change password (rate limited)
"""

from flask import Blueprint, g

from tracker.blueprints import request_data
from tracker.middleware.permission_required import require_auth
from tracker.services import user_service
from tracker.services.permission_service import has_permission
from tracker.utils.errors import api_success

profile_bp = Blueprint("profile", __name__, url_prefix="/api/v1/settings")


@profile_bp.route("/profile", methods=["GET"])
@require_auth
def show_profile():
    user = g.current_user
    data = user_service.permission_breakdown(user)
    data["available_roles"] = user_service.list_roles()
    data["available_permissions"] = user_service.list_permissions()
    data["can_manage_users"] = has_permission(user.id, "manage users")
    return api_success(data)


@profile_bp.route("/profile", methods=["PATCH"])
@require_auth
def update_profile():
    user = user_service.update_profile(g.current_user, request_data())
    return api_success(user.to_dict(), "Profile updated successfully.")


@profile_bp.route("/profile", methods=["DELETE"])
@require_auth
def delete_profile():
    user_service.delete_account(g.current_user, request_data())
    return api_success(None, "Account deleted successfully.")


@profile_bp.route("/password", methods=["PUT"])
@require_auth
def update_password():
    user_service.change_password(g.current_user, request_data())
    return api_success(None, "Password updated successfully.")
