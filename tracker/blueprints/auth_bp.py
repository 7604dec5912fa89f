"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login       — Email + password → access token
  GET  /api/v1/auth/me          — Current user with roles and effective permissions
"""

from flask import Blueprint, g, jsonify

from tracker.blueprints import request_data
from tracker.middleware.permission_required import require_auth
from tracker.services.jwt_service import token_response
from tracker.services.permission_service import get_user_permissions
from tracker.services.user_service import authenticate_user

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return an access token.

    Body: { "email": "...", "password": "..." }
    """
    data = request_data()
    email = str(data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    user = authenticate_user(email, password)
    body = token_response(user.id, user.role_names)
    body["user"] = user.to_dict(include_roles=True)
    return jsonify(body), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    user = g.current_user
    data = user.to_dict(include_roles=True, include_permissions=True)
    data["effective_permissions"] = sorted(get_user_permissions(user.id))
    return jsonify(data), 200
