"""
JWT Auth Middleware — parses the Bearer token, sets g.jwt_user_id / g.current_user.

Requests without a valid token leave both unset (None); the permission
decorators turn that into a 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from tracker.models import db
from tracker.models.auth import User
from tracker.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.current_user = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            user_id = int(payload.get("sub"))
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except (pyjwt.InvalidTokenError, TypeError, ValueError):
            logger.info("Invalid access token on %s", path)
            return

        user = db.session.get(User, user_id)
        if user is None:
            return
        g.jwt_user_id = user.id
        g.current_user = user
