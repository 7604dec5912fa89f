"""
Permission Decorators — JWT-aware RBAC decorators for route protection.

Usage:
    @bp.route("/systems", methods=["POST"])
    @require_permission("create systems")
    def create_system():
        ...

    @bp.route("/users", methods=["GET"])
    @require_any_permission("view users", "manage users")
    def list_users():
        ...

No authenticated user → 401.  Authenticated but missing the
permission → 403.  The view body never runs in either case.
"""

import functools
import logging

from flask import g

from tracker.services.permission_service import has_any_permission, has_permission
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _unauthenticated():
    return api_error(E.UNAUTHENTICATED, "Unauthenticated.")


def require_auth(f):
    """Decorator: require any authenticated user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "jwt_user_id", None) is None:
            return _unauthenticated()
        return f(*args, **kwargs)
    return decorated


def require_permission(name: str):
    """
    Decorator: require the JWT user to hold a specific permission.

    Args:
        name: Permission name, e.g. "edit systems"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return _unauthenticated()

            if not has_permission(user_id, name):
                logger.warning(
                    "User %d denied: missing permission '%s' on %s",
                    user_id, name, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "This action is unauthorized.", details={"required": name},
                )

            return f(*args, **kwargs)
        return decorated
    return decorator


def require_any_permission(*names: str):
    """
    Decorator: require the JWT user to hold at least ONE of the listed permissions.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return _unauthenticated()

            if not has_any_permission(user_id, list(names)):
                logger.warning(
                    "User %d denied: missing any of %s on %s",
                    user_id, names, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "This action is unauthorized.", details={"required_any": list(names)},
                )

            return f(*args, **kwargs)
        return decorated
    return decorator
