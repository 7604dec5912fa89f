"""Standardised API responses.

Usage
-----
    from tracker.utils.errors import api_error, api_success, E

    return api_error(E.NOT_FOUND, "System not found")
    return api_error(E.VALIDATION_INVALID, "The given data was invalid.", details=errors)
    return api_success(system.to_dict(), "System created successfully.", status=201)
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_QUERY = "ERR_INVALID_QUERY"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Request – HTTP 405 / 429
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    TRANSACTION = "ERR_TRANSACTION"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.INVALID_QUERY: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.TRANSACTION: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    old_input: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation, shown to the user as a flash message.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Field-keyed messages or other structured payload.
    old_input : dict, optional
        The submitted payload so a client can re-display its form.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details
    if old_input is not None:
        body["old_input"] = old_input

    return jsonify(body), http_status


def api_success(data=None, message: str = "Success", *, status: int = 200):
    """Return the standard success envelope ``{success, message, data}``."""
    return jsonify({"success": True, "message": message, "data": data}), status
