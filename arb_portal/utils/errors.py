"""Standardised API error responses.

Usage
-----
    from arb_portal.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "ArbRequest not found")
    return api_error(E.VALIDATION_REQUIRED, "description is required")
    return api_error(E.NOT_ELIGIBLE, "Owner cannot vote", details={"reason": "owner"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    # ARB workflow
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    NOT_ELIGIBLE = "ERR_NOT_ELIGIBLE"
    WRONG_STAGE = "ERR_WRONG_STAGE"
    ALREADY_RESOLVED = "ERR_ALREADY_RESOLVED"
    DEADLOCKED = "ERR_DEADLOCKED"
    STORAGE_CONFLICT = "ERR_STORAGE_CONFLICT"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.INVALID_TRANSITION: 409,
    E.NOT_ELIGIBLE: 403,
    E.WRONG_STAGE: 409,
    E.ALREADY_RESOLVED: 409,
    E.DEADLOCKED: 409,
    E.STORAGE_CONFLICT: 503,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (recusal reason, transition endpoints, etc.).

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

    return jsonify(body), http_status
