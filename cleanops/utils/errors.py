"""Standardised API error responses.

Usage
-----
    from cleanops.utils.errors import api_error, result_error, E

    return api_error(E.NOT_FOUND, "Activity not found")

    result = publish_activity(activity_id, assignments, actor)
    if not result.ok:
        return result_error(result)
"""

from __future__ import annotations

from flask import jsonify

from cleanops.core.results import Reason, TransitionResult


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • transition failures reuse the lifecycle Reason value as their code
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authentication – HTTP 401
    UNAUTHORIZED = "ERR_UNAUTHORIZED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500 / 503
    INTERNAL = "ERR_INTERNAL"
    UNAVAILABLE = "ERR_UNAVAILABLE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
    E.UNAVAILABLE: 503,
}

# Transition failure reason → HTTP status. Anything unlisted is a state
# precondition and maps to 409.
_REASON_STATUS: dict[str, int] = {
    Reason.VALIDATION: 400,
    Reason.FORBIDDEN: 403,
    Reason.NOT_ASSIGNED: 403,
    Reason.NOT_FOUND: 404,
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
        Extra structured payload (offending item ids, current status, etc.).

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


def result_status(reason: str | None) -> int:
    """HTTP status for a transition failure reason."""
    return _REASON_STATUS.get(reason, 409)


def result_error(result: TransitionResult):
    """Turn a failed TransitionResult into a JSON error response."""
    return api_error(
        result.reason or E.CONFLICT_STATE,
        result.message,
        status=result_status(result.reason),
        details=result.details,
    )
