"""
JWT Service — Access token generation and verification.

Access token: 8 hours (configurable via JWT_ACCESS_EXPIRES)
Algorithm:    HS256

Token payload:
{
    "sub": <user_id>,
    "role": "admin" | "supervisor" | "janitor" | "client",
    "org_id": <organisation id>,
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Tokens are issued by the identity service in front of this one;
``generate_access_token`` exists for that service's contract tests and for
local development.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from cleanops.services.permission import ROLES, Actor


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 28800     # 8 hours, one shift
ALGORITHM = "HS256"


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: str, role: str, org_id: int) -> str:
    """Generate an access token for one user in one organisation."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "org_id": org_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    return payload


def actor_from_claims(payload: dict) -> Actor:
    """Build the request Actor from verified token claims.

    Raises:
        jwt.InvalidTokenError: a required claim is missing or malformed.
    """
    user_id = payload.get("sub")
    role = payload.get("role")
    org_id = payload.get("org_id")
    if not user_id or not isinstance(user_id, str):
        raise jwt.InvalidTokenError("Token has no subject")
    if role not in ROLES:
        raise jwt.InvalidTokenError(f"Unknown role: {role!r}")
    if isinstance(org_id, bool) or not isinstance(org_id, int):
        raise jwt.InvalidTokenError("Token has no organisation")
    return Actor(user_id=user_id, role=role, org_id=org_id)
