"""
JWT Auth Middleware — Parses the Bearer token and sets ``g.actor``.

Every /api/v1 route except health requires a valid access token. The
resulting Actor (user id, role, organisation) is what blueprints hand to the
lifecycle services; nothing downstream reads request headers.

    Authorization: Bearer <token>   →  g.actor = Actor(sub, role, org_id)
"""

import logging

import jwt as pyjwt
from flask import g, request

from cleanops.services.jwt_service import actor_from_claims, decode_access_token
from cleanops.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHORIZED, "Bearer token required")

        token = auth_header[7:]  # Strip "Bearer "
        try:
            payload = decode_access_token(token)
            g.actor = actor_from_claims(payload)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHORIZED, "Token expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected token on %s: %s", path, exc)
            return api_error(E.UNAUTHORIZED, "Invalid token")
        return None
