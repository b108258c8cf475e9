"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in cleanops/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from cleanops.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "120/minute"
READ_LIMIT = "300/minute"


def rate_limit_key():
    """Rate limit key: the authenticated user if known, else remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"user:{actor.org_id}:{actor.user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per user, falling back to remote IP):
        - Lifecycle endpoints: 120/minute (workers tap through checklists fast)
        - Reporting:           300/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("activities", "activity_templates", "deficiencies", "checklists", "notifications"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("reporting")
    if bp:
        limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: lifecycle: %s, reporting: %s", WRITE_LIMIT, READ_LIMIT)
