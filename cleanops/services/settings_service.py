"""
Organisation settings.

Only the inspection pass threshold lives here. Services never read it
themselves; the HTTP layer resolves it with ``get_pass_threshold`` and
passes it into close/evaluation/reporting calls.
"""

import logging

from flask import current_app

from cleanops.core.exceptions import NotFoundError, ValidationError
from cleanops.models import db
from cleanops.models.facility import DEFAULT_PASS_THRESHOLD, Organisation
from cleanops.services.helpers.store import commit_or_raise
from cleanops.services.permission import Actor, check_permission

logger = logging.getLogger(__name__)


def _organisation(org_id: int) -> Organisation:
    org = db.session.get(Organisation, org_id)
    if org is None:
        raise NotFoundError(resource="Organisation", resource_id=org_id)
    return org


def get_pass_threshold(org_id: int) -> int:
    """Organisation threshold, falling back to DEFAULT_PASS_THRESHOLD config."""
    org = db.session.get(Organisation, org_id)
    if org is not None and org.pass_threshold is not None:
        return org.pass_threshold
    return current_app.config.get("DEFAULT_PASS_THRESHOLD", DEFAULT_PASS_THRESHOLD)


def get_settings(org_id: int) -> dict:
    org = _organisation(org_id)
    return {"org_id": org.id, "pass_threshold": get_pass_threshold(org.id)}


def update_pass_threshold(actor: Actor, value) -> Organisation:
    """Set the organisation's pass threshold (admin only, integer 0–100).

    Raises:
        PermissionDenied, ValidationError, NotFoundError
    """
    check_permission(actor, "settings_update")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("pass_threshold must be an integer",
                              details={"pass_threshold": "invalid"})
    if not 0 <= value <= 100:
        raise ValidationError("pass_threshold must be between 0 and 100",
                              details={"pass_threshold": "out of range"})
    org = _organisation(actor.org_id)
    previous = org.pass_threshold
    org.pass_threshold = value
    commit_or_raise("update pass threshold")
    logger.info("Organisation %s pass_threshold %s → %s by=%s", org.id, previous, value, actor.user_id)
    return org
