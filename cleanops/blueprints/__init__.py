"""
Cleaning Operations Platform
Blueprint registry and shared route helpers.
"""

import logging

from flask import g, request

from cleanops.core.exceptions import ConflictError, InfrastructureError, NotFoundError, ValidationError
from cleanops.services.permission import PermissionDenied
from cleanops.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_actor():
    """The authenticated Actor set by the JWT middleware."""
    return g.actor


def register_error_handlers(bp):
    """Attach the service exception → JSON error mapping to a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(PermissionDenied)
    def _handle_forbidden(error: PermissionDenied):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(InfrastructureError)
    def _handle_unavailable(error: InfrastructureError):
        logger.error("Store unavailable in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.UNAVAILABLE, "Service temporarily unavailable, retry later")
