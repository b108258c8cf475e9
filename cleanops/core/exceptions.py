"""
Service-wide exception hierarchy.

Lifecycle transitions report expected domain failures through
``TransitionResult`` (see core/results.py). The exceptions here cover the
remaining cases: CRUD helpers rejecting input, scoped lookups that miss, and
infrastructure failures that the transport layer turns into a generic error.

Usage:
    from cleanops.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Activity", resource_id=42)
    raise ValidationError("name is required", details={"name": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-organisation access
    attempts; the two are indistinguishable to the caller.

    Args:
        resource: Human-readable model/entity name (e.g. "Activity", "RoomTask").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        org_id: Optional, the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        org_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.org_id = org_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if org_id is not None:
            msg += f" (org={org_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a field-level rule.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InfrastructureError(Exception):
    """Raised when the entity store is unavailable or times out.

    The original driver exception is chained (``raise ... from exc``).
    Maps to HTTP 503; callers may retry with backoff.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Store unavailable during {operation}")
