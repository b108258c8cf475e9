"""
Discriminated success/failure result for lifecycle transitions.

Every transition in services/activity_lifecycle.py,
services/room_task_lifecycle.py and services/deficiency_tracker.py returns a
TransitionResult instead of raising for expected domain conditions.

Usage:
    result = publish_activity(activity_id, assignments, actor)
    if not result.ok:
        if result.reason == Reason.EMPTY_ASSIGNMENT:
            ...
    activity = result.entity
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class Reason:
    """Machine-readable failure reasons.

    Grouped by the error taxonomy the transport layer maps to HTTP status
    (see utils/errors.py).
    """

    # Validation
    VALIDATION = "validation_error"

    # Authorization
    FORBIDDEN = "authorization_error"
    NOT_ASSIGNED = "not_assigned"

    # Lookup
    NOT_FOUND = "not_found"

    # Lost compare-and-swap race
    CONFLICT = "conflict"

    # State preconditions
    INVALID_TRANSITION = "invalid_transition"
    EMPTY_ASSIGNMENT = "empty_assignment"
    INCOMPLETE_TASKS = "incomplete_tasks"
    NO_CHECKLIST_CONFIGURED = "no_checklist_configured"
    UNKNOWN_ITEM = "unknown_item"
    MISSING_REQUIRED_EVIDENCE = "missing_required_evidence"
    ALREADY_INSPECTED = "already_inspected"
    NOT_READY_FOR_INSPECTION = "not_ready_for_inspection"
    DUPLICATE_OPEN_DEFICIENCY = "duplicate_open_deficiency"
    ALREADY_RESOLVED = "already_resolved"


@dataclass
class TransitionResult:
    """Outcome of a lifecycle operation.

    ok=True carries the mutated entity and an informational message;
    ok=False carries a Reason constant, a message and structured details.
    """

    ok: bool
    reason: str | None = None
    message: str = ""
    entity: Any = None
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, entity=None, message: str = "", **details) -> TransitionResult:
        return cls(ok=True, entity=entity, message=message, details=details)

    @classmethod
    def failure(cls, reason: str, message: str, **details) -> TransitionResult:
        return cls(ok=False, reason=reason, message=message, details=details)

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> dict:
        result = {"ok": self.ok, "message": self.message}
        if self.reason:
            result["reason"] = self.reason
        if self.details:
            result["details"] = self.details
        return result
