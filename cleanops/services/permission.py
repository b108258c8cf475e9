"""
Role-Based Access Control for the cleaning lifecycle.

The caller is always passed explicitly as an ``Actor``; nothing here reads
request-scoped state. The HTTP layer builds the Actor from the bearer token
(middleware/jwt_auth.py) and hands it to the services.

Usage:
    from cleanops.services.permission import Actor, check_permission, PermissionDenied

    actor = Actor(user_id="u-1", role="supervisor", org_id=1)

    # Raises PermissionDenied if not allowed
    check_permission(actor, "activity_publish")

    # Boolean check
    if has_permission(actor, "task_inspect"):
        ...
"""

from dataclasses import dataclass


ROLES = {"admin", "supervisor", "janitor", "client"}

SUPERVISOR_ROLES = frozenset({"admin", "supervisor"})

# action → roles allowed regardless of ownership.
# Worker actions (task start/record/complete) are ownership-based and are
# checked with is_assigned_worker() instead.
PERMISSION_MATRIX = {
    "activity_create":     SUPERVISOR_ROLES,
    "activity_update":     SUPERVISOR_ROLES,
    "activity_publish":    SUPERVISOR_ROLES,
    "activity_cancel":     SUPERVISOR_ROLES,
    "activity_close":      SUPERVISOR_ROLES,
    "activity_template_manage": SUPERVISOR_ROLES,
    "task_assign":         SUPERVISOR_ROLES,
    "task_inspect":        SUPERVISOR_ROLES,
    "deficiency_open":     SUPERVISOR_ROLES,
    "deficiency_reassign": SUPERVISOR_ROLES,
    "deficiency_resolve":  SUPERVISOR_ROLES,
    "deficiency_start":    SUPERVISOR_ROLES,
    "checklist_manage":    SUPERVISOR_ROLES,
    "report_view":         frozenset({"admin", "supervisor", "client"}),
    "settings_update":     frozenset({"admin"}),
}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: who they are, what role, which organisation."""
    user_id: str
    role: str
    org_id: int


class PermissionDenied(Exception):
    """Raised when an actor lacks the required permission for an action."""

    def __init__(self, user_id: str, action: str):
        super().__init__(f"User {user_id} does not have permission for '{action}'")
        self.user_id = user_id
        self.action = action


def has_permission(actor: Actor, action: str) -> bool:
    """
    Check if the actor's role grants an action.

    Unknown actions are denied.
    """
    allowed = PERMISSION_MATRIX.get(action)
    if not allowed:
        return False
    return actor.role in allowed


def check_permission(actor: Actor, action: str) -> None:
    """Raise PermissionDenied if the actor may not perform the action."""
    if not has_permission(actor, action):
        raise PermissionDenied(actor.user_id, action)


def is_assigned_worker(actor: Actor, task) -> bool:
    """True if the actor is the worker the room task is assigned to."""
    return task.assigned_to is not None and task.assigned_to == actor.user_id
