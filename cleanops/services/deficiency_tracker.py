"""
Deficiency Tracker.

Opens, progresses, reassigns and resolves deficiencies linked to room tasks.

Lifecycle:
    open → in_progress → resolved
    open → resolved

One-open rule: a room task has at most one deficiency in open/in_progress.
``open_deficiency`` checks first and then inserts inside a savepoint; the
partial unique index ``uq_deficiency_one_open_per_task`` rejects the insert
if a concurrent caller won, and that violation comes back as
DUPLICATE_OPEN_DEFICIENCY instead of an error.

Resolving a deficiency never touches the room task; the task keeps its
status and inspection result as the historical record.

Usage:
    from cleanops.services.deficiency_tracker import open_deficiency, resolve_deficiency

    result = open_deficiency(task_id, actor, description="Mirror smeared", severity="low")
    if result.reason == Reason.DUPLICATE_OPEN_DEFICIENCY:
        existing_id = result.details["deficiency_id"]
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from cleanops.core.exceptions import ValidationError
from cleanops.core.results import Reason, TransitionResult
from cleanops.models import db
from cleanops.models.activity import RoomTask
from cleanops.models.deficiency import (
    DEFICIENCY_SEVERITIES,
    DEFICIENCY_STATUSES,
    OPEN_DEFICIENCY_STATUSES,
    Deficiency,
    validate_deficiency_transition,
)
from cleanops.services.helpers.scoped_queries import get_scoped_or_none
from cleanops.services.helpers.store import commit_or_raise, compare_and_swap
from cleanops.services.notification import notify_safely, preview
from cleanops.services.permission import Actor, has_permission, is_assigned_worker
from cleanops.utils.helpers import clean_text

logger = logging.getLogger(__name__)


def find_open_deficiency(room_task_id: int) -> Deficiency | None:
    """Return the open/in_progress deficiency for a task, if any."""
    return (
        Deficiency.query
        .filter(Deficiency.room_task_id == room_task_id,
                Deficiency.status.in_(OPEN_DEFICIENCY_STATUSES))
        .first()
    )


def insert_open_deficiency(
    task: RoomTask,
    *,
    description: str,
    severity: str,
    reported_by: str,
    assigned_to: str | None,
    from_inspection: bool = False,
) -> Deficiency | None:
    """
    Insert an open deficiency for ``task`` inside a savepoint.

    Does not commit. Returns None when the task already has an open
    deficiency, whether seen by the pre-check or reported by the unique
    index; the surrounding transaction is left intact in both cases.
    """
    if find_open_deficiency(task.id) is not None:
        return None

    deficiency = Deficiency(
        org_id=task.org_id,
        room_task_id=task.id,
        reported_by=reported_by,
        assigned_to=assigned_to,
        description=description,
        severity=severity,
        status="open",
        from_inspection=from_inspection,
    )
    try:
        with db.session.begin_nested():
            db.session.add(deficiency)
    except IntegrityError:
        if find_open_deficiency(task.id) is None:
            raise
        logger.warning(
            "Open deficiency for task %s created concurrently; insert skipped", task.id,
        )
        return None
    return deficiency


def _validate_open_input(description, severity, assigned_to):
    description = clean_text(description, "description", max_len=500, required=True)
    if severity not in DEFICIENCY_SEVERITIES:
        raise ValidationError(
            f"severity must be one of {sorted(DEFICIENCY_SEVERITIES)}",
            details={"severity": severity},
        )
    if assigned_to is not None:
        assigned_to = clean_text(assigned_to, "assigned_to", max_len=64)
    return description, severity, assigned_to


# ── open ─────────────────────────────────────────────────────────────────────


def open_deficiency(
    room_task_id: int,
    actor: Actor,
    *,
    description,
    severity="medium",
    assigned_to=None,
) -> TransitionResult:
    """
    Manually report a deficiency against a room task.

    Allowed for supervisors/admins and for the task's assigned worker.

    Returns:
        TransitionResult with the new Deficiency, or a failure with reason
        FORBIDDEN, NOT_FOUND, VALIDATION or DUPLICATE_OPEN_DEFICIENCY
        (``details["deficiency_id"]`` names the open one when known).
    """
    task = get_scoped_or_none(RoomTask, room_task_id, org_id=actor.org_id)
    if task is None:
        return TransitionResult.failure(Reason.NOT_FOUND, f"Room task {room_task_id} not found")
    if not (has_permission(actor, "deficiency_open") or is_assigned_worker(actor, task)):
        return TransitionResult.failure(
            Reason.FORBIDDEN, "Only supervisors or the assigned worker may report deficiencies",
        )
    try:
        description, severity, assigned_to = _validate_open_input(description, severity, assigned_to)
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)

    existing = find_open_deficiency(task.id)
    if existing is not None:
        return TransitionResult.failure(
            Reason.DUPLICATE_OPEN_DEFICIENCY,
            f"Room task {task.id} already has open deficiency {existing.id}; "
            "resolve or reassign it instead",
            deficiency_id=existing.id,
        )

    deficiency = insert_open_deficiency(
        task,
        description=description,
        severity=severity,
        reported_by=actor.user_id,
        assigned_to=assigned_to,
    )
    if deficiency is None:
        db.session.rollback()
        existing = find_open_deficiency(task.id)
        return TransitionResult.failure(
            Reason.DUPLICATE_OPEN_DEFICIENCY,
            f"Room task {task.id} already has an open deficiency",
            deficiency_id=existing.id if existing else None,
        )
    try:
        commit_or_raise("open deficiency")
    except IntegrityError:
        return TransitionResult.failure(
            Reason.DUPLICATE_OPEN_DEFICIENCY,
            f"Room task {task.id} already has an open deficiency",
        )

    logger.info(
        "Deficiency opened id=%s task=%s severity=%s by=%s",
        deficiency.id, task.id, severity, actor.user_id,
    )
    if assigned_to and assigned_to != actor.user_id:
        notify_safely(
            assigned_to, "deficiency_assigned", "Deficiency assigned to you",
            preview(description), f"/deficiencies/{deficiency.id}",
            org_id=actor.org_id,
        )
    return TransitionResult.success(deficiency, "Deficiency opened")


# ── status transitions ───────────────────────────────────────────────────────


def _load(deficiency_id: int, actor: Actor):
    deficiency = get_scoped_or_none(Deficiency, deficiency_id, org_id=actor.org_id)
    if deficiency is None:
        return None, TransitionResult.failure(Reason.NOT_FOUND, f"Deficiency {deficiency_id} not found")
    return deficiency, None


def _lost_race(deficiency_id: int, org_id: int) -> TransitionResult:
    db.session.rollback()
    current = get_scoped_or_none(Deficiency, deficiency_id, org_id=org_id)
    if current is not None and current.status == "resolved":
        return TransitionResult.failure(
            Reason.ALREADY_RESOLVED, f"Deficiency {deficiency_id} is already resolved",
        )
    return TransitionResult.failure(
        Reason.CONFLICT,
        f"Deficiency {deficiency_id} was modified concurrently; re-read and retry",
        current_status=current.status if current else None,
    )


def start_deficiency(deficiency_id: int, actor: Actor) -> TransitionResult:
    """open → in_progress, by the assignee or a supervisor/admin."""
    deficiency, err = _load(deficiency_id, actor)
    if err:
        return err
    if not (has_permission(actor, "deficiency_start") or deficiency.assigned_to == actor.user_id):
        return TransitionResult.failure(
            Reason.FORBIDDEN, "Only the assignee or a supervisor may start work on a deficiency",
        )
    if deficiency.status == "resolved":
        return TransitionResult.failure(
            Reason.ALREADY_RESOLVED, f"Deficiency {deficiency.id} is already resolved",
        )
    if not validate_deficiency_transition(deficiency.status, "in_progress"):
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION,
            f"Cannot start deficiency from status '{deficiency.status}'",
            current_status=deficiency.status,
        )

    if not compare_and_swap(Deficiency, deficiency.id,
                            expect={"status": "open"}, values={"status": "in_progress"}):
        return _lost_race(deficiency.id, actor.org_id)
    commit_or_raise("start deficiency")
    logger.info("Deficiency %s: open → in_progress by=%s", deficiency.id, actor.user_id)
    return TransitionResult.success(deficiency, "Deficiency in progress")


def resolve_deficiency(deficiency_id: int, actor: Actor, note) -> TransitionResult:
    """
    Resolve an open or in-progress deficiency with a resolution note.

    Allowed for supervisors/admins and the current assignee. The reporter is
    notified unless they resolved it themselves.
    """
    deficiency, err = _load(deficiency_id, actor)
    if err:
        return err
    if not (has_permission(actor, "deficiency_resolve") or deficiency.assigned_to == actor.user_id):
        return TransitionResult.failure(
            Reason.FORBIDDEN, "Only the assignee or a supervisor may resolve a deficiency",
        )
    if deficiency.status == "resolved":
        return TransitionResult.failure(
            Reason.ALREADY_RESOLVED, f"Deficiency {deficiency.id} is already resolved",
        )
    try:
        note = clean_text(note, "note", max_len=2000, required=True)
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)

    previous = deficiency.status
    if not compare_and_swap(
        Deficiency, deficiency.id,
        expect={"status": OPEN_DEFICIENCY_STATUSES},
        values={
            "status": "resolved",
            "resolution_note": note,
            "resolved_by": actor.user_id,
            "resolved_at": datetime.now(timezone.utc),
        },
    ):
        return _lost_race(deficiency.id, actor.org_id)
    commit_or_raise("resolve deficiency")

    logger.info("Deficiency %s: %s → resolved by=%s", deficiency.id, previous, actor.user_id)
    if deficiency.reported_by != actor.user_id:
        notify_safely(
            deficiency.reported_by, "deficiency_resolved", "Deficiency resolved",
            preview(note), f"/deficiencies/{deficiency.id}",
            org_id=actor.org_id,
        )
    return TransitionResult.success(deficiency, f"Deficiency resolved: {previous} → resolved")


def reassign_deficiency(deficiency_id: int, actor: Actor, new_assignee) -> TransitionResult:
    """Change the assignee of an unresolved deficiency (supervisor/admin)."""
    if not has_permission(actor, "deficiency_reassign"):
        return TransitionResult.failure(
            Reason.FORBIDDEN, f"Role '{actor.role}' may not reassign deficiencies",
        )
    deficiency, err = _load(deficiency_id, actor)
    if err:
        return err
    if deficiency.status == "resolved":
        return TransitionResult.failure(
            Reason.ALREADY_RESOLVED, f"Deficiency {deficiency.id} is resolved and cannot be reassigned",
        )
    try:
        new_assignee = clean_text(new_assignee, "assigned_to", max_len=64)
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)

    previous = deficiency.assigned_to
    if not compare_and_swap(
        Deficiency, deficiency.id,
        expect={"status": OPEN_DEFICIENCY_STATUSES},
        values={"assigned_to": new_assignee},
    ):
        return _lost_race(deficiency.id, actor.org_id)
    commit_or_raise("reassign deficiency")

    logger.info(
        "Deficiency %s reassigned %s → %s by=%s",
        deficiency.id, previous, new_assignee, actor.user_id,
    )
    if new_assignee and new_assignee != previous:
        notify_safely(
            new_assignee, "deficiency_assigned", "Deficiency assigned to you",
            preview(deficiency.description), f"/deficiencies/{deficiency.id}",
            org_id=actor.org_id,
        )
    return TransitionResult.success(deficiency, "Deficiency reassigned")


# ── queries ──────────────────────────────────────────────────────────────────


def list_deficiencies(org_id: int, *, status=None, assigned_to=None, room_task_id=None,
                      activity_id=None):
    """List deficiencies in an organisation, newest first."""
    if status is not None and status not in DEFICIENCY_STATUSES:
        raise ValidationError(f"Unknown deficiency status: {status}", details={"status": status})
    q = Deficiency.query.filter_by(org_id=org_id)
    if status:
        q = q.filter_by(status=status)
    if assigned_to:
        q = q.filter_by(assigned_to=assigned_to)
    if room_task_id:
        q = q.filter_by(room_task_id=room_task_id)
    if activity_id:
        q = q.join(RoomTask, Deficiency.room_task_id == RoomTask.id).filter(
            RoomTask.activity_id == activity_id,
        )
    return q.order_by(Deficiency.created_at.desc(), Deficiency.id.desc()).all()
