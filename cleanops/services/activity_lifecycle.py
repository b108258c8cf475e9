"""
Activity Lifecycle Service.

Manages cleaning activity status transitions with:
  - Transition validation (ACTIVITY_TRANSITIONS in models/activity.py)
  - Compare-and-swap updates keyed on the current status
  - Room task creation with checklist snapshots on publish
  - Cascade of non-terminal room tasks to 'cancelled' on cancel
  - Pass-rate freeze on close
  - Notification triggers (task assignment)

3 transitions:
    publish:  draft → active
    cancel:   draft | active → cancelled
    close:    active → closed  (all room tasks terminal)

Usage:
    from cleanops.services.activity_lifecycle import publish_activity

    result = publish_activity(
        activity_id=7,
        assignments=[{"room_id": 3, "assigned_to": "worker-1"}],
        actor=actor,
    )
    if not result.ok:
        return result.reason, result.message
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from cleanops.core.exceptions import NotFoundError, ValidationError
from cleanops.core.results import Reason, TransitionResult
from cleanops.models import db
from cleanops.models.activity import (
    TERMINAL_TASK_STATUSES,
    Activity,
    RoomTask,
    available_activity_actions,
    validate_activity_transition,
)
from cleanops.models.deficiency import OPEN_DEFICIENCY_STATUSES, Deficiency
from cleanops.models.facility import Floor, Room
from cleanops.services.checklist_resolver import NoChecklistConfigured, build_snapshot, resolve
from cleanops.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from cleanops.services.helpers.store import commit_or_raise, compare_and_swap
from cleanops.services.notification import notify_safely
from cleanops.services.permission import Actor, check_permission, has_permission
from cleanops.services.threshold_evaluator import Evaluation, evaluate
from cleanops.utils.helpers import clean_text, parse_date, parse_time

logger = logging.getLogger(__name__)


# ── Field validation ────────────────────────────────────────────────────────


def _validate_fields(data: dict, *, partial: bool) -> dict:
    """Parse and validate editable activity fields.

    Returns a dict of column → parsed value for the keys present in ``data``
    (all required keys when ``partial`` is False).
    """
    values = {}

    if not partial or "name" in data:
        values["name"] = clean_text(data.get("name"), "name", max_len=100, required=True)

    if not partial or "scheduled_date" in data:
        scheduled = parse_date(data.get("scheduled_date"))
        if scheduled is None:
            raise ValidationError("scheduled_date must be YYYY-MM-DD",
                                  details={"scheduled_date": "invalid"})
        values["scheduled_date"] = scheduled

    for key in ("window_start", "window_end"):
        if not partial or key in data:
            parsed = parse_time(data.get(key))
            if parsed is None:
                raise ValidationError(f"{key} must be HH:MM", details={key: "invalid"})
            values[key] = parsed

    if "notes" in data:
        values["notes"] = clean_text(data.get("notes"), "notes", max_len=500)

    return values


def _check_window(start, end) -> None:
    if end <= start:
        raise ValidationError("window_end must be after window_start",
                              details={"window_end": "must be after window_start"})


def _lost_race(activity_id: int, org_id: int, action: str) -> TransitionResult:
    """Build the failure for a CAS miss from a fresh read of the activity."""
    db.session.rollback()
    current = get_scoped_or_none(Activity, activity_id, org_id=org_id)
    if current is None:
        return TransitionResult.failure(Reason.NOT_FOUND, f"Activity {activity_id} not found")
    validation = validate_activity_transition(current.status, action)
    if not validation["valid"]:
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION, validation["reason"],
            current_status=current.status,
        )
    return TransitionResult.failure(
        Reason.CONFLICT,
        f"Activity {activity_id} was modified concurrently; re-read and retry",
        current_status=current.status,
    )


def _load(activity_id: int, actor: Actor, permission: str, action: str):
    """Common guard: permission, lookup, transition validity.

    Returns (activity, None) or (None, failure).
    """
    if not has_permission(actor, permission):
        return None, TransitionResult.failure(
            Reason.FORBIDDEN, f"Role '{actor.role}' may not {action} activities",
        )
    activity = get_scoped_or_none(Activity, activity_id, org_id=actor.org_id)
    if activity is None:
        return None, TransitionResult.failure(Reason.NOT_FOUND, f"Activity {activity_id} not found")
    validation = validate_activity_transition(activity.status, action)
    if not validation["valid"]:
        return None, TransitionResult.failure(
            Reason.INVALID_TRANSITION, validation["reason"],
            current_status=activity.status,
        )
    return activity, None


# ── CRUD ─────────────────────────────────────────────────────────────────────


def create_activity(actor: Actor, data: dict) -> Activity:
    """Create a draft activity for a floor in the actor's organisation.

    Raises:
        PermissionDenied: actor is not a supervisor/admin.
        ValidationError: malformed fields or window_end <= window_start.
        NotFoundError: floor missing or in another organisation.
    """
    check_permission(actor, "activity_create")
    floor_id = data.get("floor_id")
    if not isinstance(floor_id, int) or isinstance(floor_id, bool):
        raise ValidationError("floor_id is required", details={"floor_id": "required"})
    values = _validate_fields(data, partial=False)
    _check_window(values["window_start"], values["window_end"])
    get_scoped(Floor, floor_id, org_id=actor.org_id)

    activity = Activity(
        org_id=actor.org_id,
        floor_id=floor_id,
        created_by=actor.user_id,
        status="draft",
        **values,
    )
    db.session.add(activity)
    commit_or_raise("create activity")
    logger.info("Activity created id=%s floor=%s by=%s", activity.id, floor_id, actor.user_id)
    return activity


def update_activity(activity_id: int, actor: Actor, data: dict) -> TransitionResult:
    """Edit name/date/window/notes of a draft activity."""
    if not has_permission(actor, "activity_update"):
        return TransitionResult.failure(Reason.FORBIDDEN, f"Role '{actor.role}' may not edit activities")
    activity = get_scoped_or_none(Activity, activity_id, org_id=actor.org_id)
    if activity is None:
        return TransitionResult.failure(Reason.NOT_FOUND, f"Activity {activity_id} not found")
    if activity.status != "draft":
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION, "Can only edit draft activities",
            current_status=activity.status,
        )
    try:
        values = _validate_fields(data, partial=True)
        _check_window(values.get("window_start", activity.window_start),
                      values.get("window_end", activity.window_end))
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)
    if not values:
        return TransitionResult.success(activity, "Nothing to update")

    if not compare_and_swap(Activity, activity.id, expect={"status": "draft"}, values=values):
        return _lost_race(activity.id, actor.org_id, "publish")
    commit_or_raise("update activity")
    logger.info("Activity updated id=%s fields=%s", activity.id, sorted(values))
    return TransitionResult.success(activity, "Activity updated")


def list_activities(org_id: int, *, status=None, floor_id=None, scheduled_date=None) -> list[Activity]:
    q = Activity.query.filter_by(org_id=org_id)
    if status:
        q = q.filter_by(status=status)
    if floor_id:
        q = q.filter_by(floor_id=floor_id)
    if scheduled_date:
        q = q.filter_by(scheduled_date=scheduled_date)
    return q.order_by(Activity.scheduled_date.desc(), Activity.window_start, Activity.id).all()


def get_available_actions(activity: Activity) -> list[str]:
    """Get list of valid transition actions for an activity's current status."""
    return available_activity_actions(activity.status)


# ── publish ──────────────────────────────────────────────────────────────────


def _validate_assignments(activity: Activity, assignments) -> tuple[list, TransitionResult | None]:
    """Check the assignment list; returns ([(room, assigned_to)], failure)."""
    seen = set()
    resolved = []
    for idx, entry in enumerate(assignments):
        if not isinstance(entry, dict):
            return [], TransitionResult.failure(Reason.VALIDATION, f"assignments[{idx}] must be an object")
        room_id = entry.get("room_id")
        assigned_to = entry.get("assigned_to")
        if not isinstance(room_id, int) or isinstance(room_id, bool):
            return [], TransitionResult.failure(Reason.VALIDATION, f"assignments[{idx}].room_id is required")
        if assigned_to is not None and (not isinstance(assigned_to, str) or not assigned_to.strip()):
            return [], TransitionResult.failure(
                Reason.VALIDATION, f"assignments[{idx}].assigned_to must be a user id or null",
            )
        if room_id in seen:
            return [], TransitionResult.failure(
                Reason.VALIDATION, f"Room {room_id} is assigned more than once", room_id=room_id,
            )
        seen.add(room_id)

        room = get_scoped_or_none(Room, room_id, org_id=activity.org_id)
        if room is None:
            return [], TransitionResult.failure(Reason.NOT_FOUND, f"Room {room_id} not found")
        if room.floor_id != activity.floor_id or not room.is_active:
            return [], TransitionResult.failure(
                Reason.VALIDATION,
                f"Room {room_id} is not an active room on the activity's floor",
                room_id=room_id,
            )
        resolved.append((room, assigned_to.strip() if assigned_to else None))
    return resolved, None


def publish_activity(activity_id: int, assignments, actor: Actor) -> TransitionResult:
    """
    Publish a draft activity: create one room task per assignment.

    Args:
        activity_id: Activity PK.
        assignments: list of {"room_id": int, "assigned_to": str | None}.
        actor: Caller; must be supervisor/admin of the activity's organisation.

    Returns:
        TransitionResult; on success ``entity`` is the Activity and
        ``details["task_ids"]`` lists the created room tasks.
        Failure reasons: FORBIDDEN, NOT_FOUND, INVALID_TRANSITION,
        EMPTY_ASSIGNMENT, VALIDATION, NO_CHECKLIST_CONFIGURED, CONFLICT.
    """
    activity, err = _load(activity_id, actor, "activity_publish", "publish")
    if err:
        return err

    if not assignments:
        return TransitionResult.failure(
            Reason.EMPTY_ASSIGNMENT, "Assign at least one room before publishing",
        )

    rooms, err = _validate_assignments(activity, assignments)
    if err:
        return err
    if not any(assigned_to for _, assigned_to in rooms):
        return TransitionResult.failure(
            Reason.EMPTY_ASSIGNMENT, "Assign at least one worker before publishing",
        )

    # Resolve every checklist before touching state so a misconfigured room
    # leaves the activity in draft.
    snapshots = {}
    unconfigured = []
    for room, _ in rooms:
        try:
            template = resolve(room)
        except NoChecklistConfigured:
            unconfigured.append(room.id)
            continue
        snapshots[room.id] = (template.id, build_snapshot(template))
    if unconfigured:
        return TransitionResult.failure(
            Reason.NO_CHECKLIST_CONFIGURED,
            f"No checklist configured for room(s) {unconfigured}",
            room_ids=unconfigured,
        )

    now = datetime.now(timezone.utc)
    if not compare_and_swap(
        Activity, activity.id,
        expect={"status": "draft"},
        values={"status": "active", "published_at": now},
    ):
        return _lost_race(activity.id, actor.org_id, "publish")

    tasks = []
    for room, assigned_to in rooms:
        template_id, snapshot = snapshots[room.id]
        task = RoomTask(
            org_id=activity.org_id,
            activity_id=activity.id,
            room_id=room.id,
            assigned_to=assigned_to,
            status="not_started",
            inspection_result="none",
            checklist_template_id=template_id,
            checklist_snapshot=snapshot,
        )
        db.session.add(task)
        tasks.append(task)
    commit_or_raise("publish activity")

    logger.info(
        "Activity published id=%s tasks=%d by=%s",
        activity.id, len(tasks), actor.user_id,
    )

    per_worker = {}
    for task in tasks:
        if task.assigned_to:
            per_worker.setdefault(task.assigned_to, []).append(task)
    for worker, worker_tasks in per_worker.items():
        link = (f"/tasks/{worker_tasks[0].id}" if len(worker_tasks) == 1
                else f"/activities/{activity.id}")
        notify_safely(
            worker, "task_assigned", "New cleaning tasks assigned",
            f"{activity.name}: {len(worker_tasks)} room(s) on {activity.scheduled_date.isoformat()}",
            link, org_id=activity.org_id,
        )

    return TransitionResult.success(
        activity, "Activity published: draft → active",
        task_ids=[t.id for t in tasks],
    )


# ── cancel ───────────────────────────────────────────────────────────────────


def cancel_activity(activity_id: int, actor: Actor) -> TransitionResult:
    """
    Cancel a draft or active activity.

    Non-terminal room tasks move to 'cancelled'; completed ones keep their
    status and inspection result. Deficiencies are left as they are; the
    result reports how many remain open.
    """
    activity, err = _load(activity_id, actor, "activity_cancel", "cancel")
    if err:
        return err

    previous = activity.status
    now = datetime.now(timezone.utc)
    if not compare_and_swap(
        Activity, activity.id,
        expect={"status": previous},
        values={"status": "cancelled", "cancelled_at": now},
    ):
        return _lost_race(activity.id, actor.org_id, "cancel")

    cascade = db.session.execute(
        update(RoomTask)
        .where(
            RoomTask.activity_id == activity.id,
            RoomTask.status.in_(["not_started", "in_progress"]),
        )
        .values(status="cancelled", cancelled_at=now)
        .execution_options(synchronize_session=False)
    )
    cancelled_tasks = cascade.rowcount
    commit_or_raise("cancel activity")

    open_deficiencies = (
        db.session.query(Deficiency)
        .join(RoomTask, Deficiency.room_task_id == RoomTask.id)
        .filter(RoomTask.activity_id == activity.id,
                Deficiency.status.in_(OPEN_DEFICIENCY_STATUSES))
        .count()
    )
    logger.info(
        "Activity cancelled id=%s from=%s tasks_cancelled=%d open_deficiencies=%d",
        activity.id, previous, cancelled_tasks, open_deficiencies,
    )
    return TransitionResult.success(
        activity, f"Activity cancelled: {previous} → cancelled",
        cancelled_tasks=cancelled_tasks,
        open_deficiencies=open_deficiencies,
    )


# ── close ────────────────────────────────────────────────────────────────────


def close_activity(activity_id: int, actor: Actor, pass_threshold) -> TransitionResult:
    """
    Close an active activity whose room tasks are all terminal.

    The task set is read once under row locks; the pass rate computed from
    that snapshot is written in the same CAS that flips the status, and the
    CAS itself re-checks that no non-terminal task exists.

    Args:
        pass_threshold: Organisation pass threshold (percent), passed in by
            the caller.

    Returns:
        TransitionResult; on success ``details["evaluation"]`` holds the
        frozen pass rate and outcome.
    """
    activity, err = _load(activity_id, actor, "activity_close", "close")
    if err:
        return err

    tasks = db.session.execute(
        select(RoomTask).where(RoomTask.activity_id == activity.id)
        .order_by(RoomTask.id).with_for_update()
    ).scalars().all()

    pending = [t.id for t in tasks if not t.is_terminal]
    if pending:
        db.session.rollback()
        return TransitionResult.failure(
            Reason.INCOMPLETE_TASKS,
            f"{len(pending)} room task(s) are not finished",
            pending_task_ids=pending,
        )

    try:
        evaluation = evaluate(tasks, pass_threshold)
    except ValidationError as exc:
        db.session.rollback()
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)

    no_open_tasks = ~(
        select(RoomTask.id)
        .where(RoomTask.activity_id == activity.id,
               RoomTask.status.notin_(TERMINAL_TASK_STATUSES))
        .exists()
    )
    if not compare_and_swap(
        Activity, activity.id,
        expect={"status": "active"},
        values={
            "status": "closed",
            "closed_at": datetime.now(timezone.utc),
            "pass_rate": evaluation.pass_rate,
            "outcome": evaluation.outcome,
            "pass_threshold": evaluation.threshold,
        },
        where=(no_open_tasks,),
    ):
        failure = _lost_race(activity.id, actor.org_id, "close")
        if failure.reason == Reason.CONFLICT:
            return TransitionResult.failure(
                Reason.INCOMPLETE_TASKS, "A room task changed status while closing",
            )
        return failure
    commit_or_raise("close activity")

    logger.info(
        "Activity closed id=%s pass_rate=%s outcome=%s threshold=%s",
        activity.id, evaluation.pass_rate, evaluation.outcome, evaluation.threshold,
    )
    return TransitionResult.success(
        activity, "Activity closed: active → closed",
        evaluation=evaluation.to_dict(),
    )


# ── evaluation ───────────────────────────────────────────────────────────────


def evaluate_activity(activity_id: int, org_id: int, pass_threshold) -> Evaluation:
    """
    Pass rate for an activity.

    Closed activities report their frozen figures; others are evaluated live
    against ``pass_threshold``.

    Raises:
        NotFoundError, ValidationError
    """
    activity = get_scoped(Activity, activity_id, org_id=org_id)
    tasks = RoomTask.query.filter_by(activity_id=activity.id).all()
    if activity.status == "closed" and activity.outcome is not None:
        live = evaluate(tasks, activity.pass_threshold)
        return Evaluation(
            activity.pass_rate, activity.outcome, activity.pass_threshold,
            live.inspected, live.passed, live.failed,
        )
    return evaluate(tasks, pass_threshold)


def get_activity_or_404(activity_id: int, org_id: int) -> Activity:
    """Scoped fetch for read endpoints. Raises NotFoundError."""
    try:
        return get_scoped(Activity, activity_id, org_id=org_id)
    except NotFoundError:
        logger.debug("Activity %s not visible to org %s", activity_id, org_id)
        raise
