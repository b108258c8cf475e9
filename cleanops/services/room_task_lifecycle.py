"""
Room Task Lifecycle Service.

Work and inspection transitions for a single room task:

    start:     not_started → in_progress          (assigned worker)
    complete:  in_progress → done | has_issues    (assigned worker)
    inspect:   inspection none → inspected_pass | inspected_fail
               on done/has_issues tasks           (supervisor/admin)

Between start and complete the worker records item responses against the
task's frozen checklist snapshot. Completing as ``done`` requires evidence
for every required-photo / required-note item; completing as
``has_issues`` requires an issue note.

Every status write is a compare-and-swap on the expected pre-state that also
requires the parent activity to still be active, so a task cannot move after
its activity was cancelled or closed.

An ``inspected_fail`` result opens a deficiency for the task in the same
transaction unless one is already open.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from cleanops.core.exceptions import ValidationError
from cleanops.core.results import Reason, TransitionResult
from cleanops.models import db
from cleanops.models.activity import (
    INSPECTABLE_TASK_STATUSES,
    Activity,
    ItemResponse,
    RoomTask,
    validate_inspection_transition,
    validate_task_transition,
)
from cleanops.models.deficiency import DEFICIENCY_SEVERITIES
from cleanops.services.deficiency_tracker import find_open_deficiency, insert_open_deficiency
from cleanops.services.helpers.scoped_queries import get_scoped_or_none
from cleanops.services.helpers.store import commit_or_raise, compare_and_swap
from cleanops.services.notification import notify_safely, preview
from cleanops.services.permission import Actor, has_permission, is_assigned_worker
from cleanops.utils.helpers import clean_text

logger = logging.getLogger(__name__)

COMPLETION_STATUSES = {"done": "complete_done", "has_issues": "complete_issues"}

DEFAULT_FAIL_DESCRIPTION = "Room failed inspection"


def _activity_is_active(activity_id: int):
    """SQL criterion: the task's parent activity is still active."""
    return (
        select(Activity.id)
        .where(Activity.id == activity_id, Activity.status == "active")
        .exists()
    )


def _load(task_id: int, actor: Actor):
    task = get_scoped_or_none(RoomTask, task_id, org_id=actor.org_id)
    if task is None:
        return None, TransitionResult.failure(Reason.NOT_FOUND, f"Room task {task_id} not found")
    return task, None


def _require_worker(task: RoomTask, actor: Actor) -> TransitionResult | None:
    if not is_assigned_worker(actor, task):
        return TransitionResult.failure(
            Reason.NOT_ASSIGNED,
            f"Room task {task.id} is not assigned to {actor.user_id}",
        )
    return None


def _require_active_activity(task: RoomTask) -> TransitionResult | None:
    if task.activity.status != "active":
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION,
            f"Activity {task.activity_id} is {task.activity.status}; its tasks are frozen",
            activity_status=task.activity.status,
        )
    return None


def _lost_race(task_id: int, org_id: int, action: str) -> TransitionResult:
    """Explain a CAS miss from a fresh read of the task."""
    db.session.rollback()
    current = get_scoped_or_none(RoomTask, task_id, org_id=org_id)
    if current is None:
        return TransitionResult.failure(Reason.NOT_FOUND, f"Room task {task_id} not found")
    if current.activity.status != "active":
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION,
            f"Activity {current.activity_id} is {current.activity.status}; its tasks are frozen",
            current_status=current.status,
        )
    validation = validate_task_transition(current.status, action)
    if not validation["valid"]:
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION, validation["reason"], current_status=current.status,
        )
    return TransitionResult.failure(
        Reason.CONFLICT,
        f"Room task {task_id} was modified concurrently; re-read and retry",
        current_status=current.status,
    )


def _check_transition(task: RoomTask, action: str) -> TransitionResult | None:
    validation = validate_task_transition(task.status, action)
    if not validation["valid"]:
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION, validation["reason"], current_status=task.status,
        )
    return None


# ── start ────────────────────────────────────────────────────────────────────


def start_task(task_id: int, actor: Actor) -> TransitionResult:
    """not_started → in_progress. Only the assigned worker may start."""
    task, err = _load(task_id, actor)
    if err:
        return err
    err = _require_worker(task, actor) or _require_active_activity(task) or _check_transition(task, "start")
    if err:
        return err

    if not compare_and_swap(
        RoomTask, task.id,
        expect={"status": "not_started"},
        values={"status": "in_progress", "started_at": datetime.now(timezone.utc)},
        where=(_activity_is_active(task.activity_id),),
    ):
        return _lost_race(task.id, actor.org_id, "start")
    commit_or_raise("start room task")
    logger.info("RoomTask %s: not_started → in_progress by=%s", task.id, actor.user_id)
    return TransitionResult.success(task, "Task started")


# ── item responses ───────────────────────────────────────────────────────────


def _guard_in_progress(task: RoomTask, actor: Actor) -> TransitionResult | None:
    err = _require_worker(task, actor) or _require_active_activity(task)
    if err:
        return err
    if task.status != "in_progress":
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION,
            f"Item responses can only be recorded while the task is in progress "
            f"(status '{task.status}')",
            current_status=task.status,
        )
    return None


def _upsert_response(task: RoomTask, item_id: int) -> ItemResponse:
    response = ItemResponse.query.filter_by(room_task_id=task.id, checklist_item_id=item_id).first()
    if response is None:
        response = ItemResponse(org_id=task.org_id, room_task_id=task.id, checklist_item_id=item_id)
        db.session.add(response)
    return response


def _still_in_progress(task: RoomTask) -> bool:
    """Lock-free recheck that the task has not moved on since it was read."""
    return db.session.execute(
        select(RoomTask.id).where(RoomTask.id == task.id, RoomTask.status == "in_progress")
    ).first() is not None


def record_item_response(task_id: int, item_id, actor: Actor, *, completed, note=None) -> TransitionResult:
    """
    Upsert the worker's response to one checklist item.

    Fails UNKNOWN_ITEM when ``item_id`` is not part of the task's checklist
    snapshot.
    """
    task, err = _load(task_id, actor)
    if err:
        return err
    err = _guard_in_progress(task, actor)
    if err:
        return err
    if not isinstance(completed, bool):
        return TransitionResult.failure(Reason.VALIDATION, "completed must be true or false")
    try:
        note = clean_text(note, "note", max_len=1000)
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)
    if task.snapshot_item(item_id) is None:
        return TransitionResult.failure(
            Reason.UNKNOWN_ITEM,
            f"Item {item_id} is not on the checklist of room task {task.id}",
            item_id=item_id,
        )

    response = _upsert_response(task, item_id)
    response.is_completed = completed
    response.note = note
    response.completed_at = datetime.now(timezone.utc) if completed else None
    db.session.flush()
    if not _still_in_progress(task):
        return _lost_race(task.id, actor.org_id, "complete_done")
    commit_or_raise("record item response")
    logger.debug("RoomTask %s item %s completed=%s", task.id, item_id, completed)
    return TransitionResult.success(response, "Response recorded")


def attach_item_photo(task_id: int, item_id, actor: Actor, photo_url) -> TransitionResult:
    """Store a photo reference as evidence for one checklist item."""
    task, err = _load(task_id, actor)
    if err:
        return err
    err = _guard_in_progress(task, actor)
    if err:
        return err
    try:
        photo_url = clean_text(photo_url, "photo_url", max_len=500, required=True)
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)
    if task.snapshot_item(item_id) is None:
        return TransitionResult.failure(
            Reason.UNKNOWN_ITEM,
            f"Item {item_id} is not on the checklist of room task {task.id}",
            item_id=item_id,
        )

    response = _upsert_response(task, item_id)
    response.photo_url = photo_url
    db.session.flush()
    if not _still_in_progress(task):
        return _lost_race(task.id, actor.org_id, "complete_done")
    commit_or_raise("attach item photo")
    logger.info("RoomTask %s item %s photo attached", task.id, item_id)
    return TransitionResult.success(response, "Photo attached")


# ── complete ─────────────────────────────────────────────────────────────────


def missing_evidence(task: RoomTask) -> list[int]:
    """
    Item ids whose required evidence is missing.

    A required-photo item needs a completed response with a photo; a
    required-note item needs a completed response with a non-empty note.
    Items with neither flag never block completion.
    """
    responses = {r.checklist_item_id: r for r in task.responses}
    missing = []
    for item in task.checklist_snapshot or []:
        if not (item.get("requires_photo") or item.get("requires_note")):
            continue
        response = responses.get(item["item_id"])
        if response is None or not response.is_completed:
            missing.append(item["item_id"])
            continue
        if item.get("requires_photo") and not response.photo_url:
            missing.append(item["item_id"])
            continue
        if item.get("requires_note") and not (response.note or "").strip():
            missing.append(item["item_id"])
    return missing


def complete_task(task_id: int, actor: Actor, status, issue_note=None) -> TransitionResult:
    """
    in_progress → done | has_issues.

    Args:
        status: "done" or "has_issues".
        issue_note: Required (non-empty) for has_issues.

    Returns:
        TransitionResult; MISSING_REQUIRED_EVIDENCE failures carry
        ``details["item_ids"]``.
    """
    action = COMPLETION_STATUSES.get(status)
    if action is None:
        return TransitionResult.failure(
            Reason.VALIDATION, "status must be 'done' or 'has_issues'", status=status,
        )
    task, err = _load(task_id, actor)
    if err:
        return err
    err = _require_worker(task, actor) or _require_active_activity(task) or _check_transition(task, action)
    if err:
        return err

    try:
        issue_note = clean_text(issue_note, "issue_note", max_len=1000, required=(status == "has_issues"))
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)

    if status == "done":
        missing = missing_evidence(task)
        if missing:
            return TransitionResult.failure(
                Reason.MISSING_REQUIRED_EVIDENCE,
                f"Required evidence missing for item(s) {missing}",
                item_ids=missing,
            )

    if not compare_and_swap(
        RoomTask, task.id,
        expect={"status": "in_progress"},
        values={
            "status": status,
            "issue_note": issue_note,
            "completed_at": datetime.now(timezone.utc),
        },
        where=(_activity_is_active(task.activity_id),),
    ):
        return _lost_race(task.id, actor.org_id, action)
    commit_or_raise("complete room task")
    logger.info("RoomTask %s: in_progress → %s by=%s", task.id, status, actor.user_id)
    return TransitionResult.success(task, f"Task completed: in_progress → {status}")


# ── inspect ──────────────────────────────────────────────────────────────────


def _inspection_miss(task_id: int, org_id: int) -> TransitionResult:
    db.session.rollback()
    current = get_scoped_or_none(RoomTask, task_id, org_id=org_id)
    if current is None:
        return TransitionResult.failure(Reason.NOT_FOUND, f"Room task {task_id} not found")
    if current.inspection_result != "none":
        return TransitionResult.failure(
            Reason.ALREADY_INSPECTED,
            f"Room task {task_id} was already inspected ({current.inspection_result})",
            inspection_result=current.inspection_result,
        )
    if current.status not in INSPECTABLE_TASK_STATUSES or current.activity.status != "active":
        return TransitionResult.failure(
            Reason.NOT_READY_FOR_INSPECTION,
            f"Room task {task_id} is not ready for inspection",
            current_status=current.status,
        )
    return TransitionResult.failure(
        Reason.CONFLICT, f"Room task {task_id} was modified concurrently; re-read and retry",
    )


def inspect_task(
    task_id: int,
    actor: Actor,
    result,
    note=None,
    *,
    deficiency_severity="medium",
) -> TransitionResult:
    """
    Record a supervisor's inspection on a completed room task.

    The inspection result can be set once. ``inspected_fail`` opens a
    deficiency (reported by the inspector, assigned to the task's worker)
    unless the task already has an open one.

    Args:
        result: "inspected_pass" or "inspected_fail".
        note: Optional inspection note; used as the deficiency description.
        deficiency_severity: Severity of the auto-opened deficiency. The HTTP
            layer passes the DEFAULT_DEFICIENCY_SEVERITY setting when the
            request names none.

    Returns:
        TransitionResult; ``details["deficiency_id"]`` is set when a
        deficiency was opened.
    """
    if not has_permission(actor, "task_inspect"):
        return TransitionResult.failure(Reason.FORBIDDEN, f"Role '{actor.role}' may not inspect tasks")
    if not validate_inspection_transition("none", result):
        return TransitionResult.failure(
            Reason.VALIDATION, "result must be 'inspected_pass' or 'inspected_fail'", result=result,
        )
    try:
        note = clean_text(note, "note", max_len=500)
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)
    if deficiency_severity not in DEFICIENCY_SEVERITIES:
        return TransitionResult.failure(
            Reason.VALIDATION, f"severity must be one of {sorted(DEFICIENCY_SEVERITIES)}",
            severity=deficiency_severity,
        )

    task, err = _load(task_id, actor)
    if err:
        return err
    if task.inspection_result != "none":
        return TransitionResult.failure(
            Reason.ALREADY_INSPECTED,
            f"Room task {task.id} was already inspected ({task.inspection_result})",
            inspection_result=task.inspection_result,
        )
    if task.status not in INSPECTABLE_TASK_STATUSES or task.activity.status != "active":
        return TransitionResult.failure(
            Reason.NOT_READY_FOR_INSPECTION,
            f"Room task {task.id} cannot be inspected while {task.status} "
            f"(activity {task.activity.status})",
            current_status=task.status,
        )

    if not compare_and_swap(
        RoomTask, task.id,
        expect={"inspection_result": "none", "status": INSPECTABLE_TASK_STATUSES},
        values={
            "inspection_result": result,
            "inspection_note": note,
            "inspected_by": actor.user_id,
            "inspected_at": datetime.now(timezone.utc),
        },
        where=(_activity_is_active(task.activity_id),),
    ):
        return _inspection_miss(task.id, actor.org_id)

    deficiency = None
    if result == "inspected_fail":
        deficiency = insert_open_deficiency(
            task,
            description=note or DEFAULT_FAIL_DESCRIPTION,
            severity=deficiency_severity,
            reported_by=actor.user_id,
            assigned_to=task.assigned_to,
            from_inspection=True,
        )
    commit_or_raise("inspect room task")

    logger.info(
        "RoomTask %s inspected %s by=%s deficiency=%s",
        task.id, result, actor.user_id, deficiency.id if deficiency else None,
    )
    details = {}
    if deficiency is not None:
        details["deficiency_id"] = deficiency.id
        notify_safely(
            task.assigned_to, "inspection_failed", "Room failed inspection",
            preview(deficiency.description), f"/deficiencies/{deficiency.id}",
            org_id=task.org_id,
        )
    return TransitionResult.success(task, f"Inspection recorded: {result}", **details)


# ── assignment ───────────────────────────────────────────────────────────────


def assign_task(task_id: int, actor: Actor, assigned_to) -> TransitionResult:
    """
    (Re)assign a not-started task of an active activity to a worker.

    ``assigned_to=None`` unassigns. The new worker is notified.
    """
    if not has_permission(actor, "task_assign"):
        return TransitionResult.failure(Reason.FORBIDDEN, f"Role '{actor.role}' may not assign tasks")
    task, err = _load(task_id, actor)
    if err:
        return err
    err = _require_active_activity(task)
    if err:
        return err
    if task.status != "not_started":
        return TransitionResult.failure(
            Reason.INVALID_TRANSITION,
            f"Only not-started tasks can be reassigned (status '{task.status}')",
            current_status=task.status,
        )
    try:
        assigned_to = clean_text(assigned_to, "assigned_to", max_len=64)
    except ValidationError as exc:
        return TransitionResult.failure(Reason.VALIDATION, str(exc), **exc.details)

    previous = task.assigned_to
    if not compare_and_swap(
        RoomTask, task.id,
        expect={"status": "not_started"},
        values={"assigned_to": assigned_to},
        where=(_activity_is_active(task.activity_id),),
    ):
        return _lost_race(task.id, actor.org_id, "start")
    commit_or_raise("assign room task")

    logger.info("RoomTask %s assigned %s → %s by=%s", task.id, previous, assigned_to, actor.user_id)
    if assigned_to and assigned_to != previous:
        notify_safely(
            assigned_to, "task_assigned", "Cleaning task assigned",
            f"{task.activity.name}: {task.room.name}", f"/tasks/{task.id}",
            org_id=task.org_id,
        )
    return TransitionResult.success(task, "Task assigned")


# ── queries ──────────────────────────────────────────────────────────────────


def get_task_detail(task: RoomTask) -> dict:
    """Task dict with snapshot items merged with the worker's responses."""
    responses = {r.checklist_item_id: r for r in task.responses}
    items = []
    for item in task.checklist_snapshot or []:
        response = responses.get(item["item_id"])
        items.append({
            **item,
            "response": response.to_dict() if response else None,
        })
    data = task.to_dict()
    data["checklist"] = items
    data["missing_evidence"] = missing_evidence(task) if task.status == "in_progress" else []
    data["room_name"] = task.room.name if task.room else None
    open_def = find_open_deficiency(task.id)
    data["open_deficiency_id"] = open_def.id if open_def else None
    return data


def list_tasks_for_worker(org_id: int, user_id: str, *, include_terminal=False):
    """Room tasks assigned to a worker on active activities."""
    q = (
        RoomTask.query.join(Activity, RoomTask.activity_id == Activity.id)
        .filter(RoomTask.org_id == org_id, RoomTask.assigned_to == user_id,
                Activity.status == "active")
    )
    if not include_terminal:
        q = q.filter(RoomTask.status.in_(["not_started", "in_progress"]))
    return q.order_by(Activity.scheduled_date, Activity.window_start, RoomTask.id).all()
