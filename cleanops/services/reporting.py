"""
Quality reporting.

Aggregates room-task inspection results for an organisation:
    - organisation summary: task counts by status, pass rate vs. threshold,
      activity counts, open deficiencies
    - pass rate per worker
    - pass rate per building / floor

All pass rates go through threshold_evaluator.evaluate so reports and the
figure frozen on activity close are computed the same way. Tasks of
cancelled activities are left out.
"""

import logging
from collections import defaultdict

from sqlalchemy import func

from cleanops.models import db
from cleanops.models.activity import ROOM_TASK_STATUSES, Activity, RoomTask
from cleanops.models.deficiency import OPEN_DEFICIENCY_STATUSES, Deficiency
from cleanops.models.facility import Floor
from cleanops.services.threshold_evaluator import evaluate

logger = logging.getLogger(__name__)


def _task_rows(org_id: int, date_from=None, date_to=None):
    """(task, activity, floor) tuples for reportable activities."""
    q = (
        db.session.query(RoomTask, Activity, Floor)
        .join(Activity, RoomTask.activity_id == Activity.id)
        .join(Floor, Activity.floor_id == Floor.id)
        .filter(RoomTask.org_id == org_id, Activity.status.in_(["active", "closed"]))
    )
    if date_from:
        q = q.filter(Activity.scheduled_date >= date_from)
    if date_to:
        q = q.filter(Activity.scheduled_date <= date_to)
    return q.all()


def organisation_summary(org_id: int, pass_threshold, *, date_from=None, date_to=None) -> dict:
    """Org-wide quality figures.

    Returns:
        {"tasks": {status: count}, "total_tasks", "evaluation": {...},
         "activities": {status: count}, "open_deficiencies"}
    """
    rows = _task_rows(org_id, date_from, date_to)
    tasks = [task for task, _, _ in rows]

    by_status = {status: 0 for status in sorted(ROOM_TASK_STATUSES)}
    for task in tasks:
        by_status[task.status] += 1

    activity_q = db.session.query(Activity.status, func.count(Activity.id)).filter(Activity.org_id == org_id)
    if date_from:
        activity_q = activity_q.filter(Activity.scheduled_date >= date_from)
    if date_to:
        activity_q = activity_q.filter(Activity.scheduled_date <= date_to)
    activities = dict(activity_q.group_by(Activity.status).all())

    open_deficiencies = (
        Deficiency.query
        .filter(Deficiency.org_id == org_id, Deficiency.status.in_(OPEN_DEFICIENCY_STATUSES))
        .count()
    )

    return {
        "tasks": by_status,
        "total_tasks": len(tasks),
        "evaluation": evaluate(tasks, pass_threshold).to_dict(),
        "activities": activities,
        "open_deficiencies": open_deficiencies,
    }


def pass_rate_by_worker(org_id: int, pass_threshold, *, date_from=None, date_to=None) -> list[dict]:
    """Pass rate per assigned worker, best first; unrated workers last."""
    groups = defaultdict(list)
    for task, _, _ in _task_rows(org_id, date_from, date_to):
        if task.assigned_to:
            groups[task.assigned_to].append(task)

    report = []
    for worker, tasks in groups.items():
        row = {"worker": worker, "tasks": len(tasks)}
        row.update(evaluate(tasks, pass_threshold).to_dict())
        report.append(row)
    report.sort(key=lambda r: (r["pass_rate"] is None, -(r["pass_rate"] or 0), r["worker"]))
    return report


def pass_rate_by_floor(org_id: int, pass_threshold, *, date_from=None, date_to=None) -> list[dict]:
    """Pass rate per floor, ordered by building then floor number."""
    groups = defaultdict(list)
    floors = {}
    for task, _, floor in _task_rows(org_id, date_from, date_to):
        groups[floor.id].append(task)
        floors[floor.id] = floor

    report = []
    for floor_id, tasks in groups.items():
        floor = floors[floor_id]
        row = {
            "floor_id": floor_id,
            "building_name": floor.building_name,
            "floor_number": floor.floor_number,
            "floor_name": floor.floor_name,
            "tasks": len(tasks),
        }
        row.update(evaluate(tasks, pass_threshold).to_dict())
        report.append(row)
    report.sort(key=lambda r: (r["building_name"] or "", r["floor_number"] or 0))
    return report


def pass_rate_by_building(org_id: int, pass_threshold, *, date_from=None, date_to=None) -> list[dict]:
    """Pass rate per building (all floors pooled)."""
    groups = defaultdict(list)
    for task, _, floor in _task_rows(org_id, date_from, date_to):
        groups[floor.building_name].append(task)

    report = []
    for building, tasks in sorted(groups.items(), key=lambda kv: kv[0] or ""):
        row = {"building_name": building, "tasks": len(tasks)}
        row.update(evaluate(tasks, pass_threshold).to_dict())
        report.append(row)
    return report
