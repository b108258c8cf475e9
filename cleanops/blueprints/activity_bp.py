"""
Activity & Room Task Blueprint.

Endpoints:
  Activity:   GET/POST /activities, GET/PUT /activities/<id>
              POST /activities/<id>/publish | /cancel | /close
              GET  /activities/<id>/evaluation
  RoomTask:   GET  /tasks/mine, GET /tasks/<id>
              POST /tasks/<id>/start | /complete | /inspect
              PUT  /tasks/<id>/items/<item_id>
              POST /tasks/<id>/items/<item_id>/photo
              PUT  /tasks/<id>/assignment

Lifecycle failures come back from the services as TransitionResult and are
rendered with result_error(); the organisation's pass threshold is resolved
here and passed down explicitly.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from cleanops.blueprints import current_actor, register_error_handlers
from cleanops.core.exceptions import ValidationError
from cleanops.models.activity import ACTIVITY_STATUSES, RoomTask
from cleanops.services import activity_lifecycle as activities
from cleanops.services import room_task_lifecycle as tasks
from cleanops.services.helpers.scoped_queries import get_scoped
from cleanops.services.permission import is_assigned_worker
from cleanops.services.settings_service import get_pass_threshold
from cleanops.utils.errors import E, api_error, result_error
from cleanops.utils.helpers import parse_date

logger = logging.getLogger(__name__)

activity_bp = Blueprint("activities", __name__, url_prefix="/api/v1")
register_error_handlers(activity_bp)


def _json():
    return request.get_json(silent=True) or {}


# ═════════════════════════════════════════════════════════════════════════════
# Activity CRUD + lifecycle
# ═════════════════════════════════════════════════════════════════════════════

@activity_bp.route("/activities", methods=["GET"])
def list_activities():
    """List activities, optionally filtered by status, floor_id and date."""
    actor = current_actor()
    status = request.args.get("status")
    if status and status not in ACTIVITY_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"Unknown status: {status}")
    items = activities.list_activities(
        actor.org_id,
        status=status,
        floor_id=request.args.get("floor_id", type=int),
        scheduled_date=parse_date(request.args.get("date")),
    )
    return jsonify({"items": [a.to_dict() for a in items], "total": len(items)})


@activity_bp.route("/activities", methods=["POST"])
def create_activity():
    """Create a draft activity."""
    activity = activities.create_activity(current_actor(), _json())
    return jsonify(activity.to_dict()), 201


@activity_bp.route("/activities/<int:activity_id>", methods=["GET"])
def get_activity(activity_id):
    """Activity with its room tasks and the live pass-rate evaluation."""
    actor = current_actor()
    activity = activities.get_activity_or_404(activity_id, actor.org_id)
    data = activity.to_dict(include_tasks=True)
    data["evaluation"] = activities.evaluate_activity(
        activity.id, actor.org_id, get_pass_threshold(actor.org_id),
    ).to_dict()
    return jsonify(data)


@activity_bp.route("/activities/<int:activity_id>", methods=["PUT"])
def update_activity(activity_id):
    """Edit a draft activity's name, date, window or notes."""
    result = activities.update_activity(activity_id, current_actor(), _json())
    if not result.ok:
        return result_error(result)
    return jsonify(result.entity.to_dict())


@activity_bp.route("/activities/<int:activity_id>/publish", methods=["POST"])
def publish_activity(activity_id):
    """Publish a draft: body {"assignments": [{"room_id", "assigned_to"}]}."""
    data = _json()
    assignments = data.get("assignments", [])
    if not isinstance(assignments, list):
        return api_error(E.VALIDATION_INVALID, "assignments must be a list")
    result = activities.publish_activity(activity_id, assignments, current_actor())
    if not result.ok:
        return result_error(result)
    return jsonify({
        "message": result.message,
        "activity": result.entity.to_dict(include_tasks=True),
        "task_ids": result.details["task_ids"],
    })


@activity_bp.route("/activities/<int:activity_id>/cancel", methods=["POST"])
def cancel_activity(activity_id):
    result = activities.cancel_activity(activity_id, current_actor())
    if not result.ok:
        return result_error(result)
    return jsonify({
        "message": result.message,
        "activity": result.entity.to_dict(),
        "cancelled_tasks": result.details["cancelled_tasks"],
        "open_deficiencies": result.details["open_deficiencies"],
    })


@activity_bp.route("/activities/<int:activity_id>/close", methods=["POST"])
def close_activity(activity_id):
    """Close an activity and freeze its pass rate against the org threshold."""
    actor = current_actor()
    result = activities.close_activity(activity_id, actor, get_pass_threshold(actor.org_id))
    if not result.ok:
        return result_error(result)
    return jsonify({
        "message": result.message,
        "activity": result.entity.to_dict(),
        "evaluation": result.details["evaluation"],
    })


@activity_bp.route("/activities/<int:activity_id>/evaluation", methods=["GET"])
def activity_evaluation(activity_id):
    """Pass rate / outcome: frozen once closed, live before that."""
    actor = current_actor()
    evaluation = activities.evaluate_activity(activity_id, actor.org_id, get_pass_threshold(actor.org_id))
    return jsonify(evaluation.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Room tasks
# ═════════════════════════════════════════════════════════════════════════════

@activity_bp.route("/tasks/mine", methods=["GET"])
def my_tasks():
    """The caller's open room tasks on active activities."""
    actor = current_actor()
    include_terminal = request.args.get("all", "").lower() in ("1", "true")
    items = tasks.list_tasks_for_worker(actor.org_id, actor.user_id, include_terminal=include_terminal)
    return jsonify({"items": [t.to_dict() for t in items], "total": len(items)})


@activity_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    """Task detail with checklist items and responses."""
    actor = current_actor()
    task = get_scoped(RoomTask, task_id, org_id=actor.org_id)
    if actor.role == "janitor" and not is_assigned_worker(actor, task):
        return api_error(E.FORBIDDEN, "Task is not assigned to you")
    return jsonify(tasks.get_task_detail(task))


@activity_bp.route("/tasks/<int:task_id>/start", methods=["POST"])
def start_task(task_id):
    result = tasks.start_task(task_id, current_actor())
    if not result.ok:
        return result_error(result)
    return jsonify({"message": result.message, "task": result.entity.to_dict()})


@activity_bp.route("/tasks/<int:task_id>/items/<int:item_id>", methods=["PUT"])
def record_item_response(task_id, item_id):
    """Upsert a checklist item response: {"completed": bool, "note": str}."""
    data = _json()
    result = tasks.record_item_response(
        task_id, item_id, current_actor(),
        completed=data.get("completed", False),
        note=data.get("note"),
    )
    if not result.ok:
        return result_error(result)
    return jsonify(result.entity.to_dict())


@activity_bp.route("/tasks/<int:task_id>/items/<int:item_id>/photo", methods=["POST"])
def attach_item_photo(task_id, item_id):
    """Attach an already-uploaded photo: {"photo_url": str}."""
    result = tasks.attach_item_photo(task_id, item_id, current_actor(), _json().get("photo_url"))
    if not result.ok:
        return result_error(result)
    return jsonify(result.entity.to_dict()), 201


@activity_bp.route("/tasks/<int:task_id>/complete", methods=["POST"])
def complete_task(task_id):
    """Complete a task: {"status": "done" | "has_issues", "issue_note": str}."""
    data = _json()
    result = tasks.complete_task(task_id, current_actor(), data.get("status"), data.get("issue_note"))
    if not result.ok:
        return result_error(result)
    return jsonify({"message": result.message, "task": result.entity.to_dict()})


@activity_bp.route("/tasks/<int:task_id>/inspect", methods=["POST"])
def inspect_task(task_id):
    """Inspect a task: {"result": "inspected_pass" | "inspected_fail", "note", "severity"}."""
    data = _json()
    severity = data.get("severity") or current_app.config["DEFAULT_DEFICIENCY_SEVERITY"]
    result = tasks.inspect_task(
        task_id, current_actor(), data.get("result"), data.get("note"),
        deficiency_severity=severity,
    )
    if not result.ok:
        return result_error(result)
    return jsonify({
        "message": result.message,
        "task": result.entity.to_dict(),
        "deficiency_id": result.details.get("deficiency_id"),
    })


@activity_bp.route("/tasks/<int:task_id>/assignment", methods=["PUT"])
def assign_task(task_id):
    """(Re)assign a not-started task: {"assigned_to": user_id | null}."""
    data = _json()
    if "assigned_to" not in data:
        raise ValidationError("assigned_to is required", details={"assigned_to": "required"})
    result = tasks.assign_task(task_id, current_actor(), data["assigned_to"])
    if not result.ok:
        return result_error(result)
    return jsonify({"message": result.message, "task": result.entity.to_dict()})
