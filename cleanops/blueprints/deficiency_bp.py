"""
Deficiency Blueprint.

Endpoints:
    GET  /deficiencies                      — list (status, assigned_to, room_task_id, activity_id)
    GET  /deficiencies/<id>
    POST /tasks/<task_id>/deficiencies      — manual report
    POST /deficiencies/<id>/start
    POST /deficiencies/<id>/resolve         — {"note": str}
    PUT  /deficiencies/<id>/assignment      — {"assigned_to": user_id | null}
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from cleanops.blueprints import current_actor, register_error_handlers
from cleanops.models.deficiency import Deficiency
from cleanops.services import deficiency_tracker as tracker
from cleanops.services.helpers.scoped_queries import get_scoped
from cleanops.utils.errors import result_error

logger = logging.getLogger(__name__)

deficiency_bp = Blueprint("deficiencies", __name__, url_prefix="/api/v1")
register_error_handlers(deficiency_bp)


@deficiency_bp.route("/deficiencies", methods=["GET"])
def list_deficiencies():
    actor = current_actor()
    items = tracker.list_deficiencies(
        actor.org_id,
        status=request.args.get("status"),
        assigned_to=request.args.get("assigned_to"),
        room_task_id=request.args.get("room_task_id", type=int),
        activity_id=request.args.get("activity_id", type=int),
    )
    return jsonify({"items": [d.to_dict() for d in items], "total": len(items)})


@deficiency_bp.route("/deficiencies/<int:deficiency_id>", methods=["GET"])
def get_deficiency(deficiency_id):
    deficiency = get_scoped(Deficiency, deficiency_id, org_id=current_actor().org_id)
    return jsonify(deficiency.to_dict())


@deficiency_bp.route("/tasks/<int:task_id>/deficiencies", methods=["POST"])
def open_deficiency(task_id):
    """Report a deficiency on a room task."""
    data = request.get_json(silent=True) or {}
    result = tracker.open_deficiency(
        task_id, current_actor(),
        description=data.get("description"),
        severity=data.get("severity") or current_app.config["DEFAULT_DEFICIENCY_SEVERITY"],
        assigned_to=data.get("assigned_to"),
    )
    if not result.ok:
        return result_error(result)
    return jsonify(result.entity.to_dict()), 201


@deficiency_bp.route("/deficiencies/<int:deficiency_id>/start", methods=["POST"])
def start_deficiency(deficiency_id):
    result = tracker.start_deficiency(deficiency_id, current_actor())
    if not result.ok:
        return result_error(result)
    return jsonify(result.entity.to_dict())


@deficiency_bp.route("/deficiencies/<int:deficiency_id>/resolve", methods=["POST"])
def resolve_deficiency(deficiency_id):
    data = request.get_json(silent=True) or {}
    result = tracker.resolve_deficiency(deficiency_id, current_actor(), data.get("note"))
    if not result.ok:
        return result_error(result)
    return jsonify(result.entity.to_dict())


@deficiency_bp.route("/deficiencies/<int:deficiency_id>/assignment", methods=["PUT"])
def reassign_deficiency(deficiency_id):
    data = request.get_json(silent=True) or {}
    result = tracker.reassign_deficiency(deficiency_id, current_actor(), data.get("assigned_to"))
    if not result.ok:
        return result_error(result)
    return jsonify(result.entity.to_dict())
