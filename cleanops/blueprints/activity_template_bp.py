"""
Activity Template Blueprint.

Endpoints:
    GET/POST          /activity-templates                  — list (?floor_id=) / create
    GET/PUT/DELETE    /activity-templates/<id>
    POST              /activity-templates/<id>/activities  — draft from template
                                                             {"scheduled_date", "name"?, "notes"?}
    POST              /activities/<id>/save-as-template    — {"name": str}

Supervisor/admin only (activity_template_manage). Duplicate template names
within an organisation answer 409 ERR_CONFLICT_DUPLICATE.
"""

import logging

from flask import Blueprint, jsonify, request

from cleanops.blueprints import current_actor, register_error_handlers
from cleanops.services import activity_templates as svc

logger = logging.getLogger(__name__)

activity_template_bp = Blueprint("activity_templates", __name__, url_prefix="/api/v1")
register_error_handlers(activity_template_bp)


def _json():
    return request.get_json(silent=True) or {}


@activity_template_bp.route("/activity-templates", methods=["GET"])
def list_templates():
    items = svc.list_templates(current_actor(), request.args.get("floor_id", type=int))
    return jsonify({"items": [t.to_dict() for t in items], "total": len(items)})


@activity_template_bp.route("/activity-templates", methods=["POST"])
def create_template():
    template = svc.create_template(current_actor(), _json())
    return jsonify(template.to_dict()), 201


@activity_template_bp.route("/activity-templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(svc.get_template(template_id, current_actor()).to_dict())


@activity_template_bp.route("/activity-templates/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    template = svc.update_template(template_id, current_actor(), _json())
    return jsonify(template.to_dict())


@activity_template_bp.route("/activity-templates/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    svc.delete_template(template_id, current_actor())
    return jsonify({"deleted": True})


@activity_template_bp.route("/activity-templates/<int:template_id>/activities", methods=["POST"])
def create_activity_from_template(template_id):
    activity, assignments = svc.create_activity_from_template(template_id, current_actor(), _json())
    return jsonify({
        "activity": activity.to_dict(),
        "default_assignments": assignments,
    }), 201


@activity_template_bp.route("/activities/<int:activity_id>/save-as-template", methods=["POST"])
def save_activity_as_template(activity_id):
    template = svc.save_activity_as_template(activity_id, current_actor(), _json().get("name"))
    return jsonify(template.to_dict()), 201
