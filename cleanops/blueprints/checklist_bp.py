"""
Checklist Blueprint.

Endpoints:
  ChecklistTemplate:  GET/POST /checklists, GET/PUT/DELETE /checklists/<id>
                      POST /checklists/<id>/default
  ChecklistItem:      POST /checklists/<id>/items, PUT/DELETE /checklist-items/<id>
                      PUT  /checklists/<id>/items/order   — {"item_ids": [...]}
  Override:           PUT/DELETE /rooms/<room_id>/checklist — {"template_id": int}
                      GET  /rooms/<room_id>/checklist      — the template that applies now

Writes require the checklist_manage permission (supervisor/admin).
"""

import logging

from flask import Blueprint, jsonify, request

from cleanops.blueprints import current_actor, register_error_handlers
from cleanops.models.checklist import ChecklistItem, ChecklistTemplate
from cleanops.models.facility import Room
from cleanops.services import checklist_service as svc
from cleanops.services.checklist_resolver import NoChecklistConfigured, resolve
from cleanops.services.helpers.scoped_queries import get_scoped
from cleanops.services.permission import check_permission
from cleanops.utils.errors import E, api_error

logger = logging.getLogger(__name__)

checklist_bp = Blueprint("checklists", __name__, url_prefix="/api/v1")
register_error_handlers(checklist_bp)


def _manager():
    actor = current_actor()
    check_permission(actor, "checklist_manage")
    return actor


def _template(template_id, org_id):
    return get_scoped(ChecklistTemplate, template_id, org_id=org_id)


# ═════════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════════

@checklist_bp.route("/checklists", methods=["GET"])
def list_templates():
    actor = current_actor()
    items = svc.list_templates(actor.org_id, request.args.get("room_type_id", type=int))
    return jsonify({"items": [t.to_dict() for t in items], "total": len(items)})


@checklist_bp.route("/checklists", methods=["POST"])
def create_template():
    actor = _manager()
    template = svc.create_template(actor.org_id, request.get_json(silent=True) or {})
    return jsonify(template.to_dict(include_items=True)), 201


@checklist_bp.route("/checklists/<int:template_id>", methods=["GET"])
def get_template(template_id):
    template = _template(template_id, current_actor().org_id)
    return jsonify(template.to_dict(include_items=True))


@checklist_bp.route("/checklists/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    actor = _manager()
    template = svc.update_template(_template(template_id, actor.org_id), request.get_json(silent=True) or {})
    return jsonify(template.to_dict(include_items=True))


@checklist_bp.route("/checklists/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    actor = _manager()
    svc.delete_template(_template(template_id, actor.org_id))
    return jsonify({"deleted": True})


@checklist_bp.route("/checklists/<int:template_id>/default", methods=["POST"])
def set_default(template_id):
    actor = _manager()
    template = svc.set_default_template(_template(template_id, actor.org_id))
    return jsonify(template.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════════

@checklist_bp.route("/checklists/<int:template_id>/items", methods=["POST"])
def add_item(template_id):
    actor = _manager()
    item = svc.add_item(_template(template_id, actor.org_id), request.get_json(silent=True) or {})
    return jsonify(item.to_dict()), 201


@checklist_bp.route("/checklists/<int:template_id>/items/order", methods=["PUT"])
def reorder_items(template_id):
    actor = _manager()
    data = request.get_json(silent=True) or {}
    items = svc.reorder_items(_template(template_id, actor.org_id), data.get("item_ids"))
    return jsonify({"items": [i.to_dict() for i in items]})


@checklist_bp.route("/checklist-items/<int:item_id>", methods=["PUT"])
def update_item(item_id):
    actor = _manager()
    item = get_scoped(ChecklistItem, item_id, org_id=actor.org_id)
    item = svc.update_item(item, request.get_json(silent=True) or {})
    return jsonify(item.to_dict())


@checklist_bp.route("/checklist-items/<int:item_id>", methods=["DELETE"])
def delete_item(item_id):
    actor = _manager()
    svc.delete_item(get_scoped(ChecklistItem, item_id, org_id=actor.org_id))
    return jsonify({"deleted": True})


# ═════════════════════════════════════════════════════════════════════════════
# Room overrides
# ═════════════════════════════════════════════════════════════════════════════

@checklist_bp.route("/rooms/<int:room_id>/checklist", methods=["GET"])
def room_checklist(room_id):
    """The template a room would get if an activity were published now."""
    room = get_scoped(Room, room_id, org_id=current_actor().org_id)
    try:
        template = resolve(room)
    except NoChecklistConfigured as exc:
        return api_error(E.NOT_FOUND, str(exc))
    return jsonify(template.to_dict(include_items=True))


@checklist_bp.route("/rooms/<int:room_id>/checklist", methods=["PUT"])
def set_room_override(room_id):
    actor = _manager()
    data = request.get_json(silent=True) or {}
    template_id = data.get("template_id")
    if not isinstance(template_id, int) or isinstance(template_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    override = svc.set_room_override(actor.org_id, room_id, template_id)
    return jsonify(override.to_dict())


@checklist_bp.route("/rooms/<int:room_id>/checklist", methods=["DELETE"])
def clear_room_override(room_id):
    actor = _manager()
    return jsonify({"deleted": svc.clear_room_override(actor.org_id, room_id)})
