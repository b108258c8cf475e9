"""
Cleaning Operations Platform
Notification Blueprint.

Provides the caller's in-app inbox:
    GET   /notifications               — list (?unread_only=true, limit, offset)
    GET   /notifications/unread-count
    PATCH /notifications/<id>/read
    POST  /notifications/mark-all-read
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from cleanops.blueprints import current_actor, register_error_handlers
from cleanops.services.notification import NotificationService
from cleanops.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor = current_actor()
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_recipient(
        actor.user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(actor.user_id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_actor().user_id)})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, current_actor().user_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    count = NotificationService.mark_all_read(current_actor().user_id)
    return jsonify({"marked_read": count})
