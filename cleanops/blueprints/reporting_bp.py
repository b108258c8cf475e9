"""
Reporting & Settings Blueprint.

Endpoints:
    GET /reports/summary      — org-wide task counts, pass rate vs. threshold
    GET /reports/workers      — pass rate per worker
    GET /reports/floors       — pass rate per building floor
    GET /reports/buildings    — pass rate per building
    GET /settings             — organisation settings
    PUT /settings             — {"pass_threshold": 0..100} (admin)

Report endpoints accept ?date_from=YYYY-MM-DD&date_to=YYYY-MM-DD.
"""

import logging

from flask import Blueprint, jsonify, request

from cleanops.blueprints import current_actor, register_error_handlers
from cleanops.services import reporting
from cleanops.services.permission import check_permission
from cleanops.services.settings_service import get_pass_threshold, get_settings, update_pass_threshold
from cleanops.utils.helpers import parse_date

logger = logging.getLogger(__name__)

reporting_bp = Blueprint("reporting", __name__, url_prefix="/api/v1")
register_error_handlers(reporting_bp)


def _report_args():
    actor = current_actor()
    check_permission(actor, "report_view")
    return actor, {
        "date_from": parse_date(request.args.get("date_from")),
        "date_to": parse_date(request.args.get("date_to")),
    }


@reporting_bp.route("/reports/summary", methods=["GET"])
def summary():
    actor, window = _report_args()
    return jsonify(reporting.organisation_summary(actor.org_id, get_pass_threshold(actor.org_id), **window))


@reporting_bp.route("/reports/workers", methods=["GET"])
def by_worker():
    actor, window = _report_args()
    items = reporting.pass_rate_by_worker(actor.org_id, get_pass_threshold(actor.org_id), **window)
    return jsonify({"items": items, "total": len(items)})


@reporting_bp.route("/reports/floors", methods=["GET"])
def by_floor():
    actor, window = _report_args()
    items = reporting.pass_rate_by_floor(actor.org_id, get_pass_threshold(actor.org_id), **window)
    return jsonify({"items": items, "total": len(items)})


@reporting_bp.route("/reports/buildings", methods=["GET"])
def by_building():
    actor, window = _report_args()
    items = reporting.pass_rate_by_building(actor.org_id, get_pass_threshold(actor.org_id), **window)
    return jsonify({"items": items, "total": len(items)})


@reporting_bp.route("/settings", methods=["GET"])
def read_settings():
    return jsonify(get_settings(current_actor().org_id))


@reporting_bp.route("/settings", methods=["PUT"])
def write_settings():
    data = request.get_json(silent=True) or {}
    org = update_pass_threshold(current_actor(), data.get("pass_threshold"))
    return jsonify({"org_id": org.id, "pass_threshold": org.pass_threshold})
