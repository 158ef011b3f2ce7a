"""
Activity blueprint: status transitions, QC submissions and activity reads.

Endpoints:
    POST /api/v1/activities/<id>/status      body {status}
    POST /api/v1/activities/qc-answers       body {answers: [...], status: {activity_id, status}}
    GET  /api/v1/activities/<id>
    GET  /api/v1/activities/<id>/history
    GET  /api/v1/activities/assigned         ?project_id=

The caller comes from ``g.current_user`` (session middleware). Services own
commits; errors map to JSON through the app-level handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from precast.blueprints import json_body
from precast.middleware.session_auth import current_user
from precast.services import activity_service, production_history, progression, qc_intake
from precast.utils.errors import E, api_error

logger = logging.getLogger(__name__)

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1")


@activity_bp.route("/activities/<int:activity_id>/status", methods=["POST"])
def update_status(activity_id):
    data = json_body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    result = progression.update_activity_status(activity_id, current_user().user_id, data["status"])
    return jsonify(result.to_dict()), 200


@activity_bp.route("/activities/qc-answers", methods=["POST"])
def submit_qc_answers():
    """QC paper submission; answers and the QC status write commit together."""
    data = json_body()
    if "status" not in data:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    result = qc_intake.submit_answers(
        current_user().user_id, data.get("answers", []), data["status"],
    )
    return jsonify(result.to_dict()), 200


@activity_bp.route("/activities/assigned", methods=["GET"])
def assigned():
    project_id = request.args.get("project_id", type=int)
    items = activity_service.assigned_activities(current_user().user_id, project_id=project_id)
    return jsonify({"items": items, "total": len(items)}), 200


@activity_bp.route("/activities/<int:activity_id>", methods=["GET"])
def get_activity(activity_id):
    return jsonify(activity_service.get_activity(activity_id)), 200


@activity_bp.route("/activities/<int:activity_id>/history", methods=["GET"])
def activity_history(activity_id):
    return jsonify(production_history.history_for_activity(activity_id)), 200
