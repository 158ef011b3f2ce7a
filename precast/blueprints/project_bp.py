"""
Project blueprint: kanban views and the caller's production history.

Endpoints:
    GET /api/v1/projects/<id>/views
    GET /api/v1/projects/<id>/production-history   ?limit=
"""

from flask import Blueprint, jsonify

from precast.blueprints import limit_arg
from precast.middleware.session_auth import current_user
from precast.services import production_history, view_projection

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")


@project_bp.route("/projects/<int:project_id>/views", methods=["GET"])
def views(project_id):
    items = view_projection.project_views(project_id, current_user().user_id)
    return jsonify({"project_id": project_id, "items": items, "total": len(items)}), 200


@project_bp.route("/projects/<int:project_id>/production-history", methods=["GET"])
def production_history_for_user(project_id):
    items = production_history.history_for_user(
        project_id, current_user().user_id, limit=limit_arg(),
    )
    return jsonify({"project_id": project_id, "items": items, "total": len(items)}), 200
