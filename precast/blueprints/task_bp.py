"""
Task blueprint.

Endpoints:
    POST /api/v1/tasks
        body {project_id, name, description?, priority?, start_date?, end_date?,
              selection: [{floor_id, element_type_id, quantity, stockyard_id?, billable?}]}
"""

from flask import Blueprint, jsonify

from precast.blueprints import json_body
from precast.middleware.session_auth import current_user
from precast.services import activity_service

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")


@task_bp.route("/tasks", methods=["POST"])
def create_task():
    tasks = activity_service.create_tasks(current_user().user_id, json_body())
    return jsonify({"message": "Task created", "tasks": tasks}), 201
