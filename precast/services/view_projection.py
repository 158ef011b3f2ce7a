"""
Kanban view projection.

For every open activity of a project, lay out the element type's full
stage ladder with a display status per stage and the edit rights of the
requesting user. Position in the path (not stage id) decides whether a
stage is behind, at, or ahead of the activity. Read-only.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from precast.core.exceptions import NotFoundError
from precast.models import db
from precast.models.production import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    Activity,
    is_completed,
)
from precast.models.project import Project
from precast.services.progression import WINDOW_FIELDS
from precast.services.stage_path import path_of, position_of
from precast.services.stage_registry import StageInfo, parallel_window, stages_for_project

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"


def _display(status_value, qc_value, qc_assign):
    status = STATUS_COMPLETED if is_completed(status_value) else STATUS_IN_PROGRESS
    if is_completed(qc_value) or (not qc_assign and status == STATUS_COMPLETED):
        qc = STATUS_COMPLETED
    else:
        qc = STATUS_IN_PROGRESS
    return status, qc


def project_stage_ladder(activity, path, stages, window, user_id):
    """Per-stage display rows for one activity."""
    current = stages[activity.stage_id]
    current_pos = position_of(path, activity.stage_id)
    window_ids = {s.id for s in (window.mesh_mould, window.reinforcement)
                  if s is not None and s.id in path}
    in_window = current.kind.is_parallel and current.id in window_ids
    reinforcement_crew = window.reinforcement.assigned_to if window.reinforcement else None

    ladder = []
    for index, stage_id in enumerate(path):
        stage: StageInfo = stages[stage_id]
        is_current = index == current_pos or (in_window and stage_id in window_ids)

        if in_window and stage_id in window_ids:
            status_field, qc_field = WINDOW_FIELDS[stage.kind]
            status, qc = _display(
                getattr(activity, status_field), getattr(activity, qc_field), stage.qc_assign,
            )
        elif index < current_pos:
            status, qc = STATUS_COMPLETED, STATUS_COMPLETED
        elif index == current_pos:
            status, qc = _display(activity.status, activity.qc_status, stage.qc_assign)
        else:
            status, qc = STATUS_PENDING, STATUS_PENDING

        editable = False
        if is_current:
            if user_id == stage.assigned_to:
                editable = True
            elif stage_id in window_ids and user_id in (reinforcement_crew, current.assigned_to):
                editable = True

        ladder.append({
            "stage_id": stage_id,
            "name": stage.name,
            "order": stage.order,
            "kind": stage.kind.value,
            "assigned_to": stage.assigned_to,
            "qc_id": stage.qc_id,
            "paper_id": stage.paper_id,
            "qc_assign": stage.qc_assign,
            "status": status,
            "qc_status": qc,
            "current": is_current,
            "editable": editable,
            "qc_editable": bool(stage.qc_assign and stage.qc_id is not None and user_id == stage.qc_id),
        })
    return ladder


def project_views(project_id, user_id):
    """View rows for every open activity of ``project_id``, as seen by ``user_id``."""
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    stages = stages_for_project(project_id)
    window = parallel_window(project_id, stages)
    activities = db.session.execute(
        select(Activity)
        .where(Activity.project_id == project_id, Activity.completed.is_(False))
        .order_by(Activity.id)
    ).unique().scalars()

    paths: dict[int, list[int]] = {}
    views = []
    for activity in activities:
        element_type_id = activity.task.element_type_id
        if element_type_id not in paths:
            paths[element_type_id] = path_of(element_type_id, project_id=project_id)
        path = paths[element_type_id]
        if activity.stage_id not in path:
            logger.warning(
                "Activity %s sits on stage %s outside its path, skipped from view",
                activity.id, activity.stage_id,
            )
            continue
        row = activity.to_dict()
        row["stages"] = project_stage_ladder(activity, path, stages, window, user_id)
        views.append(row)
    return views
