"""
Activity service: task creation, element adoption and activity reads.

Creating a task adopts free elements (``instage=False``) of the selected
type and floor into the first stage of their element type's path. Each
adopted element gets one Activity bound to that stage's assignee, QC
inspector and paper, and one InProgress production-history event.

Transaction policy: this module owns commit/rollback. Notification
intents are dispatched after commit.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_, select

from precast.core.exceptions import NotFoundError, ValidationError
from precast.models import db
from precast.models.production import STATUS_IN_PROGRESS, Activity, Element, Task
from precast.models.project import Project, ProjectStage
from precast.models.stock import PrecastStock, ProjectStockyard
from precast.services import production_history
from precast.services.notification import NotificationIntent, dispatch_intents
from precast.services.progression import plan_url
from precast.services.stage_path import path_of
from precast.services.stage_registry import resolve_stage

logger = logging.getLogger(__name__)

VALID_PRIORITIES = {"low", "medium", "high", "critical"}


# ═════════════════════════════════════════════════════════════════════════════
# Input parsing
# ═════════════════════════════════════════════════════════════════════════════


def _parse_date(value, field_name):
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationError(
            f"{field_name} must be an ISO date (YYYY-MM-DD)", details={field_name: value},
        ) from exc


def _positive_int(value, field_name):
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be an integer", details={field_name: value}) from exc
    if number <= 0:
        raise ValidationError(f"{field_name} must be positive", details={field_name: value})
    return number


def _parse_selection(raw):
    if not isinstance(raw, list) or not raw:
        raise ValidationError("selection must be a non-empty list")
    entries = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"selection[{index}] must be an object")
        entries.append({
            "floor_id": _positive_int(item.get("floor_id"), f"selection[{index}].floor_id"),
            "element_type_id": _positive_int(
                item.get("element_type_id"), f"selection[{index}].element_type_id",
            ),
            "quantity": _positive_int(item.get("quantity"), f"selection[{index}].quantity"),
            "stockyard_id": (
                _positive_int(item["stockyard_id"], f"selection[{index}].stockyard_id")
                if item.get("stockyard_id") not in (None, "") else None
            ),
            "billable": bool(item.get("billable", True)),
        })
    return entries


# ═════════════════════════════════════════════════════════════════════════════
# Task creation
# ═════════════════════════════════════════════════════════════════════════════


def _free_elements(project_id, element_type_id, floor_id, quantity):
    """Oldest elements of a type/floor that are not in the pipeline and were never produced.

    An element with a PrecastStock row has already left the last stage, even
    after a yard manager accepts it and clears ``instage``.
    """
    open_activity = (
        select(Activity.id)
        .where(
            Activity.element_id == Element.id,
            Activity.project_id == project_id,
            Activity.completed.is_(False),
        )
        .exists()
    )
    produced = (
        select(PrecastStock.id)
        .where(
            PrecastStock.element_id == Element.id,
            PrecastStock.project_id == project_id,
        )
        .exists()
    )
    return list(
        db.session.execute(
            select(Element)
            .where(
                Element.project_id == project_id,
                Element.element_type_id == element_type_id,
                Element.target_location == floor_id,
                Element.instage.is_(False),
                ~open_activity,
                ~produced,
            )
            .order_by(Element.id)
            .limit(quantity)
            .with_for_update()
        ).scalars()
    )


def _check_stockyard(project_id, stockyard_id):
    if stockyard_id is None:
        return
    exists = db.session.execute(
        select(ProjectStockyard.id).where(
            ProjectStockyard.project_id == project_id,
            ProjectStockyard.stockyard_id == stockyard_id,
        )
    ).scalar_one_or_none()
    if exists is None:
        raise ValidationError(
            f"Stockyard {stockyard_id} is not assigned to project {project_id}",
            details={"stockyard_id": stockyard_id},
        )


def create_tasks(actor_id, data):
    """Create one Task per selection entry and adopt its elements.

    Returns:
        list of task dicts, each with ``activity_ids``.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        project_id = int(data.get("project_id"))
    except (TypeError, ValueError) as exc:
        raise ValidationError("project_id is required", details={"project_id": data.get("project_id")}) from exc
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    priority = (data.get("priority") or "medium").lower()
    if priority not in VALID_PRIORITIES:
        raise ValidationError(
            f"Invalid priority: {priority}", details={"allowed": sorted(VALID_PRIORITIES)},
        )
    start_date = _parse_date(data.get("start_date"), "start_date")
    end_date = _parse_date(data.get("end_date"), "end_date")
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    selection = _parse_selection(data.get("selection"))

    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    created = []
    intents = []
    try:
        for entry in selection:
            path = path_of(entry["element_type_id"], project_id=project_id)
            first = resolve_stage(path[0], project_id=project_id)
            _check_stockyard(project_id, entry["stockyard_id"])

            elements = _free_elements(
                project_id, entry["element_type_id"], entry["floor_id"], entry["quantity"],
            )
            if len(elements) < entry["quantity"]:
                raise ValidationError(
                    f"Only {len(elements)} free elements of type {entry['element_type_id']} "
                    f"on floor {entry['floor_id']}, {entry['quantity']} requested",
                    details={
                        "element_type_id": entry["element_type_id"],
                        "floor_id": entry["floor_id"],
                        "available": len(elements),
                    },
                )

            task = Task(
                project_id=project_id,
                name=name,
                description=data.get("description", ""),
                priority=priority,
                element_type_id=entry["element_type_id"],
                floor_id=entry["floor_id"],
                start_stage_id=first.id,
                assigned_to=first.assigned_to,
                start_date=start_date,
                end_date=end_date,
                status=STATUS_IN_PROGRESS,
            )
            db.session.add(task)
            db.session.flush()

            first_stage = db.session.get(ProjectStage, first.id)
            activity_ids = []
            for element in elements:
                element.instage = True
                element.status = first.name
                element.billable = entry["billable"]
                activity = Activity(
                    task=task,
                    project_id=project_id,
                    element_id=element.id,
                    name=element.element_name,
                    priority=priority,
                    stage=first_stage,
                    stage_id=first.id,
                    assigned_to=first.assigned_to,
                    qc_id=first.qc_id,
                    paper_id=first.paper_id,
                    stockyard_id=entry["stockyard_id"],
                    status=STATUS_IN_PROGRESS,
                    qc_status=STATUS_IN_PROGRESS,
                    completed=False,
                    start_date=start_date,
                    end_date=end_date,
                )
                db.session.add(activity)
                db.session.flush()
                production_history.record_event(
                    activity, stage_id=first.id, user_id=actor_id, status=STATUS_IN_PROGRESS,
                )
                activity_ids.append(activity.id)

            logger.info(
                "Task created: task_id=%s project_id=%s element_type_id=%s activities=%d",
                task.task_id, project_id, entry["element_type_id"], len(activity_ids),
            )
            item = task.to_dict()
            item["activity_ids"] = activity_ids
            created.append(item)

            if first.assigned_to is not None:
                intents.append(NotificationIntent(
                    recipient_user_id=first.assigned_to,
                    title="Task Assigned",
                    body=(
                        f"New task '{name}' with {len(activity_ids)} elements is waiting at "
                        f"{first.name} in project '{project.name}'"
                    ),
                    action_url=plan_url(project_id),
                    payload={
                        "action": "task_assigned",
                        "project_id": str(project_id),
                        "project_name": project.name,
                        "task_name": name,
                        "next_stage_name": first.name,
                    },
                ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    dispatch_intents(intents)
    return created


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_activity(activity_id):
    activity = db.session.get(Activity, activity_id)
    if activity is None:
        raise NotFoundError(resource="Activity", resource_id=activity_id)
    data = activity.to_dict()
    data["task"] = activity.task.to_dict() if activity.task else None
    data["element"] = activity.element.to_dict() if activity.element else None
    return data


def assigned_activities(user_id, project_id=None):
    """Open activities ``user_id`` can act on.

    Covers the activity's own assignee and QC, plus the crews and
    inspectors of a project's parallel stages for any activity inside
    that window.
    """
    user_stages = db.session.execute(
        select(ProjectStage).where(
            or_(ProjectStage.assigned_to == user_id, ProjectStage.qc_id == user_id)
        )
    ).scalars()
    window_projects = {s.project_id for s in user_stages if s.kind.is_parallel}
    window_stage_ids = []
    if window_projects:
        window_stage_ids = [
            s.id
            for s in db.session.execute(
                select(ProjectStage).where(ProjectStage.project_id.in_(window_projects))
            ).scalars()
            if s.kind.is_parallel
        ]

    conditions = [Activity.assigned_to == user_id, Activity.qc_id == user_id]
    if window_stage_ids:
        conditions.append(Activity.stage_id.in_(window_stage_ids))
    stmt = select(Activity).where(Activity.completed.is_(False), or_(*conditions))
    if project_id is not None:
        stmt = stmt.where(Activity.project_id == project_id)
    stmt = stmt.order_by(Activity.project_id, Activity.id)
    return [a.to_dict() for a in db.session.execute(stmt).unique().scalars()]
