"""
Production history: the append-only CompleteProduction log.

Every status write made by the progression engine (and the initial
InProgress event of a freshly created activity) lands here as a new row.
Rows are never updated or deleted by the service layer and survive the
activity's terminal flag.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timezone

from sqlalchemy import select

from precast.core.exceptions import NotFoundError
from precast.models import db
from precast.models.production import Activity, CompleteProduction

logger = logging.getLogger(__name__)


def record_event(activity: Activity, *, stage_id: int, user_id: int | None, status: str,
                 now: datetime | None = None) -> CompleteProduction:
    """Append one event inside the caller's transaction (flushed, not committed)."""
    now = now or datetime.now(timezone.utc)
    task = activity.task
    event = CompleteProduction(
        task_id=activity.task_id,
        activity_id=activity.id,
        project_id=activity.project_id,
        element_id=activity.element_id,
        element_type_id=task.element_type_id,
        floor_id=task.floor_id,
        stage_id=stage_id,
        user_id=user_id,
        status=status,
        started_at=now,
        updated_at=now,
    )
    db.session.add(event)
    db.session.flush()
    return event


def history_for_user(project_id: int, user_id: int, *, limit: int | None = None) -> list[dict]:
    """Events written by ``user_id`` in a project, newest first."""
    stmt = (
        select(CompleteProduction)
        .where(
            CompleteProduction.project_id == project_id,
            CompleteProduction.user_id == user_id,
        )
        .order_by(CompleteProduction.updated_at.desc(), CompleteProduction.id.desc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return [e.to_dict() for e in db.session.execute(stmt).scalars()]


def history_for_activity(activity_id: int) -> dict:
    """Timeline of one activity grouped by stage.

    Returns ``{"activity_id": .., "stages": [{"stage_id", "stage_name", "events": [...]}]}``;
    groups appear in the order their first event was written and events
    inside a group are ordered by ``updated_at`` ascending.
    """
    if db.session.get(Activity, activity_id) is None:
        raise NotFoundError(resource="Activity", resource_id=activity_id)

    events = db.session.execute(
        select(CompleteProduction)
        .where(CompleteProduction.activity_id == activity_id)
        .order_by(CompleteProduction.updated_at.asc(), CompleteProduction.id.asc())
    ).scalars()

    groups: OrderedDict[int, dict] = OrderedDict()
    for event in events:
        group = groups.get(event.stage_id)
        if group is None:
            group = {
                "stage_id": event.stage_id,
                "stage_name": event.stage.name if event.stage else None,
                "events": [],
            }
            groups[event.stage_id] = group
        group["events"].append(event.to_dict())

    return {"activity_id": activity_id, "stages": list(groups.values())}
