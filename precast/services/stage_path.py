"""
Stage path resolution.

An element type travels through an ordered list of project stage ids.
This module loads that list, validates it against the project's stages
and answers successor / predecessor questions.

Rules:
  - A missing path is NotFoundError.
  - An empty path, a duplicated id, or an id that is not a stage of the
    same project is ConfigurationError: the request fails and nothing advances.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from precast.core.exceptions import ConfigurationError, NotFoundError
from precast.models import db
from precast.models.project import ElementTypePath, ProjectStage

logger = logging.getLogger(__name__)


def validate_path(path: list[int], *, element_type_id: int | None = None) -> list[int]:
    """Reject empty paths and duplicated stage ids. Returns the path unchanged."""
    if not path:
        raise ConfigurationError(
            f"Stage path for element type {element_type_id} is empty",
            details={"element_type_id": element_type_id},
        )
    seen = set()
    for stage_id in path:
        if stage_id in seen:
            raise ConfigurationError(
                f"Stage {stage_id} appears twice in the path of element type {element_type_id}",
                details={"element_type_id": element_type_id, "stage_id": stage_id},
            )
        seen.add(stage_id)
    return path


def path_of(element_type_id: int, *, project_id: int | None = None) -> list[int]:
    """Return the validated, ordered stage ids for an element type.

    When ``project_id`` is given, every id must also reference a stage of
    that project.

    Raises:
        NotFoundError: no path row exists for the element type.
        ConfigurationError: the stored path is empty, malformed or inconsistent.
    """
    row = db.session.execute(
        select(ElementTypePath).where(ElementTypePath.element_type_id == element_type_id)
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError(resource="ElementTypePath", resource_id=element_type_id)

    try:
        path = row.stage_ids
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Stage path for element type {element_type_id} is malformed",
            details={"element_type_id": element_type_id, "raw": str(row.stage_path)},
        ) from exc

    validate_path(path, element_type_id=element_type_id)

    scope_project = project_id if project_id is not None else row.project_id
    known = set(
        db.session.execute(
            select(ProjectStage.id).where(
                ProjectStage.project_id == scope_project,
                ProjectStage.id.in_(path),
            )
        ).scalars()
    )
    unknown = [stage_id for stage_id in path if stage_id not in known]
    if unknown:
        logger.error(
            "Stage path for element_type_id=%s references unknown stages %s (project_id=%s)",
            element_type_id, unknown, scope_project,
        )
        raise ConfigurationError(
            f"Stage path for element type {element_type_id} references unknown stages",
            details={"element_type_id": element_type_id, "unknown_stage_ids": unknown},
        )
    return path


def successor_of(path: list[int], stage_id: int) -> int | None:
    """Stage after ``stage_id``; None when it is last or absent."""
    try:
        idx = path.index(stage_id)
    except ValueError:
        return None
    if idx + 1 < len(path):
        return path[idx + 1]
    return None


def predecessor_of(path: list[int], stage_id: int) -> int | None:
    """Stage before ``stage_id``; None when it is first or absent."""
    try:
        idx = path.index(stage_id)
    except ValueError:
        return None
    if idx > 0:
        return path[idx - 1]
    return None


def position_of(path: list[int], stage_id: int) -> int | None:
    try:
        return path.index(stage_id)
    except ValueError:
        return None
