"""
Stage registry: who works and who inspects at each project stage.

Resolves a stage to a frozen ``StageInfo`` snapshot and locates the two
reserved stages ("Mesh & Mould", "Reinforcement") of a project. Name
matching for the reserved pair is case-insensitive; every caller branches
on ``StageInfo.kind`` rather than on the raw name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from precast.core.exceptions import ConfigurationError, NotFoundError
from precast.models import db
from precast.models.project import ProjectStage, StageKind, stage_kind_for_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageInfo:
    """Read-only view of one ProjectStage."""
    id: int
    project_id: int
    name: str
    order: int
    assigned_to: int | None
    qc_id: int | None
    paper_id: int | None
    qc_assign: bool

    @property
    def kind(self) -> StageKind:
        return stage_kind_for_name(self.name)

    @classmethod
    def from_model(cls, stage: ProjectStage) -> "StageInfo":
        return cls(
            id=stage.id,
            project_id=stage.project_id,
            name=stage.name,
            order=stage.order,
            assigned_to=stage.assigned_to,
            qc_id=stage.qc_id,
            paper_id=stage.paper_id,
            qc_assign=bool(stage.qc_assign),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "order": self.order,
            "kind": self.kind.value,
            "assigned_to": self.assigned_to,
            "qc_id": self.qc_id,
            "paper_id": self.paper_id,
            "qc_assign": self.qc_assign,
        }


@dataclass(frozen=True)
class ParallelWindow:
    """The project's Mesh & Mould / Reinforcement pair. Either side may be absent."""
    mesh_mould: StageInfo | None = None
    reinforcement: StageInfo | None = None

    def stage_for(self, kind: StageKind) -> StageInfo | None:
        if kind is StageKind.MESH_MOULD:
            return self.mesh_mould
        if kind is StageKind.REINFORCEMENT:
            return self.reinforcement
        return None

    @property
    def stage_ids(self) -> set[int]:
        return {s.id for s in (self.mesh_mould, self.reinforcement) if s is not None}


def resolve_stage(stage_id: int, *, project_id: int | None = None) -> StageInfo:
    """Return the StageInfo for ``stage_id``.

    Raises:
        NotFoundError: stage missing, or outside ``project_id`` when given.
    """
    stmt = select(ProjectStage).where(ProjectStage.id == stage_id)
    if project_id is not None:
        stmt = stmt.where(ProjectStage.project_id == project_id)
    stage = db.session.execute(stmt).scalar_one_or_none()
    if stage is None:
        raise NotFoundError(resource="ProjectStage", resource_id=stage_id)
    return StageInfo.from_model(stage)


def stages_for_project(project_id: int) -> dict[int, StageInfo]:
    """All stages of a project keyed by id, in pipeline order."""
    rows = db.session.execute(
        select(ProjectStage)
        .where(ProjectStage.project_id == project_id)
        .order_by(ProjectStage.order)
    ).scalars()
    return {s.id: StageInfo.from_model(s) for s in rows}


def find_by_name(project_id: int, name: str) -> int | None:
    """Locate a stage id by name inside a project; None when absent.

    Reserved names match case-insensitively. More than one stage of a
    reserved kind is a ConfigurationError.
    """
    kind = stage_kind_for_name(name)
    stages = stages_for_project(project_id).values()
    if kind is StageKind.REGULAR:
        for stage in stages:
            if stage.name == name:
                return stage.id
        return None

    matches = [s.id for s in stages if s.kind is kind]
    if len(matches) > 1:
        raise ConfigurationError(
            f"Project {project_id} has more than one '{name}' stage",
            details={"project_id": project_id, "stage_ids": matches},
        )
    return matches[0] if matches else None


def parallel_window(project_id: int, stages: dict[int, StageInfo] | None = None) -> ParallelWindow:
    """Return the project's reserved stage pair."""
    stages = stages if stages is not None else stages_for_project(project_id)
    found: dict[StageKind, list[StageInfo]] = {
        StageKind.MESH_MOULD: [],
        StageKind.REINFORCEMENT: [],
    }
    for stage in stages.values():
        if stage.kind.is_parallel:
            found[stage.kind].append(stage)

    for kind, matches in found.items():
        if len(matches) > 1:
            raise ConfigurationError(
                f"Project {project_id} has more than one {kind.value} stage",
                details={"project_id": project_id, "stage_ids": [s.id for s in matches]},
            )

    return ParallelWindow(
        mesh_mould=found[StageKind.MESH_MOULD][0] if found[StageKind.MESH_MOULD] else None,
        reinforcement=found[StageKind.REINFORCEMENT][0] if found[StageKind.REINFORCEMENT] else None,
    )
