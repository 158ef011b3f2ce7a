"""
Precast Kanban backend
Project pipeline models.

Models:
    - Project:          tenant-scoping container for stages, tasks and stock
    - ProjectStage:     one node of a project's production pipeline
    - ElementTypePath:  ordered stage ids an element type travels through

Stage kinds:
    Two stage names are reserved: "Mesh & Mould" and "Reinforcement".
    Together they form the parallel window; every other stage is regular.
    The kind is derived from the name so existing data needs no backfill.
"""

import enum
import json
from datetime import datetime, timezone

from precast.models import db


# ── Constants ────────────────────────────────────────────────────────────────

MESH_MOULD_NAME = "Mesh & Mould"
REINFORCEMENT_NAME = "Reinforcement"


class StageKind(str, enum.Enum):
    REGULAR = "regular"
    MESH_MOULD = "mesh_mould"
    REINFORCEMENT = "reinforcement"

    @property
    def is_parallel(self):
        return self is not StageKind.REGULAR


def stage_kind_for_name(name):
    """Return the StageKind for a stage name (case-insensitive, trimmed)."""
    normalized = (name or "").strip().lower()
    if normalized == MESH_MOULD_NAME.lower():
        return StageKind.MESH_MOULD
    if normalized == REINFORCEMENT_NAME.lower():
        return StageKind.REINFORCEMENT
    return StageKind.REGULAR


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# 1. Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(db.Model):
    """Precast project. Everything the core writes is row-scoped by project_id."""

    __tablename__ = "projects"

    project_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    stages = db.relationship(
        "ProjectStage",
        back_populates="project",
        order_by="ProjectStage.order",
        lazy="select",
    )

    def to_dict(self):
        return {"project_id": self.project_id, "name": self.name}

    def __repr__(self):
        return f"<Project {self.project_id}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ProjectStage
# ═════════════════════════════════════════════════════════════════════════════


class ProjectStage(db.Model):
    """
    One node in a project's pipeline.

    ``qc_assign`` gates the stage on a QC inspection by ``qc_id`` using the
    questionnaire bound through ``paper_id``.
    """

    __tablename__ = "project_stages"
    __table_args__ = (
        db.UniqueConstraint("project_id", "order", name="uq_project_stages_project_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(150), nullable=False)
    order = db.Column(db.Integer, nullable=False)
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    qc_assign = db.Column(db.Boolean, nullable=False, default=False)
    qc_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    paper_id = db.Column(db.Integer, nullable=True, comment="QC questionnaire bound to this stage")
    completion_stage = db.Column(db.Boolean, nullable=False, default=False)
    inventory_deduction = db.Column(db.Boolean, nullable=False, default=False)

    project = db.relationship("Project", back_populates="stages")

    @property
    def kind(self):
        return stage_kind_for_name(self.name)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "order": self.order,
            "kind": self.kind.value,
            "assigned_to": self.assigned_to,
            "qc_assign": self.qc_assign,
            "qc_id": self.qc_id,
            "paper_id": self.paper_id,
            "completion_stage": self.completion_stage,
            "inventory_deduction": self.inventory_deduction,
        }

    def __repr__(self):
        return f"<ProjectStage {self.id}: {self.name} (order={self.order})>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ElementTypePath
# ═════════════════════════════════════════════════════════════════════════════


def parse_stage_path(raw):
    """
    Decode a stored stage path into a list of ints.

    Accepts the JSON array written by this service, a Python list, or the
    legacy brace-delimited form ``"{1,2,3}"``. Raises ValueError on junk.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [int(v) for v in raw]
    text = str(raw).strip()
    if not text:
        return []
    if text.startswith("["):
        return [int(v) for v in json.loads(text)]
    text = text.strip("{}")
    if not text.strip():
        return []
    return [int(part.strip()) for part in text.split(",")]


class ElementTypePath(db.Model):
    """Ordered stage ids traversed by every element of one element type."""

    __tablename__ = "element_type_paths"

    id = db.Column(db.Integer, primary_key=True)
    element_type_id = db.Column(db.Integer, nullable=False, unique=True, index=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_path = db.Column(db.JSON, nullable=False, default=list)

    @property
    def stage_ids(self):
        return parse_stage_path(self.stage_path)

    def to_dict(self):
        return {
            "element_type_id": self.element_type_id,
            "project_id": self.project_id,
            "stage_path": self.stage_ids,
        }

    def __repr__(self):
        return f"<ElementTypePath type={self.element_type_id} path={self.stage_path}>"
