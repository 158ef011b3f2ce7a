"""
Precast Kanban backend
Production domain models.

Models:
    - Task:                 a batch of identical elements injected at one stage for one floor
    - Element:              one physical precast piece
    - Activity:             one element at one stage; the progression record
    - CompleteProduction:   append-only audit of every status write

Architecture:
    Project ──1:N──▶ Task ──1:N──▶ Activity ──1:N──▶ CompleteProduction
    Element ──1:N──▶ Activity   (at most one open activity per element and project)

Lifecycle:
    Activity (regular stage):  InProgress → assignee Completed → (qc_assign ? QC Completed)
                               → next stage | terminal
    Activity (parallel window): mesh/mould and reinforcement sub-machines run side by side
                               and must both finish before the window is left
    Terminal:                  completed = True, no further writes
"""

from datetime import datetime, timezone

from precast.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_IN_PROGRESS = "InProgress"
STATUS_COMPLETED = "Completed"

ACTIVITY_STATUSES = {STATUS_IN_PROGRESS, STATUS_COMPLETED}

# Sub-stage and top-level fields the progression engine is allowed to write.
STATUS_FIELDS = (
    "status",
    "qc_status",
    "mesh_mold_status",
    "mesh_mold_qc_status",
    "reinforcement_status",
    "reinforcement_qc_status",
)

PARALLEL_FIELDS = (
    "mesh_mold_status",
    "mesh_mold_qc_status",
    "reinforcement_status",
    "reinforcement_qc_status",
)


def normalize_status(value):
    """Map any casing of a status to its canonical spelling, or None."""
    if value is None:
        return None
    lowered = str(value).strip().lower().replace("_", "").replace(" ", "")
    if lowered == "completed":
        return STATUS_COMPLETED
    if lowered == "inprogress":
        return STATUS_IN_PROGRESS
    return None


def is_completed(value):
    return normalize_status(value) == STATUS_COMPLETED


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(db.Model):
    """Batch of elements of one type, for one floor, started at one stage."""

    __tablename__ = "tasks"

    task_id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(20), default="medium")
    element_type_id = db.Column(db.Integer, nullable=False, index=True)
    floor_id = db.Column(db.Integer, nullable=False)
    start_stage_id = db.Column(
        db.Integer, db.ForeignKey("project_stages.id", ondelete="SET NULL"), nullable=True,
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(30), nullable=False, default=STATUS_IN_PROGRESS)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "task_id": self.task_id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "element_type_id": self.element_type_id,
            "floor_id": self.floor_id,
            "start_stage_id": self.start_stage_id,
            "assigned_to": self.assigned_to,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "status": self.status,
        }

    def __repr__(self):
        return f"<Task {self.task_id}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Element
# ═════════════════════════════════════════════════════════════════════════════


class Element(db.Model):
    """
    One physical precast piece.

    ``instage`` is True while the element is inside the pipeline and flips back
    to False once a yard manager accepts it into stock. ``status`` mirrors the
    name of the stage the element currently sits in.
    """

    __tablename__ = "elements"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    element_name = db.Column(db.String(150), nullable=False, default="")
    element_type_id = db.Column(db.Integer, nullable=False, index=True)
    target_location = db.Column(db.Integer, nullable=True, comment="Floor (hierarchy) id")
    instage = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(150), nullable=True)
    billable = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "element_name": self.element_name,
            "element_type_id": self.element_type_id,
            "target_location": self.target_location,
            "instage": self.instage,
            "status": self.status,
            "billable": self.billable,
        }

    def __repr__(self):
        return f"<Element {self.id}: {self.element_name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Activity
# ═════════════════════════════════════════════════════════════════════════════


class Activity(db.Model):
    """
    Progression record of one element at one stage.

    While the element is inside the parallel window a single row carries both
    sub-machines through the ``mesh_mold_*`` and ``reinforcement_*`` fields;
    the top-level ``status`` / ``qc_status`` are not authoritative there.
    """

    __tablename__ = "activities"
    __table_args__ = (
        db.Index(
            "uq_activities_open_element_project",
            "element_id",
            "project_id",
            unique=True,
            postgresql_where=db.text("completed IS FALSE"),
            sqlite_where=db.text("completed = 0"),
        ),
        db.Index("ix_activities_project_completed", "project_id", "completed"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.task_id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
    )
    element_id = db.Column(
        db.Integer, db.ForeignKey("elements.id", ondelete="CASCADE"), nullable=False,
    )
    name = db.Column(db.String(150), nullable=False, default="")
    priority = db.Column(db.String(20), default="medium")
    stage_id = db.Column(
        db.Integer, db.ForeignKey("project_stages.id"), nullable=False, index=True,
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    qc_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    paper_id = db.Column(db.Integer, nullable=True)
    stockyard_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=STATUS_IN_PROGRESS)
    qc_status = db.Column(db.String(20), nullable=False, default=STATUS_IN_PROGRESS)
    mesh_mold_status = db.Column(db.String(20), nullable=True)
    mesh_mold_qc_status = db.Column(db.String(20), nullable=True)
    reinforcement_status = db.Column(db.String(20), nullable=True)
    reinforcement_qc_status = db.Column(db.String(20), nullable=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    task = db.relationship("Task", lazy="joined")
    stage = db.relationship("ProjectStage", lazy="joined")
    element = db.relationship("Element", lazy="select")

    def clear_parallel_fields(self):
        for field in PARALLEL_FIELDS:
            setattr(self, field, None)

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "project_id": self.project_id,
            "element_id": self.element_id,
            "name": self.name,
            "priority": self.priority,
            "stage_id": self.stage_id,
            "stage_name": self.stage.name if self.stage else None,
            "assigned_to": self.assigned_to,
            "qc_id": self.qc_id,
            "paper_id": self.paper_id,
            "stockyard_id": self.stockyard_id,
            "status": self.status,
            "qc_status": self.qc_status,
            "mesh_mold_status": self.mesh_mold_status,
            "mesh_mold_qc_status": self.mesh_mold_qc_status,
            "reinforcement_status": self.reinforcement_status,
            "reinforcement_qc_status": self.reinforcement_qc_status,
            "completed": self.completed,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "element_type_id": self.task.element_type_id if self.task else None,
            "floor_id": self.task.floor_id if self.task else None,
        }

    def __repr__(self):
        return f"<Activity {self.id}: element={self.element_id} stage={self.stage_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. CompleteProduction (audit)
# ═════════════════════════════════════════════════════════════════════════════


class CompleteProduction(db.Model):
    """
    Append-only production history. One row per status write.

    Rows outlive the activity's terminal flag so finished elements keep their
    timeline. Readers order by ``updated_at``.
    """

    __tablename__ = "complete_production"
    __table_args__ = (
        db.Index("ix_complete_production_project_user_ts", "project_id", "user_id", "updated_at"),
        db.Index("ix_complete_production_activity_stage", "activity_id", "stage_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.task_id", ondelete="CASCADE"), nullable=False)
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False,
    )
    element_id = db.Column(db.Integer, db.ForeignKey("elements.id", ondelete="CASCADE"), nullable=False)
    element_type_id = db.Column(db.Integer, nullable=False)
    floor_id = db.Column(db.Integer, nullable=True)
    stage_id = db.Column(db.Integer, db.ForeignKey("project_stages.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(20), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    stage = db.relationship("ProjectStage", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "activity_id": self.activity_id,
            "project_id": self.project_id,
            "element_id": self.element_id,
            "element_type_id": self.element_type_id,
            "floor_id": self.floor_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage.name if self.stage else None,
            "user_id": self.user_id,
            "status": self.status,
            "started_at": _iso(self.started_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<CompleteProduction {self.id}: activity={self.activity_id} {self.status}>"
