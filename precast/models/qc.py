"""
Precast Kanban backend
QC answer model.

Models:
    - QCAnswer: one (question, option) pick submitted by a QC inspector for one activity
"""

from datetime import datetime, timezone

from precast.models import db


class QCAnswer(db.Model):
    """
    One answered question of a QC paper.

    ``element_id`` and ``activity_id`` are stamped server-side from the
    activity being inspected; the client never supplies them. Replays of the
    same batch are stored again (no uniqueness on the answer tuple).
    """

    __tablename__ = "qc_answers"
    __table_args__ = (
        db.Index("ix_qc_answers_stage_task_project", "stage_id", "task_id", "project_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    qc_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Submitting inspector",
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False,
    )
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(db.Integer, nullable=False)
    option_id = db.Column(db.Integer, nullable=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.task_id", ondelete="CASCADE"), nullable=False)
    stage_id = db.Column(db.Integer, db.ForeignKey("project_stages.id"), nullable=False)
    element_id = db.Column(db.Integer, db.ForeignKey("elements.id", ondelete="CASCADE"), nullable=False)
    comment = db.Column(db.Text, default="")
    image_path = db.Column(db.String(500), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "qc_id": self.qc_id,
            "project_id": self.project_id,
            "activity_id": self.activity_id,
            "question_id": self.question_id,
            "option_id": self.option_id,
            "task_id": self.task_id,
            "stage_id": self.stage_id,
            "element_id": self.element_id,
            "comment": self.comment,
            "image_path": self.image_path,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<QCAnswer {self.id}: q={self.question_id} o={self.option_id}>"
