"""
Precast Kanban backend
Stockyard models touched by the production core.

Models:
    - ProjectStockyard:  stockyard assigned to a project, with its manager
    - PrecastStock:      inventory row created when an element leaves the pipeline

Lifecycle (PrecastStock):
    created (stockyard=False) → accepted by the yard manager (stockyard=True)
"""

from datetime import datetime, timezone

from precast.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class ProjectStockyard(db.Model):
    """Yard available to a project. ``manager_id`` receives terminal notifications."""

    __tablename__ = "project_stockyards"
    __table_args__ = (
        db.UniqueConstraint("project_id", "stockyard_id", name="uq_project_stockyards_pair"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stockyard_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(150), nullable=False, default="")
    manager_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stockyard_id": self.stockyard_id,
            "name": self.name,
            "manager_id": self.manager_id,
        }

    def __repr__(self):
        return f"<ProjectStockyard project={self.project_id} yard={self.stockyard_id}>"


class PrecastStock(db.Model):
    """Finished element waiting in (or accepted into) a stockyard."""

    __tablename__ = "precast_stock"
    __table_args__ = (
        db.UniqueConstraint("element_id", "project_id", name="uq_precast_stock_element_project"),
    )

    id = db.Column(db.Integer, primary_key=True)
    element_id = db.Column(
        db.Integer, db.ForeignKey("elements.id", ondelete="CASCADE"), nullable=False,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False, index=True,
    )
    element_type_id = db.Column(db.Integer, nullable=True)
    target_location = db.Column(db.Integer, nullable=True)
    stockyard_id = db.Column(db.Integer, nullable=True)
    stockyard = db.Column(db.Boolean, nullable=False, default=False, comment="Physically accepted")
    production_date = db.Column(db.DateTime(timezone=True), default=_utcnow)
    accepted_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "element_id": self.element_id,
            "project_id": self.project_id,
            "element_type_id": self.element_type_id,
            "target_location": self.target_location,
            "stockyard_id": self.stockyard_id,
            "stockyard": self.stockyard,
            "production_date": self.production_date.isoformat() if self.production_date else None,
            "accepted_by": self.accepted_by,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
        }

    def __repr__(self):
        return f"<PrecastStock {self.id}: element={self.element_id} yard={self.stockyard_id}>"
