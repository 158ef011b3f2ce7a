"""
Precast Kanban backend
Identity models read by the production core.

Models:
    - User:         person who can be a stage assignee, QC inspector or yard manager
    - UserSession:  opaque session token issued by the login collaborator

Login, refresh-token rotation and device limits live outside this service;
the core only resolves an ``Authorization`` header to a user.
"""

from datetime import datetime, timezone

from precast.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    """Platform user (read-only to the production core)."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False, default="")
    last_name = db.Column(db.String(100), nullable=False, default="")
    email = db.Column(db.String(255), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.full_name}>"


class UserSession(db.Model):
    """
    Session row created by the login collaborator.

    ``session_id`` is the raw value clients send in the Authorization header.
    """

    __tablename__ = "user_sessions"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(128), nullable=False, unique=True, index=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    host_name = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", lazy="joined")

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        now = now or _utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires <= now

    def __repr__(self):
        return f"<UserSession user={self.user_id}>"
