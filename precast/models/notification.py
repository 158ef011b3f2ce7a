"""
Precast Kanban backend
Notification delivery models.

Models:
    - Notification:  in-app notification record with read tracking
    - DeviceToken:   push registration of a user's mobile device
    - EmailLog:      one row per outbound email attempt
"""

from datetime import datetime, timezone

from precast.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_STATUSES = {"unread", "read"}
EMAIL_STATUSES = {"sent", "logged", "failed"}


def _utcnow():
    return datetime.now(timezone.utc)


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per intent.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    action = db.Column(db.String(500), default="", comment="Deep link opened by the client")
    payload = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="unread")
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def mark_read(self):
        self.status = "read"
        self.read_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "action": self.action,
            "payload": self.payload or {},
            "status": self.status,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class DeviceToken(db.Model):
    """FCM registration token of one device."""

    __tablename__ = "device_tokens"
    __table_args__ = (
        db.UniqueConstraint("user_id", "token", name="uq_device_tokens_user_token"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    token = db.Column(db.String(500), nullable=False)
    platform = db.Column(db.String(20), default="android")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<DeviceToken user={self.user_id} platform={self.platform}>"


class EmailLog(db.Model):
    """Audit of an outbound email (sent, logged in dev mode, or failed)."""

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False)
    recipient_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="logged")
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_user_id": self.recipient_user_id,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
