"""
Precast Kanban backend
Notification Service.

The progression engine never talks to a delivery channel. It collects
``NotificationIntent`` objects while it works and the caller hands them
to ``dispatch_intents`` once the transition has committed. Each intent is
delivered, in order, through three best-effort channels:

    1. a persisted ``notifications`` row (own commit)
    2. an FCM push to every registered device of the recipient
    3. a templated email, when the recipient has an address

A failing channel is logged at WARNING and never propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from precast.models import db
from precast.models.auth import User
from precast.models.notification import Notification
from precast.services.email_service import EmailService
from precast.services.push_service import PushService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationIntent:
    """Something a user should hear about once the surrounding transaction commits."""
    recipient_user_id: int
    title: str
    body: str
    action_url: str = ""
    payload: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "recipient_user_id": self.recipient_user_id,
            "title": self.title,
            "body": self.body,
            "action_url": self.action_url,
            "payload": dict(self.payload),
        }


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", action="", payload=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            user_id=user_id,
            title=title,
            message=message,
            action=action,
            payload=payload or {},
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50):
        """Notifications of one user, newest first."""
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.status == "unread")
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return list(db.session.execute(stmt).scalars())

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read. Returns None if not theirs."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif


def _deliver_row(intent: NotificationIntent) -> None:
    try:
        NotificationService.create(
            user_id=intent.recipient_user_id,
            title=intent.title,
            message=intent.body,
            action=intent.action_url,
            payload=intent.payload,
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Notification row failed: user_id=%s error=%s",
                       intent.recipient_user_id, exc)


def _deliver_push(intent: NotificationIntent, push: PushService) -> None:
    data = dict(intent.payload)
    data.setdefault("action", intent.action_url)
    try:
        push.send_to_user(intent.recipient_user_id, intent.title, intent.body, data)
    except Exception as exc:
        logger.warning("Push delivery failed: user_id=%s error=%s",
                       intent.recipient_user_id, exc)


def _deliver_email(intent: NotificationIntent) -> None:
    try:
        user = db.session.get(User, intent.recipient_user_id)
        if user is None or not user.email:
            logger.debug("Email skipped: user_id=%s has no address", intent.recipient_user_id)
            return
        EmailService.send_from_template(
            to_email=user.email,
            to_name=user.full_name,
            recipient_user_id=user.id,
            template_name="activity_notification",
            context={
                "recipient_name": user.full_name,
                "title": intent.title,
                "body": intent.body,
                "action_url": intent.action_url,
            },
        )
    except Exception as exc:
        db.session.rollback()
        logger.warning("Email delivery failed: user_id=%s error=%s",
                       intent.recipient_user_id, exc)


def dispatch_intents(intents: list[NotificationIntent], push: PushService | None = None) -> int:
    """Deliver committed intents in order. Returns how many were attempted."""
    if not intents:
        return 0
    push = push or PushService()
    for intent in intents:
        logger.info("Dispatching notification: user_id=%s title='%s'",
                    intent.recipient_user_id, intent.title)
        _deliver_row(intent)
        _deliver_push(intent, push)
        _deliver_email(intent)
    return len(intents)
