"""
Push delivery over the FCM HTTP v1 API.

All outbound push calls go through ``PushService``. Direct ``requests``
calls elsewhere in services or blueprints are not allowed.

Configuration (env vars):
    FCM_ENDPOINT      Full ``messages:send`` URL (default: None → log-only mode)
    FCM_ACCESS_TOKEN  OAuth2 bearer token used for every call

Testability: pass a mock ``session`` to PushService() instead of letting
it build a real requests.Session.
"""

from __future__ import annotations

import logging

import requests
from flask import current_app
from sqlalchemy import select

from precast.models import db
from precast.models.notification import DeviceToken

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class PushResult:
    """Outcome of one push fan-out.

    Attributes:
        sent:     number of device tokens accepted by FCM.
        failed:   number of tokens that errored.
        skipped:  True when push is unconfigured or the user has no devices.
    """

    def __init__(self, sent: int = 0, failed: int = 0, skipped: bool = False) -> None:
        self.sent = sent
        self.failed = failed
        self.skipped = skipped

    def __repr__(self) -> str:
        return f"<PushResult sent={self.sent} failed={self.failed} skipped={self.skipped}>"


class PushService:
    """Sends one notification to every registered device of a user."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("FCM_ENDPOINT"))

    @staticmethod
    def tokens_for(user_id: int) -> list[str]:
        return list(
            db.session.execute(
                select(DeviceToken.token).where(DeviceToken.user_id == user_id)
            ).scalars()
        )

    @staticmethod
    def build_message(token: str, title: str, body: str, data: dict[str, str]) -> dict:
        """FCM v1 payload; data values must be strings."""
        data = {k: str(v) for k, v in (data or {}).items()}
        return {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                "data": data,
                "android": {
                    "priority": "high",
                    "notification": {"sound": "default", "channel_id": "default"},
                },
                "apns": {
                    "headers": {"apns-priority": "10"},
                    "payload": {"aps": {"alert": {"title": title, "body": body}, "sound": "default"}},
                },
                "webpush": {
                    "notification": {"title": title, "body": body},
                    "fcm_options": {"link": data.get("action", "")},
                },
            }
        }

    def send_to_user(self, user_id: int, title: str, body: str,
                     data: dict[str, str] | None = None) -> PushResult:
        tokens = self.tokens_for(user_id)
        if not tokens:
            logger.debug("Push skipped: user_id=%s has no device tokens", user_id)
            return PushResult(skipped=True)

        if not self.is_configured():
            logger.info("Push (dev mode): user_id=%s devices=%d title='%s'",
                        user_id, len(tokens), title)
            return PushResult(skipped=True)

        cfg = current_app.config
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {cfg.get('FCM_ACCESS_TOKEN', '')}",
        }
        result = PushResult()
        for token in tokens:
            try:
                resp = self._session.post(
                    cfg["FCM_ENDPOINT"],
                    json=self.build_message(token, title, body, data or {}),
                    headers=headers,
                    timeout=cfg.get("FCM_TIMEOUT", _DEFAULT_TIMEOUT),
                )
                resp.raise_for_status()
                result.sent += 1
            except requests.RequestException as exc:
                result.failed += 1
                logger.warning("Push failed: user_id=%s token=%s... error=%s",
                               user_id, token[:20], exc)
        logger.info("Push sent: user_id=%s sent=%d failed=%d", user_id, result.sent, result.failed)
        return result
