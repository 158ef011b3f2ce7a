"""
Notification blueprint: the caller's in-app notifications.

Endpoints:
    GET  /api/v1/notifications            ?unread=true&limit=
    POST /api/v1/notifications/<id>/read
"""

from flask import Blueprint, jsonify, request

from precast.blueprints import limit_arg
from precast.core.exceptions import NotFoundError
from precast.middleware.session_auth import current_user
from precast.services.notification import NotificationService

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    items = NotificationService.list_for_user(
        current_user().user_id, unread_only=unread_only, limit=limit_arg(default_limit=50),
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": len(items)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, current_user().user_id)
    if notif is None:
        raise NotFoundError(resource="Notification", resource_id=notification_id)
    return jsonify(notif.to_dict()), 200
