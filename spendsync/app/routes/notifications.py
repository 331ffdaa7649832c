"""
routes/notifications.py: The caller's notification inbox.

Endpoints (url_prefix=/api/v1/notifications):
  GET    /notifications        -> 200  newest first, with unread_count
  DELETE /notifications        -> 200  clear all
  DELETE /notifications/:id    -> 200  dismiss one
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from spendsync.app.extensions import change_feed, db
from spendsync.app.middleware.auth_middleware import require_auth
from spendsync.app.services import live_service, notification_service

notifications_bp = Blueprint("notifications", __name__)


@notifications_bp.route("", methods=["GET"])
@require_auth
def list_notifications():
    result = notification_service.list_notifications(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@notifications_bp.route("", methods=["DELETE"])
@require_auth
def clear_notifications():
    cleared = notification_service.clear_notifications(g.user_id, db.session)
    db.session.commit()
    live_service.publish_notifications([g.user_id], db.session, change_feed)
    return jsonify({"data": {"cleared": cleared}, "warnings": []}), 200


@notifications_bp.route("/<string:notification_id>", methods=["DELETE"])
@require_auth
def delete_notification(notification_id: str):
    notification_service.delete_notification(g.user_id, notification_id, db.session)
    db.session.commit()
    live_service.publish_notifications([g.user_id], db.session, change_feed)
    return jsonify({"data": {"id": notification_id, "deleted": True}, "warnings": []}), 200
