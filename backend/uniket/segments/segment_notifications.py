from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from uniket.errors import NotFoundError, ServerError
from uniket.extensions import db
from uniket.models import Notification
from uniket.utils.auth import require_user
from uniket.utils.notify import archive_old_notifications

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")

LIST_LIMIT = 50


def _own_notification(user_id: int, notification_id: int) -> Notification:
    row = Notification.query.filter_by(id=int(notification_id), user_id=int(user_id)).first()
    if row is None:
        raise NotFoundError("Notification not found")
    return row


@notifications_bp.get("/notifications")
def list_notifications():
    user = require_user()
    # Opportunistic pruning keeps the newest rows only.
    archive_old_notifications(int(user.id))
    rows = (
        Notification.query.filter_by(user_id=int(user.id))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(LIST_LIMIT)
        .all()
    )
    return jsonify({"ok": True, "items": [x.to_dict() for x in rows]}), 200


@notifications_bp.get("/notifications/unread")
def unread_count():
    user = require_user()
    count = Notification.query.filter_by(user_id=int(user.id), read=False).count()
    return jsonify({"ok": True, "count": int(count)}), 200


@notifications_bp.put("/notifications/<int:notification_id>/read")
def mark_read(notification_id: int):
    user = require_user()
    row = _own_notification(int(user.id), notification_id)
    try:
        row.read = True
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("notifications.mark_read_failed id=%s", notification_id)
        raise ServerError("Failed to update notification")
    return jsonify({"ok": True, "notification": row.to_dict()}), 200


@notifications_bp.put("/notifications/read-all")
def mark_all_read():
    user = require_user()
    try:
        updated = Notification.query.filter_by(user_id=int(user.id), read=False).update(
            {"read": True}, synchronize_session=False
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("notifications.read_all_failed user_id=%s", user.id)
        raise ServerError("Failed to update notifications")
    return jsonify({"ok": True, "updated": int(updated or 0)}), 200


@notifications_bp.delete("/notifications/<int:notification_id>")
def delete_notification(notification_id: int):
    user = require_user()
    row = _own_notification(int(user.id), notification_id)
    db.session.delete(row)
    db.session.commit()
    return jsonify({"ok": True, "message": "Notification deleted"}), 200


@notifications_bp.delete("/notifications")
def delete_all_notifications():
    user = require_user()
    removed = Notification.query.filter_by(user_id=int(user.id)).delete(synchronize_session=False)
    db.session.commit()
    return jsonify({"ok": True, "deleted": int(removed or 0)}), 200
