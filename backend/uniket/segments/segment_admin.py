from __future__ import annotations

from flask import Blueprint, jsonify, request

from uniket.errors import NotFoundError
from uniket.extensions import db
from uniket.models import AdminAlert, User
from uniket.services.fraud import perform_comprehensive_fraud_detection
from uniket.utils.auth import require_user
from uniket.utils.cache_layer import cache_stats
from uniket.utils.rate_limit import limiter_stats

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")


@admin_bp.get("/fraud/users/<int:user_id>")
def fraud_check_user(user_id: int):
    require_user("admin")
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")
    ip_address = (request.args.get("ip") or "").strip() or None
    result = perform_comprehensive_fraud_detection(user_id, ip_address)
    return jsonify({"ok": True, "userId": user_id, **result}), 200


@admin_bp.get("/alerts")
def list_alerts():
    require_user("admin")
    query = AdminAlert.query
    status = (request.args.get("status") or "").strip().upper()
    if status:
        query = query.filter_by(status=status)
    rows = query.order_by(AdminAlert.created_at.desc(), AdminAlert.id.desc()).limit(100).all()
    return jsonify({"ok": True, "items": [a.to_dict() for a in rows]}), 200


@admin_bp.get("/runtime")
def runtime_stats():
    require_user("admin")
    return jsonify({"ok": True, "cache": cache_stats(), "rate_limit": limiter_stats()}), 200
