from __future__ import annotations

from flask import Blueprint, jsonify, request

from uniket.extensions import db
from uniket.services import order_service
from uniket.utils.auth import require_user
from uniket.utils.rate_limit import sensitive_operation

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")

_INIT_DONE = False


@orders_bp.before_app_request
def _ensure_tables_once():
    global _INIT_DONE
    if _INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        pass
    _INIT_DONE = True


@orders_bp.post("/orders")
@sensitive_operation("orders.create")
def create_order():
    user = require_user("customer", "admin")
    payload = request.get_json(silent=True) or {}
    order = order_service.create_order(user, payload)
    return jsonify({"ok": True, "message": "Order created successfully", "order": order.to_dict()}), 201


@orders_bp.get("/orders/user")
def my_orders():
    user = require_user()
    rows = order_service.list_customer_orders(user)
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows]}), 200


@orders_bp.get("/orders/vendor")
def vendor_orders():
    user = require_user("vendor", "admin")
    rows = order_service.list_vendor_orders(user)
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows]}), 200


@orders_bp.get("/orders/reports")
def order_reports():
    require_user("admin")
    return jsonify({"ok": True, **order_service.order_reports()}), 200


@orders_bp.get("/orders/track/<tracking_id>")
def track_public(tracking_id: str):
    return jsonify({"ok": True, **order_service.track_by_tracking_id(tracking_id)}), 200


@orders_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    user = require_user()
    order = order_service.get_order(order_id, user)
    payload = order.to_dict()
    if order.tracking is not None:
        payload["tracking"] = order.tracking.to_dict()
    if order.rating is not None:
        payload["rating"] = order.rating.to_dict()
    return jsonify({"ok": True, "order": payload}), 200


@orders_bp.get("/orders/<int:order_id>/tracking")
def order_tracking(order_id: int):
    user = require_user()
    return jsonify({"ok": True, **order_service.get_order_tracking(order_id, user)}), 200


@orders_bp.put("/orders/<int:order_id>/status")
@sensitive_operation("orders.status")
def update_status(order_id: int):
    user = require_user("vendor", "admin")
    data = request.get_json(silent=True) or {}
    order = order_service.update_order_status(
        order_id,
        user,
        data.get("status"),
        data.get("estimatedDeliveryTime"),
    )
    return jsonify({"ok": True, "message": "Order status updated successfully", "order": order.to_dict()}), 200


@orders_bp.put("/orders/<int:order_id>/cancel")
@sensitive_operation("orders.cancel")
def cancel_order(order_id: int):
    user = require_user()
    order = order_service.cancel_order(order_id, user)
    return jsonify({"ok": True, "message": "Order cancelled successfully", "order": order.to_dict()}), 200


@orders_bp.post("/orders/<int:order_id>/rate")
@sensitive_operation("orders.rate")
def rate_order(order_id: int):
    user = require_user()
    data = request.get_json(silent=True) or {}
    categories = data.get("categories")
    rating = order_service.rate_order(
        order_id,
        user,
        data.get("rating"),
        data.get("comment"),
        categories if isinstance(categories, dict) else None,
    )
    return jsonify({"ok": True, "message": "Order rated successfully", "rating": rating.to_dict()}), 200
