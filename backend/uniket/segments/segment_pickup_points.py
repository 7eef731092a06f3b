from __future__ import annotations

from flask import Blueprint, jsonify, request

from uniket.services import pickup_service
from uniket.utils.auth import require_user

pickup_bp = Blueprint("pickup_bp", __name__, url_prefix="/api")


@pickup_bp.get("/pickup-points")
def list_pickup_points():
    items = pickup_service.list_pickup_points(request.args.get("region"))
    return jsonify({"ok": True, "items": items}), 200


@pickup_bp.get("/pickup-points/<int:point_id>")
def get_pickup_point(point_id: int):
    point = pickup_service.get_pickup_point(point_id)
    return jsonify({"ok": True, "pickup_point": point.to_dict()}), 200


@pickup_bp.post("/pickup-points")
def create_pickup_point():
    require_user("admin")
    point = pickup_service.create_pickup_point(request.get_json(silent=True) or {})
    return jsonify({"ok": True, "pickup_point": point.to_dict()}), 201
