from __future__ import annotations

import logging

from uniket.errors import NotFoundError, ServerError, ValidationError
from uniket.extensions import db
from uniket.models import PickupPoint
from uniket.utils.cache_layer import build_cache_key, delete_prefix, get_json, set_json

logger = logging.getLogger(__name__)

_CACHE_SCOPE = "pickup_points"
REQUIRED_FIELDS = ("name", "region", "school", "location", "phone")


def list_pickup_points(region: str | None = None) -> list[dict]:
    region = (region or "").strip() or None
    key = build_cache_key(_CACHE_SCOPE, {"region": region})
    cached = get_json(key)
    if cached is not None:
        return cached
    query = PickupPoint.query.filter_by(is_active=True)
    if region:
        query = query.filter_by(region=region)
    items = [p.to_dict() for p in query.order_by(PickupPoint.name.asc()).all()]
    set_json(key, items)
    return items


def get_pickup_point(point_id) -> PickupPoint:
    try:
        point = db.session.get(PickupPoint, int(point_id))
    except (TypeError, ValueError):
        point = None
    if point is None:
        raise NotFoundError("Pickup point not found")
    return point


def create_pickup_point(payload: dict) -> PickupPoint:
    payload = payload or {}
    missing = [k for k in REQUIRED_FIELDS if not str(payload.get(k) or "").strip()]
    if missing:
        raise ValidationError("Missing required fields", details={"missing": missing})
    point = PickupPoint(**{k: str(payload[k]).strip() for k in REQUIRED_FIELDS})
    try:
        db.session.add(point)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("pickup_points.create_failed name=%s", payload.get("name"))
        raise ServerError("Failed to create pickup point")
    delete_prefix(f"v1:{_CACHE_SCOPE}:")
    logger.info("pickup_points.created id=%s region=%s", point.id, point.region)
    return point
