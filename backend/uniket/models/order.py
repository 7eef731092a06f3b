from __future__ import annotations

import json
from datetime import datetime

from uniket.extensions import db


def _load_json(raw, default):
    raw = (raw or "").strip()
    if not raw:
        return default
    try:
        data = json.loads(raw)
    except Exception:
        return default
    return data if isinstance(data, type(default)) else default


def _dump_json(value) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), default=str)
    except Exception:
        return "{}" if isinstance(value, dict) else "[]"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    total = db.Column(db.Float, nullable=False, default=0.0)

    # pending | processing | shipped | delivered | cancelled
    status = db.Column(db.String(24), nullable=False, default="pending", index=True)

    delivery_method = db.Column(db.String(16), nullable=False, default="DELIVERY")  # DELIVERY | PICKUP
    pickup_point_id = db.Column(db.Integer, db.ForeignKey("pickup_points.id"), nullable=True)

    payment_method = db.Column(db.String(32), nullable=False, default="card")
    payment_ref = db.Column(db.String(120), nullable=False, default="N/A")

    shipping_address_json = db.Column(db.Text, nullable=True)

    tracking_id = db.Column(db.String(16), unique=True, index=True, nullable=False)
    estimated_delivery_time = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = db.relationship("User", foreign_keys=[customer_id], lazy="joined")
    product = db.relationship("Product", lazy="joined")
    pickup_point = db.relationship("PickupPoint", lazy="joined")
    tracking = db.relationship("OrderTracking", uselist=False, back_populates="order")
    rating = db.relationship("OrderRating", uselist=False, back_populates="order")

    @property
    def shipping_address(self) -> dict:
        return _load_json(self.shipping_address_json, {})

    @shipping_address.setter
    def shipping_address(self, value: dict) -> None:
        self.shipping_address_json = _dump_json(value or {})

    @property
    def vendor_id(self) -> int | None:
        return int(self.product.vendor_id) if self.product is not None else None

    def to_dict(self, *, include_product: bool = True):
        payload = {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "quantity": int(self.quantity or 0),
            "total": float(self.total or 0.0),
            "status": self.status or "pending",
            "delivery_method": self.delivery_method or "DELIVERY",
            "pickup_point_id": self.pickup_point_id,
            "payment_method": self.payment_method or "card",
            "payment_ref": self.payment_ref or "N/A",
            "shipping_address": self.shipping_address,
            "tracking_id": self.tracking_id,
            "estimated_delivery_time": _iso(self.estimated_delivery_time),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_product and self.product is not None:
            payload["product"] = self.product.to_dict()
        if self.pickup_point is not None:
            payload["pickup_point"] = self.pickup_point.to_dict()
        return payload


class OrderTracking(db.Model):
    __tablename__ = "order_trackings"

    # Keyed by the order's tracking id.
    id = db.Column(db.String(16), primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)

    status = db.Column(db.String(32), nullable=False, default="in_transit")
    history_json = db.Column(db.Text, nullable=False, default="[]")
    current_location = db.Column(db.String(255), nullable=True)
    carrier = db.Column(db.String(80), nullable=True)

    estimated_delivery = db.Column(db.DateTime, nullable=False)
    last_update = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    next_update = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    order = db.relationship("Order", back_populates="tracking")

    @property
    def history(self) -> list:
        return _load_json(self.history_json, [])

    def append_history(self, event) -> None:
        entries = self.history
        entries.append(event.to_dict() if hasattr(event, "to_dict") else dict(event))
        self.history_json = _dump_json(entries)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "history": self.history,
            "current_location": self.current_location,
            "carrier": self.carrier,
            "estimated_delivery": _iso(self.estimated_delivery),
            "last_update": _iso(self.last_update),
            "next_update": _iso(self.next_update),
        }


class OrderRating(db.Model):
    __tablename__ = "order_ratings"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=True)
    categories_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = db.relationship("Order", back_populates="rating")

    @property
    def categories(self) -> dict:
        return _load_json(self.categories_json, {})

    @categories.setter
    def categories(self, value: dict) -> None:
        self.categories_json = _dump_json(value or {})

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "rating": int(self.rating or 0),
            "comment": self.comment or "",
            "categories": self.categories,
            "created_at": _iso(self.created_at),
        }
