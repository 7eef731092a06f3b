from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from uniket.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ServerError,
    ValidationError,
)
from uniket.extensions import db
from uniket.models import Order, OrderRating, OrderTracking, PickupPoint, Product, User
from uniket.utils.auth import is_admin
from uniket.utils.notify import (
    NotificationSink,
    NotificationType,
    OrderRefData,
    OrderStatusData,
    get_notification_sink,
)
from uniket.utils.realtime import RealtimePublisher, get_realtime_publisher

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_WINDOW = timedelta(days=7)
TRACKING_REFRESH_INTERVAL = timedelta(hours=24)
RATING_CATEGORIES = ("delivery", "quality", "value", "communication")


class OrderStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    ALLOWED = {
        PENDING: {PENDING, PROCESSING, SHIPPED, DELIVERED, CANCELLED},
        PROCESSING: {PROCESSING, SHIPPED, DELIVERED, CANCELLED},
        SHIPPED: {SHIPPED, DELIVERED, CANCELLED},
        DELIVERED: {DELIVERED},
        CANCELLED: {CANCELLED},
    }

    @classmethod
    def is_valid(cls, value: str | None) -> bool:
        return (value or "") in cls.ALLOWED

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.ALLOWED.get(current, {current})


class DeliveryMethod:
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


@dataclass
class TrackingEvent:
    status: str
    location: str
    timestamp: datetime
    description: str

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
        }


def generate_tracking_id() -> str:
    return f"TRK-{uuid.uuid4().hex[:8].upper()}"


def parse_datetime(value, *, field_name: str = "estimatedDeliveryTime") -> datetime | None:
    """Parse an ISO-8601 string into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid {field_name}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_int(value, *, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _load_order(order_id: int) -> Order:
    order = db.session.get(Order, _to_int(order_id, default=0))
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _is_party(order: Order, user: User) -> bool:
    return int(order.customer_id) == int(user.id) or order.vendor_id == int(user.id)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def create_order(
    customer: User,
    payload: dict,
    *,
    sink: NotificationSink | None = None,
) -> Order:
    payload = payload or {}
    items = payload.get("items")
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        raise ValidationError("No items provided")

    # Single-item order model: only the first line is persisted.
    item = items[0]
    product_id = _to_int(item.get("productId") or item.get("product_id"))
    quantity = max(1, _to_int(item.get("quantity"), default=1) or 1)

    shipping = payload.get("shippingAddress") or {}
    if not isinstance(shipping, dict) or not all(
        str(shipping.get(k) or "").strip() for k in ("name", "phone", "email")
    ):
        raise ValidationError("Shipping information is required")

    product = db.session.get(Product, product_id) if product_id else None
    if product is None:
        raise NotFoundError("Product not found")

    delivery_method = str(payload.get("deliveryMethod") or DeliveryMethod.DELIVERY).strip().upper()
    if delivery_method not in (DeliveryMethod.DELIVERY, DeliveryMethod.PICKUP):
        raise ValidationError("Invalid delivery method")

    pickup_point_id = None
    if delivery_method == DeliveryMethod.PICKUP:
        pickup_point_id = _to_int(payload.get("pickupPointId"))
        if not pickup_point_id:
            raise ValidationError("Pickup point is required for pickup orders")
        if db.session.get(PickupPoint, pickup_point_id) is None:
            raise NotFoundError("Selected pickup point not found")

    if product.is_ticket and product.ticket_details is None:
        raise ValidationError("Ticket product is missing event details")

    total_raw = payload.get("totalAmount")
    try:
        total = float(total_raw) if total_raw not in (None, "") else float(product.price or 0.0) * quantity
    except (TypeError, ValueError):
        raise ValidationError("Invalid totalAmount")
    if not math.isfinite(total) or total < 0:
        raise ValidationError("Invalid totalAmount")

    order = Order(
        customer_id=int(customer.id),
        product_id=int(product.id),
        quantity=quantity,
        total=total,
        status=OrderStatus.PENDING,
        delivery_method=delivery_method,
        pickup_point_id=pickup_point_id,
        payment_method=str(payload.get("paymentMethod") or "card")[:32],
        payment_ref=str(payload.get("paymentRef") or "N/A")[:120],
        tracking_id=generate_tracking_id(),
    )
    order.shipping_address = {
        "name": str(shipping.get("name")).strip(),
        "phone": str(shipping.get("phone")).strip(),
        "email": str(shipping.get("email")).strip(),
    }
    try:
        db.session.add(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(
            "orders.create_failed customer_id=%s product_id=%s", customer.id, product.id
        )
        raise ServerError("Failed to create order")

    logger.info(
        "orders.created order_id=%s customer_id=%s product_id=%s tracking_id=%s",
        order.id,
        customer.id,
        product.id,
        order.tracking_id,
    )
    _after_order_created(order, product, sink=sink or get_notification_sink())
    return order


def _after_order_created(order: Order, product: Product, *, sink: NotificationSink) -> None:
    sink.best_effort_notify(
        user_id=int(product.vendor_id),
        type=NotificationType.NEW_ORDER,
        message=f"New order #{order.id} received",
        data=OrderRefData(order_id=int(order.id), tracking_id=order.tracking_id),
        role="vendor",
    )

    if product.is_ticket:
        from uniket.services.ticket_service import create_tickets

        try:
            create_tickets(
                order_id=int(order.id),
                product_id=int(product.id),
                user_id=int(order.customer_id),
                quantity=int(order.quantity),
                sink=sink,
            )
        except Exception:
            db.session.rollback()
            logger.exception("orders.ticket_issue_failed order_id=%s", order.id)

    from uniket.services.fraud.rules import detect_suspicious_orders

    try:
        detect_suspicious_orders(int(order.customer_id), sink=sink)
    except Exception:
        db.session.rollback()
        logger.exception("orders.fraud_check_failed customer_id=%s", order.customer_id)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def update_order_status(
    order_id: int,
    actor: User,
    status: str,
    estimated_delivery_time=None,
    *,
    sink: NotificationSink | None = None,
    publisher: RealtimePublisher | None = None,
) -> Order:
    target = str(status or "").strip().lower()
    if not OrderStatus.is_valid(target):
        raise ValidationError("Invalid status")
    eta = parse_datetime(estimated_delivery_time)

    order = _load_order(order_id)
    if not (is_admin(actor) or order.vendor_id == int(actor.id)):
        raise AuthorizationError("Not authorized to update this order")

    current = (order.status or OrderStatus.PENDING).strip().lower()
    if not OrderStatus.can_transition(current, target):
        raise ConflictError(f"Cannot change order status from {current} to {target}")

    now = datetime.utcnow()
    try:
        if target == OrderStatus.SHIPPED and order.tracking is None:
            tracking = OrderTracking(
                id=order.tracking_id,
                order_id=int(order.id),
                status="in_transit",
                current_location="Vendor Location",
                carrier="Local Delivery",
                estimated_delivery=eta or (now + DEFAULT_DELIVERY_WINDOW),
                last_update=now,
                next_update=now + TRACKING_REFRESH_INTERVAL,
            )
            tracking.append_history(
                TrackingEvent(
                    status="in_transit",
                    location="Vendor Location",
                    timestamp=now,
                    description="Order has been shipped",
                )
            )
            db.session.add(tracking)
        order.status = target
        if eta is not None:
            order.estimated_delivery_time = eta
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("orders.status_update_failed order_id=%s status=%s", order_id, target)
        raise ServerError("Failed to update order status")

    logger.info("orders.status_updated order_id=%s from=%s to=%s actor_id=%s", order.id, current, target, actor.id)
    _invalidate_tracking_cache(order)

    message = f"Your order #{order.id} (Tracking ID: {order.tracking_id}) has been {target}"
    if eta is not None:
        message += f" with estimated delivery on {eta.date().isoformat()}"
    status_data = OrderStatusData(
        order_id=int(order.id),
        status=target,
        tracking_id=order.tracking_id,
        estimated_delivery_time=eta,
    )
    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(order.customer_id),
        type=NotificationType.ORDER_STATUS,
        message=message,
        data=status_data,
    )
    (publisher or get_realtime_publisher()).publish_to_user(
        int(order.customer_id),
        "order_status_update",
        {
            "orderId": int(order.id),
            "status": target,
            "estimatedDeliveryTime": eta.isoformat() if eta else None,
        },
    )
    return order


def cancel_order(order_id: int, actor: User, *, sink: NotificationSink | None = None) -> Order:
    order = _load_order(order_id)
    if not _is_party(order, actor):
        raise AuthorizationError("Not authorized to cancel this order")
    if order.status == OrderStatus.CANCELLED:
        raise ConflictError("Order is already cancelled")
    if order.status == OrderStatus.DELIVERED:
        raise ConflictError("Cannot cancel a delivered order")

    try:
        order.status = OrderStatus.CANCELLED
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("orders.cancel_failed order_id=%s actor_id=%s", order_id, actor.id)
        raise ServerError("Failed to cancel order")

    logger.info("orders.cancelled order_id=%s actor_id=%s", order.id, actor.id)
    _invalidate_tracking_cache(order)
    sink = sink or get_notification_sink()
    message = f"Order #{order.id} has been cancelled"
    data = OrderRefData(order_id=int(order.id), tracking_id=order.tracking_id)
    sink.best_effort_notify(
        user_id=int(order.customer_id),
        type=NotificationType.ORDER_CANCELLED,
        message=message,
        data=data,
    )
    sink.best_effort_notify(
        user_id=int(order.vendor_id),
        type=NotificationType.ORDER_CANCELLED,
        message=message,
        data=data,
        role="vendor",
    )
    return order


# ---------------------------------------------------------------------------
# Rating
# ---------------------------------------------------------------------------


def _parse_rating(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("Invalid rating value")
    try:
        rating = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("Invalid rating value")
    if float(value) != rating or rating < 1 or rating > 5:
        raise ValidationError("Invalid rating value")
    return rating


def rate_order(
    order_id: int,
    actor: User,
    rating,
    comment: str | None = None,
    categories: dict | None = None,
    *,
    sink: NotificationSink | None = None,
) -> OrderRating:
    score = _parse_rating(rating)
    order = _load_order(order_id)
    if int(order.customer_id) != int(actor.id):
        raise AuthorizationError("Not authorized to rate this order")
    if order.status != OrderStatus.DELIVERED:
        raise ValidationError("Can only rate delivered orders")
    if order.rating is not None:
        raise ConflictError("Order already rated")

    merged = {name: score for name in RATING_CATEGORIES}
    for name, value in (categories or {}).items():
        if name in merged and value is not None:
            merged[name] = _parse_rating(value)

    row = OrderRating(
        order_id=int(order.id),
        user_id=int(actor.id),
        rating=score,
        comment=(comment or "").strip() or None,
    )
    row.categories = merged
    try:
        db.session.add(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("orders.rate_failed order_id=%s user_id=%s", order_id, actor.id)
        # A concurrent rating can win the unique constraint.
        if OrderRating.query.filter_by(order_id=int(order.id)).first() is not None:
            raise ConflictError("Order already rated")
        raise ServerError("Failed to rate order")

    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(order.vendor_id),
        type=NotificationType.ORDER_RATED,
        message=f"Order #{order.id} has been rated {score} stars",
        data=OrderRefData(order_id=int(order.id)),
        role="vendor",
    )
    return row


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def _tracking_cache_key(order: Order, user_id: int) -> str:
    from uniket.utils.cache_layer import build_cache_key

    return build_cache_key("order_tracking", {"order_id": int(order.id), "user_id": int(user_id)})


def _invalidate_tracking_cache(order: Order) -> None:
    from uniket.utils.cache_layer import build_cache_key, delete_prefix

    delete_prefix(build_cache_key("order_tracking", {"order_id": int(order.id)}) + "&")


def get_order_tracking(order_id: int, actor: User) -> dict:
    from uniket.utils.cache_layer import get_json, set_json

    order = db.session.get(Order, _to_int(order_id, default=0))
    if order is None or not _is_party(order, actor):
        raise NotFoundError("Order not found or you do not have access to this order")
    if order.tracking is None:
        raise NotFoundError("Tracking information not available for this order")

    key = _tracking_cache_key(order, int(actor.id))
    cached = get_json(key)
    if cached is not None:
        return cached
    payload = {
        "orderId": int(order.id),
        "trackingId": order.tracking_id,
        "status": order.status,
        "tracking": order.tracking.to_dict(),
        "product": order.product.to_dict() if order.product is not None else None,
    }
    set_json(key, payload)
    return payload


def track_by_tracking_id(tracking_id: str) -> dict:
    code = (tracking_id or "").strip().upper()
    order = Order.query.filter_by(tracking_id=code).first() if code else None
    if order is None:
        raise NotFoundError("Order not found")
    return {
        "orderId": int(order.id),
        "trackingId": order.tracking_id,
        "status": order.status,
        "estimatedDeliveryTime": order.estimated_delivery_time.isoformat() if order.estimated_delivery_time else None,
        "tracking": order.tracking.to_dict() if order.tracking is not None else None,
    }


def get_order(order_id: int, actor: User) -> Order:
    order = _load_order(order_id)
    if not (is_admin(actor) or _is_party(order, actor)):
        raise AuthorizationError("Not authorized to view this order")
    return order


def list_customer_orders(user: User) -> list[Order]:
    return (
        Order.query.filter_by(customer_id=int(user.id))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_vendor_orders(user: User) -> list[Order]:
    return (
        Order.query.join(Product, Product.id == Order.product_id)
        .filter(Product.vendor_id == int(user.id))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def order_reports() -> dict:
    by_status = {name: 0 for name in OrderStatus.ALLOWED}
    for status, count in db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
        by_status[str(status)] = int(count or 0)
    revenue = (
        db.session.query(func.coalesce(func.sum(Order.total), 0.0))
        .filter(Order.status == OrderStatus.DELIVERED)
        .scalar()
    )
    return {
        "totalOrders": int(sum(by_status.values())),
        "byStatus": by_status,
        "deliveredRevenue": float(revenue or 0.0),
    }
