from __future__ import annotations

import logging
import math
from datetime import datetime

from uniket.errors import AuthorizationError, NotFoundError, ServerError, ValidationError
from uniket.extensions import db
from uniket.models import Product, Review, TicketDetails, User
from uniket.services.order_service import parse_datetime
from uniket.utils.auth import is_admin
from uniket.utils.cache_layer import build_cache_key, delete_prefix, get_json, set_json
from uniket.utils.notify import NotificationSink

logger = logging.getLogger(__name__)

_CACHE_SCOPE = "products"
REQUIRED_FIELDS = ("name", "description", "price")
TICKET_FIELDS = ("eventName", "eventDate", "eventLocation", "validUntil")


def _invalidate_listing() -> None:
    delete_prefix(f"v1:{_CACHE_SCOPE}:")


def _price(value, *, field_name: str = "price") -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name}")
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError(f"Invalid {field_name}")
    return round(amount, 2)


def _quantity(value) -> int:
    if value is None or value == "":
        return 1
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid quantity")
    if qty < 0:
        raise ValidationError("Invalid quantity")
    return qty


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _bidding_window(payload: dict) -> tuple[float, datetime]:
    if payload.get("startingBid") in (None, "") or not payload.get("bidEndDate"):
        raise ValidationError("Starting bid and bid end date are required when enabling bidding")
    starting = _price(payload.get("startingBid"), field_name="starting bid")
    end = parse_datetime(payload.get("bidEndDate"), field_name="bid end date format")
    if end <= datetime.utcnow():
        raise ValidationError("Bid end date must be in the future")
    return starting, end


def _ticket_details(raw) -> TicketDetails:
    raw = raw if isinstance(raw, dict) else {}
    missing = [k for k in TICKET_FIELDS if not str(raw.get(k) or "").strip()]
    if missing:
        raise ValidationError("Ticket details are required for ticket products", details={"missing": missing})
    event_date = parse_datetime(raw.get("eventDate"), field_name="eventDate")
    valid_until = parse_datetime(raw.get("validUntil"), field_name="validUntil")
    if valid_until < event_date:
        raise ValidationError("validUntil must not be before eventDate")
    return TicketDetails(
        event_name=str(raw["eventName"]).strip(),
        event_date=event_date,
        event_location=str(raw["eventLocation"]).strip(),
        ticket_type=(str(raw.get("ticketType") or "REGULAR").strip().upper() or "REGULAR"),
        valid_until=valid_until,
    )


def _screen(product: Product, sink: NotificationSink | None) -> bool:
    """Run the listing risk check; a failure here never blocks the write."""
    from uniket.services.fraud.rules import detect_suspicious_product

    try:
        return detect_suspicious_product(product, sink=sink)
    except Exception:
        db.session.rollback()
        logger.exception("products.fraud_check_failed product_id=%s", product.id)
        return False


def get_product(product_id) -> Product:
    try:
        product = db.session.get(Product, int(product_id))
    except (TypeError, ValueError):
        product = None
    if product is None:
        raise NotFoundError("Product not found")
    return product


def list_products(vendor_id=None) -> list[dict]:
    try:
        vendor_id = int(vendor_id) if vendor_id not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError("Invalid vendorId")
    key = build_cache_key(_CACHE_SCOPE, {"vendor": vendor_id})
    cached = get_json(key)
    if cached is not None:
        return cached
    query = Product.query.filter(Product.is_flagged.is_(False))
    if vendor_id is not None:
        query = query.filter(Product.vendor_id == vendor_id)
    items = [p.to_dict() for p in query.order_by(Product.created_at.desc(), Product.id.desc()).all()]
    set_json(key, items)
    return items


def create_product(vendor: User, payload: dict, *, sink: NotificationSink | None = None) -> tuple[Product, bool]:
    payload = payload or {}
    missing = [k for k in REQUIRED_FIELDS if payload.get(k) in (None, "") or not str(payload.get(k)).strip()]
    if missing:
        raise ValidationError("Missing required fields", details={"missing": missing})

    product = Product(
        vendor_id=int(vendor.id),
        name=str(payload["name"]).strip(),
        description=str(payload["description"]).strip(),
        price=_price(payload["price"]),
        image=(str(payload.get("image") or "").strip() or None),
        quantity=_quantity(payload.get("quantity")),
        is_ticket=_flag(payload.get("isTicket")),
    )
    if _flag(payload.get("enableBidding")):
        product.enable_bidding = True
        product.starting_bid, product.bid_end_date = _bidding_window(payload)
    if product.is_ticket:
        product.ticket_details = _ticket_details(payload.get("ticketDetails"))

    try:
        db.session.add(product)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("products.create_failed vendor_id=%s", vendor.id)
        raise ServerError("Failed to create product")

    _invalidate_listing()
    logger.info("products.created product_id=%s vendor_id=%s ticket=%s", product.id, vendor.id, product.is_ticket)
    return product, _screen(product, sink)


def update_product(product_id, actor: User, payload: dict, *, sink: NotificationSink | None = None) -> tuple[Product, bool]:
    product = get_product(product_id)
    if not (is_admin(actor) or int(product.vendor_id) == int(actor.id)):
        raise AuthorizationError("Not authorized to update this product")
    payload = payload or {}

    if "name" in payload:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValidationError("Invalid name")
        product.name = name
    if "description" in payload:
        product.description = str(payload.get("description") or "").strip()
    if "price" in payload:
        product.price = _price(payload.get("price"))
    if "image" in payload:
        product.image = str(payload.get("image") or "").strip() or None
    if "quantity" in payload:
        product.quantity = _quantity(payload.get("quantity"))
    if "enableBidding" in payload:
        if _flag(payload.get("enableBidding")):
            product.starting_bid, product.bid_end_date = _bidding_window(payload)
            product.enable_bidding = True
        else:
            product.enable_bidding = False
            product.bid_end_date = None
    if product.is_ticket and "ticketDetails" in payload:
        fresh = _ticket_details(payload.get("ticketDetails"))
        details = product.ticket_details
        if details is None:
            product.ticket_details = fresh
        else:
            details.event_name = fresh.event_name
            details.event_date = fresh.event_date
            details.event_location = fresh.event_location
            details.ticket_type = fresh.ticket_type
            details.valid_until = fresh.valid_until

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("products.update_failed product_id=%s", product_id)
        raise ServerError("Failed to update product")

    _invalidate_listing()
    logger.info("products.updated product_id=%s actor_id=%s", product.id, actor.id)
    return product, _screen(product, sink)


def report_product(product_id, reporter: User, reason: str | None, *, sink: NotificationSink | None = None) -> Review:
    """Record an abuse report and flag the listing once enough pile up."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Report reason is required")
    product = get_product(product_id)
    if int(product.vendor_id) == int(reporter.id):
        raise ValidationError("You cannot report your own product")

    report = Review(product_id=int(product.id), user_id=int(reporter.id), rating=0, comment=reason, is_report=True)
    try:
        db.session.add(report)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("products.report_failed product_id=%s user_id=%s", product_id, reporter.id)
        raise ServerError("Failed to report product")
    logger.info("products.reported product_id=%s user_id=%s", product.id, reporter.id)

    from uniket.services.fraud.rules import check_product_reports

    try:
        if check_product_reports(int(product.id), sink=sink):
            _invalidate_listing()
    except Exception:
        db.session.rollback()
        logger.exception("products.report_check_failed product_id=%s", product.id)
    return report
