from __future__ import annotations

import logging
import math
from datetime import datetime

from uniket.errors import AuthorizationError, NotFoundError, ServerError, ValidationError
from uniket.extensions import db
from uniket.models import Bid, Product, User
from uniket.utils.notify import BidData, NotificationSink, NotificationType, get_notification_sink

logger = logging.getLogger(__name__)


class BidStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def _load_product(product_id) -> Product:
    try:
        product = db.session.get(Product, int(product_id))
    except (TypeError, ValueError):
        product = None
    if product is None:
        raise NotFoundError("Product not found")
    return product


def _load_bid(bid_id) -> Bid:
    try:
        bid = db.session.get(Bid, int(bid_id))
    except (TypeError, ValueError):
        bid = None
    if bid is None:
        raise NotFoundError("Bid not found")
    return bid


def place_bid(product_id, bidder: User, amount, *, sink: NotificationSink | None = None) -> Bid:
    product = _load_product(product_id)
    if not product.enable_bidding:
        raise ValidationError("Bidding is not enabled for this product")
    if product.bid_end_date is not None and datetime.utcnow() > product.bid_end_date:
        raise ValidationError("Bidding period has ended")
    if int(product.vendor_id) == int(bidder.id):
        raise ValidationError("You cannot bid on your own product")
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Invalid bid amount")
    if not math.isfinite(value):
        raise ValidationError("Invalid bid amount")

    floor = product.current_bid if product.current_bid is not None else product.starting_bid
    floor = float(floor or 0.0)
    if value <= floor:
        raise ValidationError(f"Bid must be higher than {floor:.2f}")

    try:
        bid = Bid(product_id=int(product.id), user_id=int(bidder.id), amount=value, status=BidStatus.PENDING)
        product.current_bid = value
        db.session.add(bid)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("bids.create_failed product_id=%s user_id=%s", product.id, bidder.id)
        raise ServerError("Failed to place bid")

    logger.info("bids.placed bid_id=%s product_id=%s amount=%s", bid.id, product.id, value)
    sink = sink or get_notification_sink()
    sink.best_effort_notify(
        user_id=int(product.vendor_id),
        type=NotificationType.BID,
        message=f"New bid of {value:.2f} placed on {product.name}",
        data=BidData(bid_id=int(bid.id), product_id=int(product.id), amount=value),
        role="vendor",
    )

    from uniket.services.fraud.rules import detect_suspicious_bidding

    try:
        detect_suspicious_bidding(int(bidder.id), sink=sink)
    except Exception:
        db.session.rollback()
        logger.exception("bids.fraud_check_failed user_id=%s", bidder.id)
    return bid


def list_product_bids(product_id) -> list[Bid]:
    product = _load_product(product_id)
    return Bid.query.filter_by(product_id=int(product.id)).order_by(Bid.amount.desc()).all()


def list_user_bids(user: User) -> list[Bid]:
    return Bid.query.filter_by(user_id=int(user.id)).order_by(Bid.created_at.desc()).all()


def list_vendor_active_bids(vendor: User) -> list[Bid]:
    now = datetime.utcnow()
    return (
        Bid.query.join(Product, Product.id == Bid.product_id)
        .filter(
            Product.vendor_id == int(vendor.id),
            Product.enable_bidding.is_(True),
            db.or_(Product.bid_end_date.is_(None), Product.bid_end_date > now),
            Bid.status == BidStatus.PENDING,
        )
        .order_by(Bid.created_at.desc())
        .all()
    )


def decide_bid(bid_id, vendor: User, approve: bool, *, sink: NotificationSink | None = None) -> Bid:
    bid = _load_bid(bid_id)
    if bid.product is None or int(bid.product.vendor_id) != int(vendor.id):
        raise AuthorizationError("Not authorized to manage this bid")
    if bid.status != BidStatus.PENDING:
        raise ValidationError(f"Bid has already been {bid.status.lower()}")

    status = BidStatus.APPROVED if approve else BidStatus.REJECTED
    try:
        bid.status = status
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("bids.decide_failed bid_id=%s status=%s", bid_id, status)
        raise ServerError("Failed to update bid")

    logger.info("bids.%s bid_id=%s vendor_id=%s", status.lower(), bid.id, vendor.id)
    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(bid.user_id),
        type=NotificationType.BID_STATUS,
        message=f"Your bid of {float(bid.amount):.2f} on {bid.product.name} has been {status.lower()}",
        data=BidData(bid_id=int(bid.id), product_id=int(bid.product_id), amount=float(bid.amount), status=status),
    )
    return bid
