"""In-app notifications and the admin alert mirror.

Notifications are secondary effects: a failure to write one must never undo
or fail the business operation that triggered it. That contract lives in
``NotificationSink.best_effort_notify``; callers do not wrap it.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flask import current_app, has_app_context

from uniket.extensions import db
from uniket.models import AdminAlert, Notification

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
MAX_RESPONSE_LENGTH = 500
ARCHIVE_KEEP = 100


class NotificationType:
    BID = "bid"
    BID_STATUS = "bid_status"
    REVIEW = "review"
    ORDER = "order"
    ORDER_STATUS = "order_status"
    NEW_ORDER = "NEW_ORDER"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_RATED = "ORDER_RATED"
    PRODUCT = "product"
    FLAGGED_PRODUCT = "FLAGGED_PRODUCT"
    PRODUCT_APPROVED = "PRODUCT_APPROVED"
    PRODUCT_REJECTED = "PRODUCT_REJECTED"
    TICKET = "ticket"
    WALLET = "wallet"
    WITHDRAWAL = "withdrawal"
    SYSTEM = "system"
    FRAUD_ALERT = "FRAUD_ALERT"

    ALL = {
        BID,
        BID_STATUS,
        REVIEW,
        ORDER,
        ORDER_STATUS,
        NEW_ORDER,
        ORDER_CANCELLED,
        ORDER_RATED,
        PRODUCT,
        FLAGGED_PRODUCT,
        PRODUCT_APPROVED,
        PRODUCT_REJECTED,
        TICKET,
        WALLET,
        WITHDRAWAL,
        SYSTEM,
        FRAUD_ALERT,
    }


class AlertSeverity:
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    BY_ALERT_TYPE = {
        "SUSPICIOUS_LOGIN": HIGH,
        "SUSPICIOUS_ORDERS": MEDIUM,
        "SUSPICIOUS_BIDDING": MEDIUM,
        "MULTIPLE_ACCOUNTS": HIGH,
        "SUSPICIOUS_PRODUCT": MEDIUM,
        "FLAGGED_PRODUCT": LOW,
    }

    @classmethod
    def for_alert(cls, alert_type: str | None, explicit: str | None = None) -> str:
        if explicit and explicit.upper() in (cls.HIGH, cls.MEDIUM, cls.LOW):
            return explicit.upper()
        return cls.BY_ALERT_TYPE.get((alert_type or "").strip().upper(), cls.MEDIUM)


# ---------------------------------------------------------------------------
# Typed payloads for Notification.data. Each serialises to the camelCase wire
# shape clients already read.
# ---------------------------------------------------------------------------


def _iso(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class OrderRefData:
    order_id: int
    tracking_id: str | None = None

    def to_dict(self) -> dict:
        payload = {"orderId": self.order_id}
        if self.tracking_id:
            payload["trackingId"] = self.tracking_id
        return payload


@dataclass
class OrderStatusData:
    order_id: int
    status: str
    tracking_id: str
    estimated_delivery_time: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "status": self.status,
            "estimatedDeliveryTime": _iso(self.estimated_delivery_time),
            "trackingId": self.tracking_id,
        }


@dataclass
class TicketBatchData:
    order_id: int
    event_name: str
    event_date: datetime
    event_location: str
    ticket_type: str
    tickets: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "eventName": self.event_name,
            "eventDate": _iso(self.event_date),
            "eventLocation": self.event_location,
            "ticketType": self.ticket_type,
            "ticketCount": len(self.tickets),
            "tickets": list(self.tickets),
        }


@dataclass
class TicketUsedData:
    ticket_id: int
    ticket_number: str
    used_at: datetime

    def to_dict(self) -> dict:
        return {
            "ticketId": self.ticket_id,
            "ticketNumber": self.ticket_number,
            "usedAt": _iso(self.used_at),
        }


@dataclass
class FraudAlertData:
    type: str
    user_id: int | None = None
    details: dict = field(default_factory=dict)
    severity: str | None = None

    def to_dict(self) -> dict:
        payload = {"type": self.type, **{k: _iso(v) for k, v in self.details.items()}}
        if self.user_id is not None:
            payload["userId"] = self.user_id
        if self.severity:
            payload["severity"] = self.severity
        return payload


@dataclass
class BidData:
    bid_id: int
    product_id: int
    amount: float
    status: str | None = None

    def to_dict(self) -> dict:
        payload = {"bidId": self.bid_id, "productId": self.product_id, "amount": self.amount}
        if self.status:
            payload["status"] = self.status
        return payload


@dataclass
class WithdrawalData:
    transaction_id: int
    amount: float
    status: str
    reason: str | None = None

    def to_dict(self) -> dict:
        payload = {"transactionId": self.transaction_id, "amount": self.amount, "status": self.status}
        if self.reason:
            payload["reason"] = self.reason
        return payload


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def _coerce_data(data: Any) -> dict | None:
    if data is None:
        return None
    if hasattr(data, "to_dict"):
        data = data.to_dict()
    if isinstance(data, str):
        data = json.loads(data)
    if not isinstance(data, dict):
        raise TypeError(f"notification data must be an object, got {type(data).__name__}")
    return data


def serialize_data(data: Any, notification_type: str) -> str | None:
    """JSON-encode a notification payload, bounding an embedded `response`.

    Falls back to a minimal marker payload if the input cannot be encoded.
    """
    try:
        payload = _coerce_data(data)
        if payload is None:
            return None
        if isinstance(payload.get("response"), str):
            payload = dict(payload)
            payload["response"] = payload["response"][:MAX_RESPONSE_LENGTH]
        return json.dumps(payload, separators=(",", ":"), default=_iso_default)
    except Exception as e:
        logger.warning("notify.data_serialization_failed type=%s err=%s", notification_type, e)
        return json.dumps({"error": "Data processing failed", "type": notification_type})


def _iso_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"not serializable: {type(value).__name__}")


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class NotificationSink:
    name = "unknown"

    def best_effort_notify(
        self,
        *,
        user_id: int,
        type: str,
        message: str,
        data: Any = None,
        role: str = "customer",
    ) -> Notification | None:
        """Record a notification. Implementations must never raise."""
        raise NotImplementedError


class DatabaseNotificationSink(NotificationSink):
    name = "database"

    def best_effort_notify(
        self,
        *,
        user_id: int,
        type: str,
        message: str,
        data: Any = None,
        role: str = "customer",
    ) -> Notification | None:
        try:
            if type not in NotificationType.ALL:
                logger.warning("notify.unknown_type type=%s user_id=%s", type, user_id)
                return None
            serialized = serialize_data(data, type)
            row = Notification(
                user_id=int(user_id),
                type=type,
                message=(message or "")[:MAX_MESSAGE_LENGTH],
                data=serialized,
                role=(role or "customer")[:32],
                read=False,
            )
            db.session.add(row)
            if type == NotificationType.FRAUD_ALERT:
                db.session.add(self._admin_alert(message, serialized))
            db.session.commit()
            return row
        except Exception:
            logger.exception("notify.create_failed user_id=%s type=%s", user_id, type)
            try:
                db.session.rollback()
            except Exception:
                pass
            return None

    @staticmethod
    def _admin_alert(message: str, serialized: str | None) -> AdminAlert:
        payload = {}
        if serialized:
            try:
                payload = json.loads(serialized)
            except Exception:
                payload = {}
        alert_type = str(payload.get("type") or "UNKNOWN")[:40]
        return AdminAlert(
            type=alert_type,
            message=(message or "")[:MAX_MESSAGE_LENGTH],
            data=serialized,
            severity=AlertSeverity.for_alert(alert_type, payload.get("severity")),
            status="PENDING",
        )


def get_notification_sink() -> NotificationSink:
    if has_app_context():
        sink = current_app.extensions.get("notification_sink")
        if sink is not None:
            return sink
    return DatabaseNotificationSink()


def create_notification(
    *,
    user_id: int,
    type: str,
    message: str,
    data: Any = None,
    role: str = "customer",
    sink: NotificationSink | None = None,
) -> Notification | None:
    return (sink or get_notification_sink()).best_effort_notify(
        user_id=user_id,
        type=type,
        message=message,
        data=data,
        role=role,
    )


def admin_recipient_id() -> int:
    if has_app_context():
        try:
            return int(current_app.config.get("ADMIN_RECIPIENT_ID") or 1)
        except Exception:
            return 1
    return 1


def archive_old_notifications(user_id: int, keep: int = ARCHIVE_KEEP) -> int:
    """Delete all but the newest `keep` notifications for a user.

    Returns the number of rows removed; failures are logged and reported as 0.
    """
    try:
        keep_ids = [
            row.id
            for row in (
                Notification.query.with_entities(Notification.id)
                .filter_by(user_id=int(user_id))
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .limit(max(0, int(keep)))
                .all()
            )
        ]
        query = Notification.query.filter(Notification.user_id == int(user_id))
        if keep_ids:
            query = query.filter(~Notification.id.in_(keep_ids))
        removed = int(query.delete(synchronize_session=False) or 0)
        db.session.commit()
        if removed:
            logger.info("notify.archived user_id=%s removed=%s", user_id, removed)
        return removed
    except Exception:
        logger.exception("notify.archive_failed user_id=%s", user_id)
        try:
            db.session.rollback()
        except Exception:
            pass
        return 0
