from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func

from uniket.extensions import db
from uniket.models import Bid, LoginAttempt, Order, Product, Review
from uniket.utils.notify import (
    FraudAlertData,
    NotificationSink,
    NotificationType,
    admin_recipient_id,
    get_notification_sink,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FraudThresholds:
    max_failed_logins: int = 5
    max_orders_per_hour: int = 10
    max_bids_per_hour: int = 20
    suspicious_amount: float = 1000.0
    max_accounts_per_ip: int = 3
    max_reports_before_flag: int = 3
    risk_score_threshold: int = 70
    min_description_length: int = 10


THRESHOLDS = FraudThresholds()


def _alert(
    alert_type: str,
    message: str,
    *,
    user_id: int | None = None,
    details: dict | None = None,
    sink: NotificationSink | None = None,
) -> None:
    logger.warning("fraud.alert type=%s user_id=%s details=%s", alert_type, user_id, details or {})
    (sink or get_notification_sink()).best_effort_notify(
        user_id=admin_recipient_id(),
        type=NotificationType.FRAUD_ALERT,
        message=message,
        data=FraudAlertData(type=alert_type, user_id=user_id, details=details or {}),
        role="admin",
    )


def detect_suspicious_logins(
    user_id: int,
    ip_address: str | None = None,
    *,
    thresholds: FraudThresholds = THRESHOLDS,
    sink: NotificationSink | None = None,
) -> bool:
    since = datetime.utcnow() - timedelta(hours=24)
    failed = LoginAttempt.query.filter(
        LoginAttempt.user_id == int(user_id),
        LoginAttempt.success.is_(False),
        LoginAttempt.created_at >= since,
    ).count()
    if failed < thresholds.max_failed_logins:
        return False
    _alert(
        "SUSPICIOUS_LOGIN",
        f"Multiple failed login attempts detected for user {user_id}",
        user_id=int(user_id),
        details={"failedAttempts": int(failed), "ipAddress": ip_address},
        sink=sink,
    )
    return True


def detect_suspicious_orders(
    user_id: int,
    *,
    thresholds: FraudThresholds = THRESHOLDS,
    sink: NotificationSink | None = None,
) -> bool:
    since = datetime.utcnow() - timedelta(hours=1)
    recent = Order.query.filter(
        Order.customer_id == int(user_id),
        Order.created_at >= since,
    ).count()
    if recent < thresholds.max_orders_per_hour:
        return False
    _alert(
        "SUSPICIOUS_ORDERS",
        f"High order frequency detected for user {user_id}",
        user_id=int(user_id),
        details={"orderCount": int(recent), "timeWindow": "1 hour"},
        sink=sink,
    )
    return True


def detect_suspicious_bidding(
    user_id: int,
    *,
    thresholds: FraudThresholds = THRESHOLDS,
    sink: NotificationSink | None = None,
) -> bool:
    since = datetime.utcnow() - timedelta(hours=1)
    recent = Bid.query.filter(
        Bid.user_id == int(user_id),
        Bid.created_at >= since,
    ).count()
    if recent < thresholds.max_bids_per_hour:
        return False
    _alert(
        "SUSPICIOUS_BIDDING",
        f"High bidding frequency detected for user {user_id}",
        user_id=int(user_id),
        details={"bidCount": int(recent), "timeWindow": "1 hour"},
        sink=sink,
    )
    return True


def detect_multiple_accounts(
    ip_address: str,
    *,
    thresholds: FraudThresholds = THRESHOLDS,
    sink: NotificationSink | None = None,
) -> bool:
    if not ip_address:
        return False
    since = datetime.utcnow() - timedelta(hours=24)
    accounts = (
        db.session.query(func.count(func.distinct(LoginAttempt.user_id)))
        .filter(
            LoginAttempt.ip_address == ip_address,
            LoginAttempt.success.is_(True),
            LoginAttempt.user_id.isnot(None),
            LoginAttempt.created_at >= since,
        )
        .scalar()
    )
    accounts = int(accounts or 0)
    if accounts < thresholds.max_accounts_per_ip:
        return False
    _alert(
        "MULTIPLE_ACCOUNTS",
        f"Multiple accounts detected from IP {ip_address}",
        details={"ipAddress": ip_address, "accountCount": accounts},
        sink=sink,
    )
    return True


def product_risk_reasons(product: Product, thresholds: FraudThresholds = THRESHOLDS) -> list[str]:
    reasons = []
    if float(product.price or 0.0) > thresholds.suspicious_amount:
        reasons.append("High price")
    if "test" in (product.name or "").lower():
        reasons.append("Test product")
    if len(product.description or "") < thresholds.min_description_length:
        reasons.append("Short description")
    if not product.image:
        reasons.append("No image")
    return reasons


def detect_suspicious_product(
    product: Product,
    *,
    thresholds: FraudThresholds = THRESHOLDS,
    sink: NotificationSink | None = None,
) -> bool:
    reasons = product_risk_reasons(product, thresholds)
    if not reasons:
        return False
    _alert(
        "SUSPICIOUS_PRODUCT",
        f"Suspicious product detected: {product.name}",
        user_id=int(product.vendor_id),
        details={"productId": int(product.id), "reasons": reasons},
        sink=sink,
    )
    return True


def check_product_reports(
    product_id: int,
    *,
    thresholds: FraudThresholds = THRESHOLDS,
    sink: NotificationSink | None = None,
) -> bool:
    """Flag a product once it has collected enough abuse reports."""
    product = db.session.get(Product, int(product_id))
    if product is None:
        return False
    reports = Review.query.filter_by(product_id=int(product.id), is_report=True).count()
    if reports < thresholds.max_reports_before_flag:
        return False
    if not product.is_flagged:
        product.is_flagged = True
        db.session.commit()
    _alert(
        "FLAGGED_PRODUCT",
        f"Product {product.name} has been flagged due to multiple reports",
        user_id=int(product.vendor_id),
        details={"productId": int(product.id), "reportCount": int(reports)},
        sink=sink,
    )
    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(product.vendor_id),
        type=NotificationType.FLAGGED_PRODUCT,
        message=f"Your product {product.name} has been flagged for review",
        data={"productId": int(product.id)},
        role="vendor",
    )
    return True


def perform_comprehensive_fraud_detection(
    user_id: int,
    ip_address: str | None = None,
    *,
    thresholds: FraudThresholds = THRESHOLDS,
    sink: NotificationSink | None = None,
) -> dict:
    from uniket.services.fraud.anomaly import analyze_user_behavior

    results = {
        "suspiciousLogins": detect_suspicious_logins(user_id, ip_address, thresholds=thresholds, sink=sink),
        "suspiciousOrders": detect_suspicious_orders(user_id, thresholds=thresholds, sink=sink),
        "suspiciousBidding": detect_suspicious_bidding(user_id, thresholds=thresholds, sink=sink),
        "multipleAccounts": detect_multiple_accounts(ip_address, thresholds=thresholds, sink=sink)
        if ip_address
        else False,
    }
    analysis = analyze_user_behavior(user_id, sink=sink)
    risk_score = int(analysis["riskScore"]) if analysis else 0
    results["mlAnalysis"] = analysis
    results["riskScore"] = risk_score
    results["isHighRisk"] = bool(
        any(v for k, v in results.items() if k.startswith(("suspicious", "multiple")))
        or risk_score >= thresholds.risk_score_threshold
    )
    return results
