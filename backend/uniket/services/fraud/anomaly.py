"""Per-user behaviour scoring.

Despite the historical "ML" label this is a fixed rule set: aggregate a few
features, compare them to constants and weigh the hits by severity.
`detect_anomalies` and `calculate_risk_score` are pure so they can be used
without a database.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import func

from uniket.extensions import db
from uniket.models import Bid, LoginAttempt, Order, Transaction, User
from uniket.utils.notify import (
    AlertSeverity,
    FraudAlertData,
    NotificationSink,
    NotificationType,
    admin_recipient_id,
    get_notification_sink,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnomalyThresholds:
    high_value_order: float = 1000.0
    high_value_bid: float = 500.0
    max_failed_logins: int = 5
    min_login_success_rate: float = 0.5


ANOMALY_THRESHOLDS = AnomalyThresholds()

SEVERITY_WEIGHTS = {
    AlertSeverity.HIGH: 3,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 1,
}


@dataclass
class UserFeatures:
    user_id: int
    account_age_days: float = 0.0
    avg_order_amount: float = 0.0
    max_order_amount: float = 0.0
    avg_bid_amount: float = 0.0
    max_bid_amount: float = 0.0
    avg_transaction_amount: float = 0.0
    failed_logins: int = 0
    login_success_rate: float = 1.0
    total_orders: int = 0
    total_bids: int = 0
    total_transactions: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Anomaly:
    type: str
    severity: str
    value: float

    def to_dict(self) -> dict:
        return {"type": self.type, "severity": self.severity, "value": self.value}


def _avg(values: list[float]) -> float:
    return float(sum(values) / len(values)) if values else 0.0


def extract_user_features(user_id: int) -> UserFeatures | None:
    user = db.session.get(User, int(user_id))
    if user is None:
        return None

    order_totals = [float(t or 0.0) for (t,) in db.session.query(Order.total).filter(Order.customer_id == user.id)]
    bid_amounts = [float(a or 0.0) for (a,) in db.session.query(Bid.amount).filter(Bid.user_id == user.id)]
    txn_amounts = [
        float(a or 0.0) for (a,) in db.session.query(Transaction.amount).filter(Transaction.user_id == user.id)
    ]
    logins = dict(
        db.session.query(LoginAttempt.success, func.count(LoginAttempt.id))
        .filter(LoginAttempt.user_id == user.id)
        .group_by(LoginAttempt.success)
        .all()
    )
    ok_logins = int(logins.get(True, 0) or 0)
    failed_logins = int(logins.get(False, 0) or 0)
    attempts = ok_logins + failed_logins

    created = user.created_at or datetime.utcnow()
    return UserFeatures(
        user_id=int(user.id),
        account_age_days=max(0.0, (datetime.utcnow() - created).total_seconds() / 86400.0),
        avg_order_amount=_avg(order_totals),
        max_order_amount=max(order_totals, default=0.0),
        avg_bid_amount=_avg(bid_amounts),
        max_bid_amount=max(bid_amounts, default=0.0),
        avg_transaction_amount=_avg(txn_amounts),
        failed_logins=failed_logins,
        login_success_rate=(ok_logins / attempts) if attempts else 1.0,
        total_orders=len(order_totals),
        total_bids=len(bid_amounts),
        total_transactions=len(txn_amounts),
    )


def detect_anomalies(features: UserFeatures, thresholds: AnomalyThresholds = ANOMALY_THRESHOLDS) -> list[Anomaly]:
    anomalies = []
    if features.max_order_amount > thresholds.high_value_order:
        anomalies.append(Anomaly("HIGH_VALUE_ORDER", AlertSeverity.HIGH, features.max_order_amount))
    if features.max_bid_amount > thresholds.high_value_bid:
        anomalies.append(Anomaly("HIGH_VALUE_BID", AlertSeverity.MEDIUM, features.max_bid_amount))
    if features.failed_logins > thresholds.max_failed_logins:
        anomalies.append(Anomaly("MULTIPLE_FAILED_LOGINS", AlertSeverity.HIGH, float(features.failed_logins)))
    if features.login_success_rate < thresholds.min_login_success_rate:
        anomalies.append(Anomaly("LOW_LOGIN_SUCCESS", AlertSeverity.MEDIUM, features.login_success_rate))
    return anomalies


def calculate_risk_score(anomalies: list[Anomaly]) -> float:
    # Capped at 100.
    weight = sum(SEVERITY_WEIGHTS.get(a.severity, SEVERITY_WEIGHTS[AlertSeverity.LOW]) for a in anomalies)
    return min(100.0, (weight / 3.0) * 20.0)


def analyze_user_behavior(user_id: int, *, sink: NotificationSink | None = None) -> dict | None:
    features = extract_user_features(user_id)
    if features is None:
        return None
    anomalies = detect_anomalies(features)
    score = calculate_risk_score(anomalies)

    sink = sink or get_notification_sink()
    for anomaly in anomalies:
        sink.best_effort_notify(
            user_id=admin_recipient_id(),
            type=NotificationType.FRAUD_ALERT,
            message=f"Anomaly detected for user {user_id}: {anomaly.type}",
            data=FraudAlertData(
                type=anomaly.type,
                user_id=int(user_id),
                details={"value": anomaly.value},
                severity=anomaly.severity,
            ),
            role="admin",
        )
    if anomalies:
        logger.warning("fraud.anomalies user_id=%s count=%s score=%s", user_id, len(anomalies), score)

    return {
        "userId": int(user_id),
        "features": features.to_dict(),
        "anomalies": [a.to_dict() for a in anomalies],
        "riskScore": score,
    }
