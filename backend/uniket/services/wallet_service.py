from __future__ import annotations

import logging
import math

from uniket.errors import AuthorizationError, NotFoundError, ServerError, ValidationError
from uniket.extensions import db
from uniket.models import Transaction, User, Wallet
from uniket.utils.auth import is_admin
from uniket.utils.notify import (
    NotificationSink,
    NotificationType,
    WithdrawalData,
    get_notification_sink,
)

logger = logging.getLogger(__name__)


class TxnType:
    FUND = "fund"
    REFUND = "refund"
    WITHDRAWAL = "withdrawal"


class TxnStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def _amount(value) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid amount")
    if not math.isfinite(amount):
        raise ValidationError("Invalid amount")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    return round(amount, 2)


def get_or_create_wallet(user_id: int) -> Wallet:
    wallet = Wallet.query.filter_by(user_id=int(user_id)).first()
    if wallet is None:
        wallet = Wallet(user_id=int(user_id), balance=0.0)
        db.session.add(wallet)
        db.session.flush()
    return wallet


def add_funds(user: User, amount, payment_ref: str | None = None) -> tuple[Wallet, Transaction]:
    value = _amount(amount)
    try:
        wallet = get_or_create_wallet(int(user.id))
        wallet.balance = round(float(wallet.balance or 0.0) + value, 2)
        txn = Transaction(user_id=int(user.id), type=TxnType.FUND, amount=value, status=TxnStatus.COMPLETED)
        txn.update_description(paymentRef=(payment_ref or "N/A"))
        db.session.add(txn)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("wallet.fund_failed user_id=%s amount=%s", user.id, value)
        raise ServerError("Failed to add funds")
    logger.info("wallet.funded user_id=%s amount=%s", user.id, value)
    return wallet, txn


def list_transactions(user: User, *, type: str | None = None) -> list[Transaction]:
    query = Transaction.query.filter_by(user_id=int(user.id))
    if type:
        query = query.filter_by(type=type)
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()


def _load_withdrawal(withdrawal_id) -> Transaction:
    try:
        txn = db.session.get(Transaction, int(withdrawal_id))
    except (TypeError, ValueError):
        txn = None
    if txn is None or txn.type != TxnType.WITHDRAWAL:
        raise NotFoundError("Withdrawal not found")
    return txn


def request_withdrawal(
    user: User,
    amount,
    bank_details: dict | None = None,
    *,
    sink: NotificationSink | None = None,
) -> Transaction:
    """Hold `amount` from the wallet and open a PENDING withdrawal."""
    value = _amount(amount)
    details = bank_details or {}
    if not all(str(details.get(k) or "").strip() for k in ("bankName", "accountNumber", "accountName")):
        raise ValidationError("Bank details are required")

    wallet = get_or_create_wallet(int(user.id))
    if float(wallet.balance or 0.0) < value:
        db.session.rollback()
        raise ValidationError("Insufficient balance")

    try:
        wallet.balance = round(float(wallet.balance or 0.0) - value, 2)
        txn = Transaction(user_id=int(user.id), type=TxnType.WITHDRAWAL, amount=value, status=TxnStatus.PENDING)
        txn.update_description(
            bankName=str(details["bankName"]).strip(),
            accountNumber=str(details["accountNumber"]).strip(),
            accountName=str(details["accountName"]).strip(),
        )
        db.session.add(txn)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("withdrawals.create_failed user_id=%s amount=%s", user.id, value)
        raise ServerError("Failed to create withdrawal request")

    logger.info("withdrawals.requested txn_id=%s user_id=%s amount=%s", txn.id, user.id, value)
    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(user.id),
        type=NotificationType.WITHDRAWAL,
        message=f"Your withdrawal request of {value:.2f} has been submitted",
        data=WithdrawalData(transaction_id=int(txn.id), amount=value, status=txn.status),
        role=user.role or "vendor",
    )
    return txn


def get_withdrawal(withdrawal_id, actor: User) -> Transaction:
    txn = _load_withdrawal(withdrawal_id)
    if not (is_admin(actor) or int(txn.user_id) == int(actor.id)):
        raise AuthorizationError("Not authorized to view this withdrawal")
    return txn


def list_withdrawals(actor: User, *, status: str | None = None) -> list[Transaction]:
    query = Transaction.query.filter_by(type=TxnType.WITHDRAWAL)
    if not is_admin(actor):
        query = query.filter_by(user_id=int(actor.id))
    if status:
        query = query.filter_by(status=status.strip().upper())
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()


def _refund_hold(txn: Transaction) -> None:
    wallet = get_or_create_wallet(int(txn.user_id))
    wallet.balance = round(float(wallet.balance or 0.0) + float(txn.amount or 0.0), 2)


def _close_withdrawal(
    txn: Transaction,
    status: str,
    *,
    refund: bool,
    message: str,
    reason: str | None,
    sink: NotificationSink | None,
) -> Transaction:
    try:
        if refund:
            _refund_hold(txn)
        txn.status = status
        if reason:
            txn.update_description(reason=reason)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("withdrawals.update_failed txn_id=%s status=%s", txn.id, status)
        raise ServerError("Failed to update withdrawal")

    logger.info("withdrawals.%s txn_id=%s refund=%s", status.lower(), txn.id, refund)
    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(txn.user_id),
        type=NotificationType.WITHDRAWAL,
        message=message,
        data=WithdrawalData(transaction_id=int(txn.id), amount=float(txn.amount), status=status, reason=reason),
    )
    return txn


def approve_withdrawal(withdrawal_id, *, sink: NotificationSink | None = None) -> Transaction:
    txn = _load_withdrawal(withdrawal_id)
    if txn.status != TxnStatus.PENDING:
        raise ValidationError("Withdrawal request is not pending")
    return _close_withdrawal(
        txn,
        TxnStatus.APPROVED,
        refund=False,
        message=f"Your withdrawal request of {float(txn.amount):.2f} has been approved",
        reason=None,
        sink=sink,
    )


def reject_withdrawal(withdrawal_id, reason: str | None, *, sink: NotificationSink | None = None) -> Transaction:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")
    txn = _load_withdrawal(withdrawal_id)
    if txn.status != TxnStatus.PENDING:
        raise ValidationError("Withdrawal request is not pending")
    return _close_withdrawal(
        txn,
        TxnStatus.REJECTED,
        refund=True,
        message=f"Your withdrawal request of {float(txn.amount):.2f} has been rejected: {reason}",
        reason=reason,
        sink=sink,
    )


def cancel_withdrawal(withdrawal_id, actor: User, *, sink: NotificationSink | None = None) -> Transaction:
    txn = _load_withdrawal(withdrawal_id)
    if int(txn.user_id) != int(actor.id):
        raise AuthorizationError("Not authorized to cancel this withdrawal")
    if txn.status != TxnStatus.PENDING:
        raise ValidationError("Only pending withdrawals can be cancelled")
    return _close_withdrawal(
        txn,
        TxnStatus.CANCELLED,
        refund=True,
        message=f"Your withdrawal request of {float(txn.amount):.2f} has been cancelled",
        reason=None,
        sink=sink,
    )
