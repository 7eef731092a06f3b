from __future__ import annotations

from flask import Blueprint, jsonify, request

from uniket.extensions import db
from uniket.services import wallet_service
from uniket.utils.auth import require_user
from uniket.utils.rate_limit import sensitive_operation

wallets_bp = Blueprint("wallets_bp", __name__, url_prefix="/api")


@wallets_bp.get("/wallet")
def get_wallet():
    user = require_user()
    wallet = wallet_service.get_or_create_wallet(int(user.id))
    db.session.commit()
    return jsonify({"ok": True, "wallet": wallet.to_dict()}), 200


@wallets_bp.post("/wallet/fund")
@sensitive_operation("wallet.fund")
def fund_wallet():
    user = require_user()
    data = request.get_json(silent=True) or {}
    wallet, txn = wallet_service.add_funds(user, data.get("amount"), data.get("paymentRef"))
    return jsonify({"ok": True, "wallet": wallet.to_dict(), "transaction": txn.to_dict()}), 200


@wallets_bp.get("/wallet/transactions")
def wallet_transactions():
    user = require_user()
    kind = (request.args.get("type") or "").strip().lower() or None
    rows = wallet_service.list_transactions(user, type=kind)
    return jsonify({"ok": True, "items": [t.to_dict() for t in rows]}), 200


@wallets_bp.post("/withdrawals")
@sensitive_operation("withdrawals.create")
def create_withdrawal():
    user = require_user("vendor")
    data = request.get_json(silent=True) or {}
    txn = wallet_service.request_withdrawal(user, data.get("amount"), data.get("bankDetails"))
    return jsonify({"ok": True, "message": "Withdrawal request created", "withdrawal": txn.to_dict()}), 201


@wallets_bp.get("/withdrawals")
def list_withdrawals():
    user = require_user("vendor", "admin")
    rows = wallet_service.list_withdrawals(user, status=request.args.get("status"))
    return jsonify({"ok": True, "items": [t.to_dict() for t in rows]}), 200


@wallets_bp.get("/withdrawals/<int:withdrawal_id>")
def get_withdrawal(withdrawal_id: int):
    user = require_user("vendor", "admin")
    txn = wallet_service.get_withdrawal(withdrawal_id, user)
    return jsonify({"ok": True, "withdrawal": txn.to_dict()}), 200


@wallets_bp.put("/withdrawals/<int:withdrawal_id>/cancel")
@sensitive_operation("withdrawals.cancel")
def cancel_withdrawal(withdrawal_id: int):
    user = require_user("vendor")
    txn = wallet_service.cancel_withdrawal(withdrawal_id, user)
    return jsonify({"ok": True, "message": "Withdrawal cancelled", "withdrawal": txn.to_dict()}), 200


@wallets_bp.put("/withdrawals/<int:withdrawal_id>/approve")
def approve_withdrawal(withdrawal_id: int):
    require_user("admin")
    txn = wallet_service.approve_withdrawal(withdrawal_id)
    return jsonify({"ok": True, "message": "Withdrawal approved", "withdrawal": txn.to_dict()}), 200


@wallets_bp.put("/withdrawals/<int:withdrawal_id>/reject")
def reject_withdrawal(withdrawal_id: int):
    require_user("admin")
    data = request.get_json(silent=True) or {}
    txn = wallet_service.reject_withdrawal(withdrawal_id, data.get("reason"))
    return jsonify({"ok": True, "message": "Withdrawal rejected", "withdrawal": txn.to_dict()}), 200
