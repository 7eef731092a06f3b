from __future__ import annotations

from flask import Blueprint, jsonify, request

from uniket.services import bid_service
from uniket.utils.auth import require_user
from uniket.utils.rate_limit import sensitive_operation

bids_bp = Blueprint("bids_bp", __name__, url_prefix="/api")


@bids_bp.get("/bids/product/<int:product_id>")
def product_bids(product_id: int):
    rows = bid_service.list_product_bids(product_id)
    return jsonify({"ok": True, "items": [b.to_dict() for b in rows]}), 200


@bids_bp.post("/bids/product/<int:product_id>")
@sensitive_operation("bids.create")
def place_bid(product_id: int):
    user = require_user("customer")
    data = request.get_json(silent=True) or {}
    bid = bid_service.place_bid(product_id, user, data.get("amount"))
    return jsonify({"ok": True, "message": "Bid placed successfully", "bid": bid.to_dict()}), 201


@bids_bp.get("/bids/user")
def my_bids():
    user = require_user()
    rows = bid_service.list_user_bids(user)
    return jsonify({"ok": True, "items": [b.to_dict() for b in rows]}), 200


@bids_bp.get("/bids/vendor/active")
def vendor_active_bids():
    user = require_user("vendor")
    rows = bid_service.list_vendor_active_bids(user)
    return jsonify({"ok": True, "items": [b.to_dict() for b in rows]}), 200


@bids_bp.put("/bids/<int:bid_id>/approve")
@sensitive_operation("bids.decide")
def approve_bid(bid_id: int):
    user = require_user("vendor")
    bid = bid_service.decide_bid(bid_id, user, True)
    return jsonify({"ok": True, "message": "Bid approved", "bid": bid.to_dict()}), 200


@bids_bp.put("/bids/<int:bid_id>/reject")
@sensitive_operation("bids.decide")
def reject_bid(bid_id: int):
    user = require_user("vendor")
    bid = bid_service.decide_bid(bid_id, user, False)
    return jsonify({"ok": True, "message": "Bid rejected", "bid": bid.to_dict()}), 200
