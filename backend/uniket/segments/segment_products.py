from __future__ import annotations

from flask import Blueprint, jsonify, request

from uniket.services import product_service
from uniket.utils.auth import require_user
from uniket.utils.rate_limit import sensitive_operation

products_bp = Blueprint("products_bp", __name__, url_prefix="/api")


@products_bp.get("/products")
def list_products():
    items = product_service.list_products(request.args.get("vendorId"))
    return jsonify({"ok": True, "items": items}), 200


@products_bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    product = product_service.get_product(product_id)
    return jsonify({"ok": True, "product": product.to_dict()}), 200


@products_bp.post("/products")
@sensitive_operation("products.create")
def create_product():
    user = require_user("vendor")
    product, flagged = product_service.create_product(user, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "message": "Product created", "product": product.to_dict(), "isFlagged": flagged}), 201


@products_bp.put("/products/<int:product_id>")
@sensitive_operation("products.update")
def update_product(product_id: int):
    user = require_user("vendor", "admin")
    product, flagged = product_service.update_product(product_id, user, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "message": "Product updated", "product": product.to_dict(), "isFlagged": flagged}), 200


@products_bp.post("/products/<int:product_id>/report")
@sensitive_operation("products.report")
def report_product(product_id: int):
    user = require_user()
    data = request.get_json(silent=True) or {}
    report = product_service.report_product(product_id, user, data.get("reason"))
    return jsonify({"ok": True, "message": "Product reported", "reportId": report.id}), 201
