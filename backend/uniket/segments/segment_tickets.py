from __future__ import annotations

from flask import Blueprint, jsonify, request

from uniket.errors import AuthorizationError
from uniket.extensions import db
from uniket.models import Product, Ticket, User
from uniket.services import ticket_service
from uniket.utils.auth import is_admin, require_user
from uniket.utils.rate_limit import sensitive_operation

tickets_bp = Blueprint("tickets_bp", __name__, url_prefix="/api")


def _owns_ticket_event(user: User, ticket: Ticket | None) -> bool:
    if ticket is None or ticket.product is None:
        return False
    return int(ticket.product.vendor_id) == int(user.id)


@tickets_bp.post("/tickets/verify")
@sensitive_operation("tickets.verify")
def verify_ticket():
    user = require_user("vendor")
    data = request.get_json(silent=True) or {}
    qr_code = str(data.get("qrCode") or "").strip()

    # Ownership is checked before verification so a foreign vendor cannot
    # trigger the lazy EXPIRED transition.
    ticket = Ticket.query.filter_by(qr_code=qr_code).first() if qr_code else None
    if ticket is not None and not _owns_ticket_event(user, ticket):
        raise AuthorizationError("You are not authorized to verify this ticket")

    result = ticket_service.verify_ticket(qr_code)
    return jsonify({"ok": True, "message": "Ticket is valid", **result}), 200


@tickets_bp.post("/tickets/<int:ticket_id>/use")
@sensitive_operation("tickets.use")
def use_ticket(ticket_id: int):
    user = require_user("vendor")
    ticket = ticket_service.get_ticket(ticket_id)
    if not _owns_ticket_event(user, ticket):
        raise AuthorizationError("You are not authorized to use this ticket")
    ticket = ticket_service.mark_ticket_as_used(ticket.id)
    return jsonify({"ok": True, "message": "Ticket marked as used successfully", "ticket": ticket.to_dict()}), 200


@tickets_bp.get("/tickets/event/<int:product_id>")
def event_tickets(product_id: int):
    user = require_user("vendor", "admin")
    product = db.session.get(Product, product_id)
    # A missing event reads as "not yours" rather than 404.
    if not is_admin(user) and (product is None or int(product.vendor_id) != int(user.id)):
        raise AuthorizationError("You are not authorized to view these tickets")
    rows = ticket_service.list_event_tickets(product_id)
    return jsonify({"ok": True, "message": "Tickets retrieved successfully", "tickets": [t.to_dict() for t in rows]}), 200


@tickets_bp.get("/tickets/user")
def my_tickets():
    user = require_user()
    rows = ticket_service.list_user_tickets(int(user.id))
    return jsonify({"ok": True, "tickets": [t.to_dict() for t in rows]}), 200


@tickets_bp.get("/tickets/admin")
def all_tickets():
    require_user("admin")
    rows = ticket_service.list_all_tickets()
    return jsonify({"ok": True, "tickets": [t.to_dict() for t in rows]}), 200
