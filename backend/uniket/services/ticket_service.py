from __future__ import annotations

import base64
import io
import json
import logging
import secrets
import time
from datetime import datetime

import qrcode
from flask import current_app, has_app_context

from uniket.errors import ConflictError, InvalidOperationError, NotFoundError, ServerError, ValidationError
from uniket.extensions import db
from uniket.models import Product, Ticket
from uniket.utils.notify import (
    NotificationSink,
    NotificationType,
    TicketBatchData,
    TicketUsedData,
    get_notification_sink,
)

logger = logging.getLogger(__name__)

QR_PAYLOAD_LENGTH = 50
QR_CODE_LENGTH = 150
MAX_CODE_ATTEMPTS = 5
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class TicketStatus:
    VALID = "VALID"
    USED = "USED"
    EXPIRED = "EXPIRED"
    CLOSED = "CLOSED"


def to_base36(value: int) -> str:
    value = int(value)
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return sign + "".join(reversed(digits))


def generate_ticket_number() -> str:
    # Display identifier only; uniqueness is probabilistic.
    return f"TKT-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def generate_qr_code(ticket_data: dict | None = None) -> str:
    """Build the opaque scan token for a ticket.

    The token is a truncated base64 PNG of a QR image that itself encodes a
    truncated summary of the ticket. It cannot be decoded back into the
    ticket; verification matches it against the stored column by equality.
    """
    if not ticket_data:
        return secrets.token_hex(8)

    summary = {
        "t": str(ticket_data.get("ticketNumber") or "")[-4:],
        "p": to_base36(ticket_data.get("productId") or 0),
        "u": to_base36(ticket_data.get("userId") or 0),
        "ts": to_base36(int(time.time()))[-4:],
    }
    encoded = base64.b64encode(json.dumps(summary, separators=(",", ":")).encode("utf-8")).decode("ascii")
    payload = encoded[:QR_PAYLOAD_LENGTH]

    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=1,
        border=0,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")[:QR_CODE_LENGTH]


def _strict_reuse_check() -> bool:
    if has_app_context():
        return bool(current_app.config.get("STRICT_TICKET_REUSE_CHECK"))
    return False


def _unique_ticket_codes(product_id: int, user_id: int, taken: set[str]) -> tuple[str, str]:
    """Draw a ticket number and scan token that no other ticket holds."""
    for _ in range(MAX_CODE_ATTEMPTS):
        number = generate_ticket_number()
        qr = generate_qr_code({"ticketNumber": number, "productId": product_id, "userId": user_id})
        if qr in taken or number in taken:
            continue
        clash = Ticket.query.filter(db.or_(Ticket.qr_code == qr, Ticket.ticket_number == number)).first()
        if clash is None:
            return number, qr
        logger.warning("tickets.code_collision product_id=%s existing_ticket_id=%s", product_id, clash.id)
    raise ServerError("Failed to generate a unique ticket code")


def create_tickets(
    *,
    order_id: int,
    product_id: int,
    user_id: int,
    quantity: int,
    sink: NotificationSink | None = None,
) -> list[Ticket]:
    product = db.session.get(Product, int(product_id))
    if product is None or not product.is_ticket or product.ticket_details is None:
        raise InvalidOperationError("Product is not a ticket")
    details = product.ticket_details

    tickets: list[Ticket] = []
    taken: set[str] = set()
    for _ in range(max(1, int(quantity or 1))):
        number, qr = _unique_ticket_codes(int(product.id), int(user_id), taken)
        taken.update((number, qr))
        ticket = Ticket(
            ticket_number=number,
            qr_code=qr,
            product_id=int(product.id),
            order_id=int(order_id),
            user_id=int(user_id),
            status=TicketStatus.VALID,
        )
        db.session.add(ticket)
        tickets.append(ticket)
    db.session.commit()

    logger.info(
        "tickets.issued order_id=%s product_id=%s user_id=%s count=%s",
        order_id,
        product.id,
        user_id,
        len(tickets),
    )
    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(user_id),
        type=NotificationType.TICKET,
        message=f"Your tickets for {details.event_name} have been issued.",
        data=TicketBatchData(
            order_id=int(order_id),
            event_name=details.event_name,
            event_date=details.event_date,
            event_location=details.event_location,
            ticket_type=details.ticket_type,
            tickets=[{"ticketNumber": t.ticket_number, "qrCode": t.qr_code} for t in tickets],
        ),
    )
    return tickets


def verify_ticket(qr_code: str) -> dict:
    ticket = Ticket.query.filter_by(qr_code=(qr_code or "")).first() if qr_code else None
    if ticket is None:
        raise ValidationError("Invalid ticket")
    if ticket.status != TicketStatus.VALID:
        raise ValidationError(f"Ticket is {ticket.status.lower()}")

    details = ticket.product.ticket_details if ticket.product is not None else None
    if details is not None and details.valid_until and datetime.utcnow() > details.valid_until:
        ticket.status = TicketStatus.EXPIRED
        db.session.commit()
        logger.info("tickets.expired ticket_id=%s", ticket.id)
        raise ValidationError("Ticket has expired")

    return {
        "isValid": True,
        "ticket": ticket.to_dict(),
        "eventName": details.event_name if details else None,
        "eventDate": details.event_date.isoformat() if details and details.event_date else None,
        "eventLocation": details.event_location if details else None,
        "ticketType": details.ticket_type if details else None,
        "userName": ticket.user.name if ticket.user is not None else None,
    }


def mark_ticket_as_used(ticket_id: int, *, sink: NotificationSink | None = None) -> Ticket:
    """Stamp a ticket as used.

    Callers check event ownership first. Re-marking a used ticket is accepted
    unless STRICT_TICKET_REUSE_CHECK is enabled.
    """
    ticket = db.session.get(Ticket, int(ticket_id))
    if ticket is None:
        raise NotFoundError("Ticket not found")
    if _strict_reuse_check() and ticket.status != TicketStatus.VALID:
        raise ConflictError(f"Ticket is {ticket.status.lower()}")

    used_at = datetime.utcnow()
    ticket.status = TicketStatus.USED
    ticket.used_at = used_at
    db.session.commit()

    logger.info("tickets.used ticket_id=%s", ticket.id)
    (sink or get_notification_sink()).best_effort_notify(
        user_id=int(ticket.user_id),
        type=NotificationType.TICKET,
        message=f"Your ticket #{ticket.ticket_number} has been used.",
        data=TicketUsedData(ticket_id=int(ticket.id), ticket_number=ticket.ticket_number, used_at=used_at),
    )
    return ticket


def get_ticket(ticket_id) -> Ticket:
    try:
        ticket = db.session.get(Ticket, int(ticket_id))
    except (TypeError, ValueError):
        ticket = None
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


def list_event_tickets(product_id: int) -> list[Ticket]:
    return Ticket.query.filter_by(product_id=int(product_id)).order_by(Ticket.created_at.desc()).all()


def list_user_tickets(user_id: int) -> list[Ticket]:
    return Ticket.query.filter_by(user_id=int(user_id)).order_by(Ticket.created_at.desc()).all()


def list_all_tickets(limit: int = 200) -> list[Ticket]:
    return Ticket.query.order_by(Ticket.created_at.desc()).limit(int(limit)).all()
