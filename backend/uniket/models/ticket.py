from datetime import datetime

from uniket.extensions import db


class Ticket(db.Model):
    __tablename__ = "tickets"

    id = db.Column(db.Integer, primary_key=True)

    ticket_number = db.Column(db.String(64), unique=True, nullable=False)
    qr_code = db.Column(db.String(160), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="VALID")  # VALID | USED | EXPIRED | CLOSED
    used_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    product = db.relationship("Product", lazy="joined")
    user = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "qr_code": self.qr_code,
            "product_id": self.product_id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "status": self.status,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
