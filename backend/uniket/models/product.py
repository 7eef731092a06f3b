from datetime import datetime

from uniket.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    price = db.Column(db.Float, nullable=False, default=0.0)
    image = db.Column(db.String(1024), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    is_ticket = db.Column(db.Boolean, nullable=False, default=False)
    is_flagged = db.Column(db.Boolean, nullable=False, default=False)

    # Bidding window
    enable_bidding = db.Column(db.Boolean, nullable=False, default=False)
    starting_bid = db.Column(db.Float, nullable=True)
    current_bid = db.Column(db.Float, nullable=True)
    bid_end_date = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    vendor = db.relationship("User", lazy="joined")
    ticket_details = db.relationship(
        "TicketDetails",
        uselist=False,
        back_populates="product",
        lazy="joined",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "name": self.name,
            "description": self.description or "",
            "price": float(self.price or 0.0),
            "image": self.image or None,
            "quantity": int(self.quantity or 0),
            "is_ticket": bool(self.is_ticket),
            "is_flagged": bool(self.is_flagged),
            "enable_bidding": bool(self.enable_bidding),
            "starting_bid": float(self.starting_bid) if self.starting_bid is not None else None,
            "current_bid": float(self.current_bid) if self.current_bid is not None else None,
            "bid_end_date": self.bid_end_date.isoformat() if self.bid_end_date else None,
            "ticket_details": self.ticket_details.to_dict() if self.ticket_details else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TicketDetails(db.Model):
    __tablename__ = "ticket_details"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, unique=True)

    event_name = db.Column(db.String(200), nullable=False)
    event_date = db.Column(db.DateTime, nullable=False)
    event_location = db.Column(db.String(255), nullable=False)
    ticket_type = db.Column(db.String(64), nullable=False, default="REGULAR")
    valid_until = db.Column(db.DateTime, nullable=False)

    product = db.relationship("Product", back_populates="ticket_details")

    def to_dict(self):
        return {
            "event_name": self.event_name,
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "event_location": self.event_location,
            "ticket_type": self.ticket_type,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
        }
