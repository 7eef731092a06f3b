from datetime import datetime

from uniket.extensions import db


class Bid(db.Model):
    __tablename__ = "bids"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING | APPROVED | REJECTED

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    product = db.relationship("Product", lazy="joined")
    user = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user is not None else None,
            "amount": float(self.amount or 0.0),
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
