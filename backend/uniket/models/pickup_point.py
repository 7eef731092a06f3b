from datetime import datetime

from uniket.extensions import db


class PickupPoint(db.Model):
    __tablename__ = "pickup_points"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(160), nullable=False)
    region = db.Column(db.String(80), nullable=False, index=True)
    school = db.Column(db.String(160), nullable=False)
    location = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "region": self.region,
            "school": self.school,
            "location": self.location,
            "phone": self.phone,
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
