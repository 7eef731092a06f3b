import json
from datetime import datetime

from uniket.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(40), nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    data = db.Column(db.Text, nullable=True)  # JSON string

    read = db.Column(db.Boolean, nullable=False, default=False)
    role = db.Column(db.String(32), nullable=False, default="customer")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def _load_data(self):
        raw = (self.data or "").strip()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except Exception:
            return None

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "message": self.message or "",
            "data": self._load_data(),
            "read": bool(self.read),
            "role": self.role or "customer",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AdminAlert(db.Model):
    __tablename__ = "admin_alerts"

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(40), nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    data = db.Column(db.Text, nullable=True)  # JSON string

    severity = db.Column(db.String(16), nullable=False, default="MEDIUM")  # HIGH | MEDIUM | LOW
    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING | RESOLVED

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        data = None
        if self.data:
            try:
                data = json.loads(self.data)
            except Exception:
                data = None
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message or "",
            "data": data,
            "severity": self.severity,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
