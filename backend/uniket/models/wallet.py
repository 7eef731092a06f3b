import json
from datetime import datetime

from uniket.extensions import db


class Wallet(db.Model):
    __tablename__ = "wallets"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    balance = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance": float(self.balance or 0.0),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Transaction(db.Model):
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)  # fund | refund | withdrawal
    amount = db.Column(db.Float, nullable=False)
    # PENDING | COMPLETED | CANCELLED | APPROVED | REJECTED
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    description = db.Column(db.Text, nullable=True)  # JSON string

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def _load_description(self) -> dict:
        raw = (self.description or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {"note": str(data)}
        except Exception:
            return {"note": raw}

    def _save_description(self, description: dict) -> None:
        try:
            self.description = json.dumps(description, separators=(",", ":"), default=str)
        except Exception:
            self.description = "{}"

    def description_dict(self) -> dict:
        return self._load_description()

    def update_description(self, **fields) -> None:
        desc = self._load_description()
        desc.update(fields)
        self._save_description(desc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": float(self.amount or 0.0),
            "status": self.status,
            "description": self.description_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
