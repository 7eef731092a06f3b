from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from uniket.errors import AuthenticationError, ServerError, ValidationError
from uniket.extensions import db
from uniket.models import LoginAttempt, User
from uniket.services.fraud import detect_multiple_accounts, detect_suspicious_logins
from uniket.utils.auth import require_user
from uniket.utils.jwt_utils import create_token
from uniket.utils.rate_limit import resolve_client_ip

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")

SELF_SERVICE_ROLES = ("customer", "vendor")


def _record_attempt(*, email: str, user: User | None, success: bool, ip_address: str) -> None:
    try:
        db.session.add(
            LoginAttempt(
                user_id=int(user.id) if user is not None else None,
                email=email[:255],
                ip_address=ip_address[:64],
                success=bool(success),
            )
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("auth.login_attempt_record_failed email=%s", email)


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    role = (data.get("role") or "customer").strip().lower()

    if not name or not email or not password:
        raise ValidationError("Name, email and password are required")
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    if role not in SELF_SERVICE_ROLES:
        raise ValidationError("Invalid role")
    if User.query.filter_by(email=email).first() is not None:
        raise ValidationError("Email already registered")

    user = User(name=name, email=email, role=role, phone=(data.get("phone") or "").strip() or None)
    user.set_password(password)
    try:
        db.session.add(user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("auth.register_failed email=%s", email)
        raise ServerError("Failed to register user")

    current_app.logger.info("auth.registered user_id=%s role=%s", user.id, user.role)
    token = create_token(int(user.id), role=user.role)
    return jsonify({"ok": True, "token": token, "user": user.to_dict()}), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")

    ip_address = resolve_client_ip(request)
    user = User.query.filter_by(email=email).first()
    ok = bool(user is not None and user.check_password(password))
    _record_attempt(email=email, user=user, success=ok, ip_address=ip_address)

    if not ok:
        if user is not None:
            try:
                detect_suspicious_logins(int(user.id), ip_address)
            except Exception:
                db.session.rollback()
                current_app.logger.exception("auth.fraud_check_failed user_id=%s", user.id)
        raise AuthenticationError("Invalid credentials")

    try:
        detect_multiple_accounts(ip_address)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("auth.fraud_check_failed ip=%s", ip_address)

    token = create_token(int(user.id), role=user.role)
    return jsonify({"ok": True, "token": token, "user": user.to_dict()}), 200


@auth_bp.get("/me")
def me():
    user = require_user()
    return jsonify({"ok": True, "user": user.to_dict()}), 200
