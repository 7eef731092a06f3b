from __future__ import annotations

from flask import g, request

from uniket.errors import AuthenticationError, AuthorizationError
from uniket.extensions import db
from uniket.models import User
from uniket.utils.jwt_utils import get_bearer_token, verify_token


def role_of(user: User | None) -> str:
    if not user:
        return "guest"
    return (getattr(user, "role", None) or "customer").strip().lower()


def is_admin(user: User | None) -> bool:
    return role_of(user) == "admin"


def current_user() -> User:
    """Resolve the bearer token on the current request to a User.

    Raises AuthenticationError for a missing, malformed or expired token and
    for tokens whose subject no longer exists.
    """
    cached = getattr(g, "current_user", None)
    if cached is not None:
        return cached
    token = get_bearer_token(request.headers.get("Authorization", ""))
    payload = verify_token(token)
    try:
        uid = int(payload.get("id") or payload.get("sub"))
    except Exception:
        raise AuthenticationError("Invalid token")
    user = db.session.get(User, uid)
    if user is None:
        raise AuthenticationError("User not found")
    g.current_user = user
    return user


def require_role(user: User, *roles: str) -> User:
    allowed = {r.strip().lower() for r in roles}
    if role_of(user) not in allowed:
        raise AuthorizationError("Not authorized to access this route")
    return user


def require_user(*roles: str) -> User:
    user = current_user()
    if roles:
        require_role(user, *roles)
    return user
