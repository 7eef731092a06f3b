import os
import time
import logging
from typing import Optional, Dict, Any, Tuple

import jwt

from uniket.errors import AuthenticationError

logger = logging.getLogger(__name__)


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret"


def _default_ttl() -> int:
    raw = (os.getenv("JWT_TTL_SECONDS") or "").strip()
    try:
        return max(60, int(raw)) if raw else 60 * 60 * 24 * 7
    except Exception:
        return 60 * 60 * 24 * 7


def create_access_token(user_id: int, role: str = "customer", ttl_seconds: int | None = None) -> str:
    now = int(time.time())
    ttl = int(ttl_seconds) if ttl_seconds is not None else _default_ttl()
    payload = {
        "sub": str(user_id),
        "id": int(user_id),
        "role": (role or "customer").strip().lower(),
        "iat": now,
        "exp": now + ttl,
        "type": "access",
    }
    return jwt.encode(payload, _secret(), algorithm="HS256")


# Short alias used by the auth routes and tests.
def create_token(user_id: int, role: str = "customer", ttl_seconds: int | None = None) -> str:
    return create_access_token(user_id=user_id, role=role, ttl_seconds=ttl_seconds)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, _secret(), algorithms=["HS256"])
        return payload
    except Exception:
        return None


def verify_token(token: str | None) -> Dict[str, Any]:
    """Decode a bearer token or raise AuthenticationError naming the failure."""
    if not token:
        raise AuthenticationError("No token provided")
    try:
        return jwt.decode(token, _secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def parse_auth_header(auth_header: str) -> Tuple[Optional[str], Optional[str]]:
    if not auth_header:
        return None, None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1], "bearer"
    return None, None


def get_bearer_token(auth_header: str) -> Optional[str]:
    if not auth_header:
        return None
    token, _scheme = parse_auth_header(auth_header)
    return token
