from __future__ import annotations

import os
import threading
import time
from functools import wraps

from flask import current_app, g, jsonify, request

try:
    import redis
except Exception:  # pragma: no cover - optional dependency fallback
    redis = None


_LOCK = threading.Lock()
_WINDOWS: dict[str, list[float]] = {}
_CLIENT = None
_CLIENT_INIT = False
_STATS = {
    "redis_hits": 0,
    "redis_errors": 0,
    "memory_hits": 0,
}


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def rate_limit_enabled(default: bool = True) -> bool:
    if (os.getenv("ENABLE_RATE_LIMIT") or "").strip():
        return _env_bool("ENABLE_RATE_LIMIT", default)
    return _env_bool("RATE_LIMIT_ENABLED", default)


def trust_proxy_headers(default: bool = False) -> bool:
    return _env_bool("TRUST_PROXY_HEADERS", default)


def skip_in_tests(app) -> bool:
    if not bool(app.config.get("TESTING")):
        return False
    return not _env_bool("RATE_LIMIT_IN_TESTS", False)


def _rate_limit_redis_url() -> str:
    return (os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()


def _get_client():
    global _CLIENT, _CLIENT_INIT
    with _LOCK:
        if _CLIENT_INIT:
            return _CLIENT
        _CLIENT_INIT = True
    if redis is None:
        return None
    url = _rate_limit_redis_url()
    if not url:
        return None
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=0.75,
            socket_timeout=0.75,
            health_check_interval=30,
        )
        client.ping()
        with _LOCK:
            _CLIENT = client
        return client
    except Exception:
        with _LOCK:
            _CLIENT = None
        return None


def check_limit(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """Count one hit against `key`; returns (allowed, retry_after_seconds)."""
    safe_window = max(1, int(window_seconds))
    safe_limit = max(1, int(limit))
    redis_client = _get_client()
    if redis_client is not None:
        now_sec = int(time.time())
        counter_key = f"uniket:rl:{key}:{now_sec // safe_window}"
        try:
            current = int(redis_client.incr(counter_key))
            if current == 1:
                redis_client.expire(counter_key, safe_window + 1)
            with _LOCK:
                _STATS["redis_hits"] += 1
            if current <= safe_limit:
                return True, 0
            return False, int(max(1, safe_window - (now_sec % safe_window)))
        except Exception:
            with _LOCK:
                _STATS["redis_errors"] += 1
    return _check_limit_memory(key, limit=safe_limit, window_seconds=safe_window)


def _check_limit_memory(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    now = time.time()
    start = now - window_seconds
    with _LOCK:
        bucket = [ts for ts in _WINDOWS.get(key, []) if ts >= start]
        if len(bucket) >= limit:
            _WINDOWS[key] = bucket
            _STATS["memory_hits"] += 1
            return False, int(max(1, window_seconds - (now - min(bucket))))
        bucket.append(now)
        _WINDOWS[key] = bucket
    return True, 0


def resolve_client_ip(request_obj=None, *, trusted_proxy: bool | None = None) -> str:
    req = request_obj or request
    trusted = trust_proxy_headers(False) if trusted_proxy is None else bool(trusted_proxy)
    if trusted:
        xff = (req.headers.get("X-Forwarded-For") or "").strip()
        if xff:
            first_hop = (xff.split(",")[0] or "").strip()
            if first_hop:
                return first_hop
        x_real_ip = (req.headers.get("X-Real-IP") or "").strip()
        if x_real_ip:
            return x_real_ip
    return (req.remote_addr or "").strip() or "unknown"


def build_rate_limit_subject(*, scope: str, user_id: int | None, request_obj=None) -> str:
    if (scope or "ip").strip().lower() == "user" and user_id is not None:
        return f"u:{int(user_id)}"
    return f"ip:{resolve_client_ip(request_obj)}"


def rate_limited_response(retry_after_seconds: int, message: str = "Too many requests. Please retry later."):
    retry_after = int(max(1, retry_after_seconds or 1))
    payload = {
        "ok": False,
        "error": "RATE_LIMITED",
        "message": message,
        "status": 429,
        "retry_after": retry_after,
    }
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    resp = jsonify(payload)
    resp.status_code = 429
    resp.headers["Retry-After"] = str(retry_after)
    return resp


def rate_limit(key: str, per_seconds: int, limit: int, *, scope: str = "ip", message: str | None = None):
    """Flask decorator wrapper over check_limit."""
    safe_key = str(key or "rate_limit")

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            if skip_in_tests(current_app) or not rate_limit_enabled(True):
                return fn(*args, **kwargs)
            subject = build_rate_limit_subject(
                scope=scope,
                user_id=getattr(g, "auth_user_id", None),
            )
            ok, retry_after = check_limit(f"{safe_key}:{subject}", limit=limit, window_seconds=per_seconds)
            if ok:
                return fn(*args, **kwargs)
            return rate_limited_response(retry_after, message or "Too many requests. Please retry later.")

        return wrapped

    return decorator


def sensitive_operation(key: str):
    """Per-user cap on mutating marketplace operations (orders, tickets, bids, withdrawals)."""
    return rate_limit(
        f"sensitive:{key}",
        3600,
        50,
        scope="user",
        message="Too many sensitive operations, please try again later.",
    )


def limiter_stats() -> dict:
    with _LOCK:
        return {
            "enabled": bool(rate_limit_enabled(True)),
            "redis_configured": bool(_rate_limit_redis_url()),
            "redis_connected": bool(_CLIENT is not None),
            "redis_hits": int(_STATS["redis_hits"]),
            "redis_errors": int(_STATS["redis_errors"]),
            "memory_hits": int(_STATS["memory_hits"]),
        }


def _reset_limits_for_tests() -> None:
    global _CLIENT, _CLIENT_INIT
    with _LOCK:
        _WINDOWS.clear()
        _CLIENT = None
        _CLIENT_INIT = False
        for key in _STATS:
            _STATS[key] = 0


__all__ = [
    "check_limit",
    "rate_limit",
    "sensitive_operation",
    "rate_limit_enabled",
    "rate_limited_response",
    "resolve_client_ip",
    "skip_in_tests",
    "trust_proxy_headers",
    "limiter_stats",
    "build_rate_limit_subject",
]
