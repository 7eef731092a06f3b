from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from typing import Any

try:
    import redis
except Exception:  # pragma: no cover - optional dependency safety
    redis = None


_LOCK = threading.Lock()
_CLIENT = None
_CLIENT_INIT_ATTEMPTED = False

# key -> (expires_at, serialized payload)
_MEMORY: dict[str, tuple[float, str]] = {}

_STATS = {
    "hits": 0,
    "misses": 0,
    "sets": 0,
    "deletes": 0,
    "errors": 0,
}


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 86400) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def cache_enabled(default: bool = True) -> bool:
    return _env_bool("ENABLE_CACHE", default)


def default_cache_ttl_seconds() -> int:
    return _env_int("DEFAULT_CACHE_TTL_SECONDS", 300)


def _cache_redis_url() -> str:
    return (os.getenv("CACHE_REDIS_URL") or "").strip()


def _bump_stat(name: str, delta: int = 1) -> None:
    with _LOCK:
        _STATS[name] = int(_STATS.get(name, 0) or 0) + int(delta)


def _get_client():
    global _CLIENT, _CLIENT_INIT_ATTEMPTED
    with _LOCK:
        if _CLIENT_INIT_ATTEMPTED:
            return _CLIENT
        _CLIENT_INIT_ATTEMPTED = True

    url = _cache_redis_url()
    if not url or redis is None:
        return None
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=0.75,
            socket_connect_timeout=0.75,
            health_check_interval=30,
        )
        client.ping()
        with _LOCK:
            _CLIENT = client
        return client
    except Exception:
        _bump_stat("errors")
        with _LOCK:
            _CLIENT = None
        return None


def _stable_param_value(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
        except Exception:
            return str(value)
    if value is None:
        return ""
    return str(value)


def build_cache_key(scope: str, params: dict[str, Any] | None = None) -> str:
    safe_scope = str(scope or "default").strip().lower().replace(" ", "_")
    payload = params or {}
    parts: list[str] = []
    for key in sorted(payload.keys()):
        parts.append(f"{str(key)}={_stable_param_value(payload.get(key))}")
    joined = "&".join(parts)
    if len(joined) > 420:
        joined = hashlib.sha256(joined.encode("utf-8")).hexdigest()
    return f"v1:{safe_scope}:{joined}"


def get_json(key: str) -> dict | list | None:
    if not cache_enabled(True):
        return None
    client = _get_client()
    try:
        if client is not None:
            raw = client.get(str(key))
        else:
            with _LOCK:
                entry = _MEMORY.get(str(key))
                if entry and entry[0] < time.time():
                    _MEMORY.pop(str(key), None)
                    entry = None
            raw = entry[1] if entry else None
        if not raw:
            _bump_stat("misses")
            return None
        parsed = json.loads(raw)
        _bump_stat("hits")
        return parsed
    except Exception:
        _bump_stat("errors")
        return None


def set_json(key: str, value: Any, ttl_seconds: int | None = None) -> bool:
    if not cache_enabled(True):
        return False
    ttl = int(ttl_seconds or default_cache_ttl_seconds())
    if ttl <= 0:
        ttl = default_cache_ttl_seconds()
    client = _get_client()
    try:
        payload = json.dumps(value, separators=(",", ":"), default=str)
        if client is not None:
            client.setex(str(key), ttl, payload)
        else:
            now = time.time()
            with _LOCK:
                for stale in [k for k, (expires_at, _) in _MEMORY.items() if expires_at < now]:
                    _MEMORY.pop(stale, None)
                _MEMORY[str(key)] = (now + ttl, payload)
        _bump_stat("sets")
        return True
    except Exception:
        _bump_stat("errors")
        return False


def delete(key: str) -> int:
    client = _get_client()
    try:
        if client is not None:
            removed = int(client.delete(str(key)) or 0)
        else:
            with _LOCK:
                removed = 1 if _MEMORY.pop(str(key), None) is not None else 0
        if removed > 0:
            _bump_stat("deletes", removed)
        return removed
    except Exception:
        _bump_stat("errors")
        return 0


def delete_prefix(prefix: str, *, scan_count: int = 200) -> int:
    client = _get_client()
    total = 0
    try:
        if client is None:
            with _LOCK:
                doomed = [k for k in _MEMORY if k.startswith(str(prefix))]
                for k in doomed:
                    _MEMORY.pop(k, None)
            total = len(doomed)
        else:
            cursor = 0
            while True:
                cursor, keys = client.scan(cursor=cursor, match=f"{str(prefix)}*", count=int(scan_count))
                if keys:
                    total += int(client.delete(*keys) or 0)
                if cursor == 0:
                    break
        if total > 0:
            _bump_stat("deletes", total)
        return int(total)
    except Exception:
        _bump_stat("errors")
        return int(total)


def cache_stats() -> dict:
    client = _get_client()
    base = {
        "enabled": bool(cache_enabled(True)),
        "backend": "redis" if client is not None else "memory",
    }
    with _LOCK:
        base.update({name: int(count or 0) for name, count in _STATS.items()})
        base["memory_keys"] = len(_MEMORY)
    return base


def _reset_cache_state_for_tests() -> None:
    global _CLIENT, _CLIENT_INIT_ATTEMPTED
    with _LOCK:
        _CLIENT = None
        _CLIENT_INIT_ATTEMPTED = False
        _MEMORY.clear()
        for key in _STATS:
            _STATS[key] = 0
