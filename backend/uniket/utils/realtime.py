from __future__ import annotations

import json
import logging
import os
from datetime import datetime

from flask import current_app, has_app_context

try:
    import redis
except Exception:  # pragma: no cover - optional dependency fallback
    redis = None

logger = logging.getLogger(__name__)


def user_channel(user_id: int) -> str:
    return f"user:{int(user_id)}"


class RealtimePublisher:
    """Publishes JSON events to a per-user Redis pub/sub channel.

    A socket gateway subscribes to `user:<id>` and forwards to the browser.
    Publishing is fire-and-forget and reports failure through its return value.
    """

    name = "redis"

    def __init__(self, url: str | None = None, client=None):
        self._url = (url or "").strip()
        self._client = client

    @classmethod
    def from_env(cls) -> "RealtimePublisher":
        return cls(url=os.getenv("REALTIME_REDIS_URL") or os.getenv("REDIS_URL") or "")

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._url or redis is None:
            return None
        self._client = redis.Redis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=0.75,
            socket_timeout=0.75,
        )
        return self._client

    def publish_to_user(self, user_id: int, event: str, payload: dict) -> bool:
        try:
            client = self._get_client()
            if client is None:
                logger.debug("realtime.skipped_no_backend event=%s user_id=%s", event, user_id)
                return False
            message = json.dumps({"event": event, "data": payload}, default=_json_default)
            client.publish(user_channel(user_id), message)
            return True
        except Exception as e:
            logger.warning("realtime.publish_failed event=%s user_id=%s err=%s", event, user_id, e)
            return False


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def get_realtime_publisher() -> RealtimePublisher:
    if has_app_context():
        publisher = current_app.extensions.get("realtime_publisher")
        if publisher is not None:
            return publisher
    return RealtimePublisher.from_env()
