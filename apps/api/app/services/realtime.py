"""
Realtime change events for UI subscribers.

Channels:
- family:{family_id} carries membership and shared-list changes.
- user:{user_id}:notifications carries notification inserts for one user.

Publishing is fire-and-forget: handler failures are logged and never reach the
caller that mutated state.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import redis
from fastapi.requests import HTTPConnection

from app.core.config import Settings

logger = logging.getLogger(__name__)


def family_channel(family_id: int) -> str:
    return f"family:{family_id}"


def user_notifications_channel(user_id: str) -> str:
    return f"user:{user_id}:notifications"


@dataclass(frozen=True)
class RealtimeEvent:
    channel: str
    type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


Handler = Callable[[RealtimeEvent], None]


class RealtimeBroker:
    """In-process broker with one subscription per (consumer, channel)."""

    def __init__(self) -> None:
        self._subscriptions: dict[tuple[str, str], Handler] = {}
        self._lock = threading.Lock()

    def subscribe(self, consumer_id: str, channel: str, handler: Handler) -> None:
        key = (consumer_id, channel)
        with self._lock:
            if key in self._subscriptions:
                logger.debug("replacing subscription consumer=%s channel=%s", consumer_id, channel)
            self._subscriptions[key] = handler

    def unsubscribe(self, consumer_id: str, channel: str) -> bool:
        with self._lock:
            return self._subscriptions.pop((consumer_id, channel), None) is not None

    def unsubscribe_all(self, consumer_id: str) -> int:
        with self._lock:
            keys = [key for key in self._subscriptions if key[0] == consumer_id]
            for key in keys:
                del self._subscriptions[key]
        return len(keys)

    def subscriptions_for(self, consumer_id: str) -> list[str]:
        with self._lock:
            return sorted(channel for consumer, channel in self._subscriptions if consumer == consumer_id)

    def publish(self, channel: str, event_type: str, payload: dict[str, Any]) -> RealtimeEvent:
        event = RealtimeEvent(channel=channel, type=event_type, payload=payload)
        self._dispatch(event)
        return event

    def _dispatch(self, event: RealtimeEvent) -> None:
        with self._lock:
            handlers = [handler for (_, channel), handler in self._subscriptions.items() if channel == event.channel]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("realtime handler failed channel=%s type=%s", event.channel, event.type)


class RedisRealtimeBroker(RealtimeBroker):
    """Local dispatch plus Redis pub/sub fan-out to other processes."""

    def __init__(self, client: redis.Redis) -> None:
        super().__init__()
        self._redis = client

    def publish(self, channel: str, event_type: str, payload: dict[str, Any]) -> RealtimeEvent:
        event = super().publish(channel, event_type, payload)
        try:
            self._redis.publish(channel, json.dumps(event.to_dict(), default=str))
        except redis.RedisError:
            logger.warning("redis publish failed channel=%s type=%s", channel, event_type, exc_info=True)
        return event


def build_broker(settings: Settings) -> RealtimeBroker:
    if settings.realtime_backend == "redis":
        client = redis.Redis(host=settings.redis_host, port=settings.redis_port)
        return RedisRealtimeBroker(client)
    return RealtimeBroker()


def get_broker(connection: HTTPConnection) -> RealtimeBroker:
    return connection.app.state.broker
