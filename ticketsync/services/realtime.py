"""Topic based realtime events for connected websocket clients.

Events are delivered to local websocket subscribers and, when Redis is
configured, relayed through a pub/sub channel so every worker's subscribers
receive them.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from fastapi import WebSocket

from ticketsync.core.logging import log_debug, log_error, log_info, log_warning
from ticketsync.services.redis import get_redis_client

TICKETS_TOPIC = "tickets"
RELAY_CHANNEL = "ticketsync:realtime"


def ticket_topic(ticket_id: int) -> str:
    return f"ticket_{ticket_id}"


def user_topic(user_id: int) -> str:
    return f"user_{user_id}"


@dataclass(slots=True)
class BroadcastResult:
    """Summary of a broadcast operation."""

    attempted: int
    delivered: int
    dropped: int


def _normalise_topics(topics: Iterable[str] | None) -> set[str]:
    normalised: set[str] = set()
    for topic in topics or ():
        if not isinstance(topic, str):
            continue
        cleaned = topic.strip().lower()
        if cleaned:
            normalised.add(cleaned)
    return normalised


class RealtimePublisher:
    """Track websocket subscriptions and publish events to topics."""

    def __init__(self) -> None:
        self._subscriptions: dict[WebSocket, set[str]] = {}
        self._lock = asyncio.Lock()
        self._origin = uuid.uuid4().hex
        self._relay_task: asyncio.Task | None = None

    async def connect(self, websocket: WebSocket, topics: Iterable[str]) -> None:
        """Accept a websocket and subscribe it to ``topics``."""

        await websocket.accept()
        async with self._lock:
            self._subscriptions[websocket] = _normalise_topics(topics)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._subscriptions.pop(websocket, None)

    async def publish(
        self, topic: str, event: str, data: Mapping[str, Any] | None = None
    ) -> BroadcastResult:
        """Fire-and-forget publish; delivery failures are logged, never raised."""

        payload = {
            "type": "event",
            "event": event,
            "topic": topic.strip().lower(),
            "data": dict(data or {}),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            result = await self._deliver_local(payload)
        except Exception as exc:  # pragma: no cover - websocket transport safety
            log_error("Realtime delivery failed", topic=topic, event_name=event, error=str(exc))
            result = BroadcastResult(attempted=0, delivered=0, dropped=0)
        await self._relay(payload)
        return result

    async def _deliver_local(self, payload: Mapping[str, Any]) -> BroadcastResult:
        topic = payload["topic"]
        async with self._lock:
            # Snapshot so the lock is not held while sending.
            targets = [ws for ws, topics in self._subscriptions.items() if topic in topics]

        delivered = 0
        dropped = 0
        for websocket in targets:
            try:
                await websocket.send_json(dict(payload))
                delivered += 1
            except Exception:
                dropped += 1
                async with self._lock:
                    self._subscriptions.pop(websocket, None)

        if targets:
            log_debug(
                "Realtime event delivered",
                topic=topic,
                event_name=payload["event"],
                delivered=delivered,
                dropped=dropped,
            )
        return BroadcastResult(attempted=len(targets), delivered=delivered, dropped=dropped)

    async def _relay(self, payload: Mapping[str, Any]) -> None:
        client = get_redis_client()
        if client is None:
            return
        message = json.dumps({"origin": self._origin, "payload": dict(payload)}, default=str)
        try:
            await client.publish(RELAY_CHANNEL, message)
        except Exception as exc:
            log_warning("Unable to relay realtime event", error=str(exc))

    async def _consume_relay(self) -> None:
        client = get_redis_client()
        if client is None:
            return
        pubsub = client.pubsub()
        await pubsub.subscribe(RELAY_CHANNEL)
        log_info("Realtime relay subscribed", channel=RELAY_CHANNEL)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message.get("data") or "{}")
                except (TypeError, ValueError):
                    log_warning("Discarding malformed realtime relay message")
                    continue
                if envelope.get("origin") == self._origin:
                    continue
                payload = envelope.get("payload")
                if isinstance(payload, dict) and payload.get("topic"):
                    await self._deliver_local(payload)
        finally:
            await pubsub.aclose()

    def start_relay(self) -> None:
        if self._relay_task is not None or get_redis_client() is None:
            return
        self._relay_task = asyncio.create_task(self._consume_relay())

    async def stop_relay(self) -> None:
        task = self._relay_task
        self._relay_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


realtime_publisher = RealtimePublisher()
