# Live-session delivery.
# A per-process registry maps channel names (user:{id}, conversation:{id}) to open
# WebSockets. Request handlers run in the thread pool, so every entry point here is
# thread-safe and hands the actual send to the loop that owns each socket.
# With REDIS_ENABLED, envelopes travel through Redis Pub/Sub (libyastay:rt:*) and the
# subscriber thread in every process applies them to its local sockets.
import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

import redis
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocketState

from .redis_client import get_redis, is_redis_enabled, new_pubsub_connection

logger = logging.getLogger("libyastay.realtime")

REDIS_CHANNEL_PREFIX = "libyastay:rt:"
EVENTS_CHANNEL = REDIS_CHANNEL_PREFIX + "events"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class TokenBucket:
    """
    Simple token bucket limiter.
    - rate: tokens per second (refill)
    - capacity: max burst tokens
    consume(1) returns True if allowed, False if throttled.
    """
    def __init__(self, rate: float, capacity: int) -> None:
        self.rate = rate
        self.capacity = capacity
        self.tokens = float(capacity)
        self.ts = time.monotonic()

    def consume(self, amount: float = 1.0) -> bool:
        now = time.monotonic()
        delta = now - self.ts
        self.ts = now
        self.tokens = min(self.capacity, self.tokens + delta * self.rate)
        if self.tokens >= amount:
            self.tokens -= amount
            return True
        return False


@dataclass(eq=False)
class LiveSession:
    websocket: WebSocket
    user_id: str
    loop: asyncio.AbstractEventLoop
    limiter: TokenBucket = field(default_factory=lambda: TokenBucket(rate=1.0, capacity=5))
    channels: Set[str] = field(default_factory=set)


class ConnectionManager:
    """
    Tracks open live sessions and the channels each one has joined.
    """
    def __init__(self) -> None:
        self.channels: Dict[str, Set[WebSocket]] = {}
        self.sessions: Dict[WebSocket, LiveSession] = {}
        self._lock = threading.Lock()

    async def connect(self, websocket: WebSocket, user_id: str, channels: Iterable[str]) -> LiveSession:
        await websocket.accept()
        session = LiveSession(websocket=websocket, user_id=user_id, loop=asyncio.get_running_loop())
        with self._lock:
            self.sessions[websocket] = session
            for channel in channels:
                self._join(session, channel)
        return session

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            session = self.sessions.pop(websocket, None)
            if session is None:
                return
            for channel in session.channels:
                members = self.channels.get(channel)
                if members is None:
                    continue
                members.discard(websocket)
                if not members:
                    del self.channels[channel]

    def _join(self, session: LiveSession, channel: str) -> None:
        # Caller holds the lock
        self.channels.setdefault(channel, set()).add(session.websocket)
        session.channels.add(channel)

    def join_user(self, user_id: str, channel: str) -> int:
        """Add every open session of ``user_id`` to ``channel``; returns how many joined."""
        with self._lock:
            targets = [s for s in self.sessions.values() if s.user_id == user_id]
            for session in targets:
                self._join(session, channel)
        return len(targets)

    def session_count(self, channel: str) -> int:
        with self._lock:
            return len(self.channels.get(channel, ()))

    def dispatch(self, channel: str, frame: dict) -> int:
        """Send ``frame`` to local sessions on ``channel``; returns the number of recipients."""
        with self._lock:
            targets = [self.sessions[ws] for ws in self.channels.get(channel, ()) if ws in self.sessions]
        if not targets:
            return 0
        text = json.dumps(frame)
        for session in targets:
            try:
                asyncio.run_coroutine_threadsafe(self._send(session, text), session.loop)
            except RuntimeError:
                # Owning loop already closed
                self.disconnect(session.websocket)
        return len(targets)

    async def _send(self, session: LiveSession, text: str) -> None:
        ws = session.websocket
        if ws.application_state != WebSocketState.CONNECTED:
            self.disconnect(ws)
            return
        try:
            await ws.send_text(text)
        except Exception as exc:
            logger.info("realtime.send_failed", extra={"user_id": session.user_id, "error": str(exc)})
            self.disconnect(ws)


manager = ConnectionManager()

_subscriber_started = False
_subscriber_lock = threading.Lock()


def _apply(envelope: dict) -> None:
    op = envelope.get("op")
    channel = envelope.get("channel")
    if not isinstance(channel, str):
        return
    if op == "send":
        manager.dispatch(channel, envelope.get("frame") or {})
    elif op == "join":
        user_id = envelope.get("user_id")
        if isinstance(user_id, str):
            manager.join_user(user_id, channel)


def _route(envelope: dict) -> None:
    # Cross-process path only when this process is also listening for the echo
    if _subscriber_started:
        r = get_redis()
        if r is not None:
            try:
                r.publish(EVENTS_CHANNEL, json.dumps(envelope))
                return
            except redis.RedisError as exc:
                logger.warning("realtime.redis_publish_failed", extra={"channel": envelope.get("channel"), "error": str(exc)})
    _apply(envelope)


def publish(channel: str, event_type: str, data: Any) -> None:
    """Deliver ``{"type": event_type, "data": data}`` to every session on ``channel``."""
    frame = {"type": event_type, "data": jsonable_encoder(data)}
    _route({"op": "send", "channel": channel, "frame": frame})


def publish_to_users(user_ids: Iterable[str], event_type: str, data: Any) -> None:
    seen: List[str] = []
    for user_id in user_ids:
        if user_id and user_id not in seen:
            seen.append(user_id)
            publish(user_channel(user_id), event_type, data)


def subscribe_user(user_id: str, channel: str) -> None:
    """Join the user's already-open sessions to ``channel`` (e.g. a new conversation)."""
    _route({"op": "join", "channel": channel, "user_id": user_id})


def _decode(data: Any) -> Optional[dict]:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        envelope = json.loads(data)
    except (TypeError, ValueError):
        return None
    return envelope if isinstance(envelope, dict) else None


def start_redis_subscriber() -> Optional[threading.Thread]:
    """
    Start a background thread that listens on libyastay:rt:* and applies envelopes
    to local sessions. Reconnects with exponential backoff; no-op when Redis is disabled.
    """
    global _subscriber_started
    if not is_redis_enabled():
        logger.info("realtime.subscriber.disabled")
        return None

    with _subscriber_lock:
        if _subscriber_started:
            return None
        _subscriber_started = True

    def _run() -> None:
        backoff = 0.5
        max_backoff = 5.0
        while True:
            try:
                client = new_pubsub_connection()
                pubsub = client.pubsub(ignore_subscribe_messages=True)
                pubsub.psubscribe(REDIS_CHANNEL_PREFIX + "*")
                logger.info("realtime.subscriber.started")
                backoff = 0.5
                for message in pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    envelope = _decode(message.get("data"))
                    if envelope is None:
                        logger.warning("realtime.subscriber.bad_envelope")
                        continue
                    _apply(envelope)
            except redis.RedisError as exc:
                logger.warning("realtime.subscriber.reconnecting", extra={"error": str(exc), "backoff": backoff})
                time.sleep(backoff)
                backoff = min(max_backoff, backoff * 2)

    t = threading.Thread(target=_run, name="libyastay-realtime-subscriber", daemon=True)
    t.start()
    return t
