from __future__ import annotations

import json
import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from ..db import SessionLocal
from .. import models, schemas
from ..errors import ApiError, Unauthorized
from ..realtime import LiveSession, conversation_channel, manager, user_channel
from ..services import messaging
from .auth import resolve_user

router = APIRouter()
logger = logging.getLogger("libyastay.live")

POLICY_VIOLATION = 1008


def _get_token_from_ws(websocket: WebSocket) -> Optional[str]:
    # Prefer Authorization header if present
    auth = websocket.headers.get("authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
    # Fallback to query param ?token=
    return websocket.query_params.get("token") or None


def _load_session_scope(token: str) -> Tuple[str, str, List[str]]:
    """Resolve the token and return (user_id, role, conversation ids the user takes part in)."""
    db = SessionLocal()
    try:
        user = resolve_user(db, token)
        return user.user_id, user.role, messaging.conversation_ids_for(db, user.user_id)
    finally:
        db.close()


def _persist_message(user_id: str, conversation_id: str, content: str) -> None:
    db = SessionLocal()
    try:
        user = db.get(models.User, user_id)
        if user is None:
            raise Unauthorized("User not found")
        messaging.send_message(db, user, conversation_id, content)
    finally:
        db.close()


async def _send_ws_error(ws: WebSocket, code: str, message: str) -> None:
    await ws.send_text(json.dumps({"type": "error", "code": code, "message": message}))


async def _handle_send(session: LiveSession, payload: dict) -> None:
    ws = session.websocket
    conversation_id = payload.get("conversation_id")
    if not isinstance(conversation_id, str) or not conversation_id:
        await _send_ws_error(ws, "invalid_payload", "Missing 'conversation_id' string")
        return
    try:
        content = schemas.MessageCreate(content=payload.get("content")).content
    except ValidationError:
        await _send_ws_error(ws, "invalid_content", "Content length must be 1..1000")
        return

    if not session.limiter.consume(1.0):
        await _send_ws_error(ws, "rate_limited", "Too many messages")
        return

    # Persisting publishes message/created on the conversation channel, echoing to the sender too
    try:
        await run_in_threadpool(_persist_message, session.user_id, conversation_id, content)
    except ApiError as exc:
        await _send_ws_error(ws, exc.error_code, exc.message)
    except SQLAlchemyError:
        logger.exception("live.message_failed", extra={"user_id": session.user_id, "conversation_id": conversation_id})
        await _send_ws_error(ws, "server_error", "Failed to persist message")


@router.websocket("/live")
async def live(websocket: WebSocket) -> None:
    """
    Live session for one user.
    - Auth: JWT via Authorization: Bearer or ?token=; rejected with 1008 before accept
    - Joins user:{id} and conversation:{id} for each conversation of the user
    - Server -> client: {"type": <event>, "data": {...}}
    - Client -> server: {"type": "ping"} | {"type": "message/send", "conversation_id", "content"}
    - Rate limit on message/send: per-connection 1 msg/s, burst 5
    """
    token = _get_token_from_ws(websocket)
    if not token:
        await websocket.close(code=POLICY_VIOLATION)
        return
    try:
        user_id, role, conversation_ids = await run_in_threadpool(_load_session_scope, token)
    except ApiError:
        await websocket.close(code=POLICY_VIOLATION)
        return

    channels = [user_channel(user_id)] + [conversation_channel(cid) for cid in conversation_ids]
    session = await manager.connect(websocket, user_id, channels)
    logger.info("live.connected", extra={"user_id": user_id, "role": role, "channels": len(channels)})
    try:
        await websocket.send_text(
            json.dumps({"type": "session/ready", "data": {"user_id": user_id, "channels": sorted(channels)}})
        )
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            try:
                payload = json.loads(raw)
            except ValueError:
                await _send_ws_error(websocket, "invalid_json", "Payload must be JSON")
                continue
            if not isinstance(payload, dict):
                await _send_ws_error(websocket, "invalid_payload", "Payload must be a JSON object")
                continue

            kind = payload.get("type")
            if kind == "ping":
                await websocket.send_text(json.dumps({"type": "pong", "data": {}}))
            elif kind == "message/send":
                await _handle_send(session, payload)
            else:
                await _send_ws_error(websocket, "unknown_type", f"Unsupported frame type: {kind!r}")
    finally:
        manager.disconnect(websocket)
        logger.info("live.disconnected", extra={"user_id": user_id})
