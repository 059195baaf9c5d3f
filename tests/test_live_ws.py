# Live WebSocket test suite: handshake auth, pushed domain events, message/send and rate limiting.
from __future__ import annotations

import json
import time
from typing import Tuple

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from libyastay.db import SessionLocal
from libyastay import models


def register(client: TestClient, email: str, phone: str, role: str | None = None, name: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "phone_number": phone, "password": "changeme123", "name": name or email.split("@")[0]}
    if role:
        payload["role"] = role
    r = client.post("/api/auth/register", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["token"], data["user"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def create_property(client: TestClient, token: str) -> dict:
    r = client.post(
        "/api/properties",
        headers=auth_headers(token),
        json={
            "title": "Live Flat",
            "description": "Balcony over the corniche",
            "city": "Benghazi",
            "property_type": "apartment",
            "guest_capacity": 2,
            "bedrooms": 1,
            "beds": 1,
            "bathrooms": 1,
            "base_price_cents": 11000,
            "cancellation_policy": "moderate",
        },
    )
    assert r.status_code == 201, r.text
    return r.json()


def create_booking(client: TestClient, token: str, property_id: str) -> dict:
    r = client.post(
        "/api/bookings",
        headers=auth_headers(token),
        json={"property_id": property_id, "check_in": "2026-12-10", "check_out": "2026-12-12", "guest_count": 1},
    )
    assert r.status_code == 201, r.text
    return r.json()


# Helper: read frames until one of the given type shows up
def receive_until(ws, frame_type: str, max_frames: int = 10) -> dict:
    for _ in range(max_frames):
        frame = json.loads(ws.receive_text())
        if frame.get("type") == frame_type:
            return frame
    raise AssertionError(f"no {frame_type!r} frame within {max_frames} frames")


def count_messages(conversation_id: str) -> int:
    db = SessionLocal()
    try:
        return db.query(models.Message).filter(models.Message.conversation_id == conversation_id).count()
    finally:
        db.close()


def test_ws_missing_or_invalid_token_denied(client: TestClient):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/live"):
            pass
    assert exc.value.code == 1008

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/live?token=not-a-jwt"):
            pass
    assert exc.value.code == 1008


def test_ws_ready_frame_and_ping(client: TestClient):
    token, user = register(client, "live@example.com", "+218900000001")

    with client.websocket_connect("/ws/live", headers=auth_headers(token)) as ws:
        ready = json.loads(ws.receive_text())
        assert ready["type"] == "session/ready"
        assert ready["data"] == {"user_id": user["user_id"], "channels": [f"user:{user['user_id']}"]}

        ws.send_text(json.dumps({"type": "ping"}))
        assert json.loads(ws.receive_text()) == {"type": "pong", "data": {}}

        ws.send_text("not json")
        err = json.loads(ws.receive_text())
        assert (err["type"], err["code"]) == ("error", "invalid_json")

        ws.send_text(json.dumps({"type": "teleport"}))
        assert json.loads(ws.receive_text())["code"] == "unknown_type"

        ws.send_text(json.dumps(["ping"]))
        assert json.loads(ws.receive_text())["code"] == "invalid_payload"


def test_host_receives_booking_request_live(client: TestClient):
    host_token, host = register(client, "host@example.com", "+218900000002", "host")
    guest_token, _ = register(client, "guest@example.com", "+218900000003", name="Huda")
    prop = create_property(client, host_token)

    with client.websocket_connect(f"/ws/live?token={host_token}") as ws_host:
        receive_until(ws_host, "session/ready")
        booking = create_booking(client, guest_token, prop["property_id"])

        note = receive_until(ws_host, "notification/created")
        assert note["data"]["type"] == "booking_request"
        assert note["data"]["message"] == "You have a new booking request from Huda"
        assert note["data"]["related_entity_id"] == booking["booking_id"]

        created = receive_until(ws_host, "booking/created")
        assert created["data"]["booking_id"] == booking["booking_id"]
        conv = receive_until(ws_host, "conversation/created")
        assert conv["data"]["booking_id"] == booking["booking_id"]

        # The open session joined the new conversation; REST messages arrive live
        r = client.post(
            f"/api/conversations/{conv['data']['conversation_id']}/messages",
            headers=auth_headers(guest_token),
            json={"content": "Arriving at 9pm"},
        )
        assert r.status_code == 201, r.text
        msg = receive_until(ws_host, "message/created")
        assert msg["data"]["content"] == "Arriving at 9pm"

        # Status change reaches the host as well
        r = client.patch(
            f"/api/bookings/{booking['booking_id']}", headers=auth_headers(host_token), json={"status": "confirmed"}
        )
        assert r.status_code == 200, r.text
        assert receive_until(ws_host, "booking/confirmed")["data"]["status"] == "confirmed"
        assert receive_until(ws_host, "booking/updated")["data"]["status"] == "confirmed"


def test_ws_message_send_roundtrip(client: TestClient):
    host_token, _ = register(client, "host2@example.com", "+218900000004", "host")
    guest_token, guest = register(client, "guest2@example.com", "+218900000005")
    stranger_token, _ = register(client, "stranger@example.com", "+218900000006")
    booking = create_booking(client, guest_token, create_property(client, host_token)["property_id"])
    cid = client.get("/api/conversations", headers=auth_headers(guest_token)).json()[0]["conversation_id"]

    with client.websocket_connect(f"/ws/live?token={guest_token}") as ws_guest, \
         client.websocket_connect(f"/ws/live?token={host_token}") as ws_host:
        ready = receive_until(ws_guest, "session/ready")
        assert f"conversation:{cid}" in ready["data"]["channels"]
        receive_until(ws_host, "session/ready")

        ws_guest.send_text(json.dumps({"type": "message/send", "conversation_id": cid, "content": " hello via ws "}))
        for ws in (ws_guest, ws_host):
            frame = receive_until(ws, "message/created")
            assert frame["data"]["content"] == "hello via ws"
            assert frame["data"]["sender_id"] == guest["user_id"]
            assert frame["data"]["conversation_id"] == cid
        assert count_messages(cid) == 1

        ws_guest.send_text(json.dumps({"type": "message/send", "conversation_id": cid, "content": ""}))
        assert receive_until(ws_guest, "error")["code"] == "invalid_content"

        ws_guest.send_text(json.dumps({"type": "message/send", "content": "no target"}))
        assert receive_until(ws_guest, "error")["code"] == "invalid_payload"

        ws_guest.send_text(json.dumps({"type": "message/send", "conversation_id": "conv_missing", "content": "hi"}))
        assert receive_until(ws_guest, "error")["code"] == "CONVERSATION_NOT_FOUND"

    with client.websocket_connect(f"/ws/live?token={stranger_token}") as ws_stranger:
        receive_until(ws_stranger, "session/ready")
        ws_stranger.send_text(json.dumps({"type": "message/send", "conversation_id": cid, "content": "let me in"}))
        assert receive_until(ws_stranger, "error")["code"] == "FORBIDDEN_ACCESS"
    assert count_messages(cid) == 1
    assert booking["status"] == "pending"


def test_ws_rate_limit(client: TestClient):
    host_token, _ = register(client, "host3@example.com", "+218900000007", "host")
    guest_token, _ = register(client, "guest3@example.com", "+218900000008")
    create_booking(client, guest_token, create_property(client, host_token)["property_id"])
    cid = client.get("/api/conversations", headers=auth_headers(guest_token)).json()[0]["conversation_id"]

    with client.websocket_connect(f"/ws/live?token={guest_token}") as ws:
        receive_until(ws, "session/ready")

        # Burst of 5 is allowed
        for i in range(5):
            ws.send_text(json.dumps({"type": "message/send", "conversation_id": cid, "content": f"m{i}"}))
            assert json.loads(ws.receive_text())["type"] == "message/created"

        ws.send_text(json.dumps({"type": "message/send", "conversation_id": cid, "content": "burst-exceed"}))
        frame = json.loads(ws.receive_text())
        assert frame["type"] == "error" and frame["code"] == "rate_limited"

        # Refill allows another send
        time.sleep(1.2)
        ws.send_text(json.dumps({"type": "message/send", "conversation_id": cid, "content": "after-refill"}))
        assert json.loads(ws.receive_text())["type"] == "message/created"
    assert count_messages(cid) == 6
