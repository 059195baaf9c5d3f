# Admin audit trail tests: access control, filters and what gets recorded.
from __future__ import annotations

from typing import Tuple

from fastapi.testclient import TestClient

from libyastay.db import SessionLocal
from libyastay import models
from libyastay.routes.auth import hash_password


def register(client: TestClient, email: str, phone: str, role: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "phone_number": phone, "password": "changeme123", "name": email.split("@")[0]}
    if role:
        payload["role"] = role
    r = client.post("/api/auth/register", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["token"], data["user"]


def seed_admin(client: TestClient) -> Tuple[str, dict]:
    db = SessionLocal()
    try:
        db.add(
            models.User(
                email="admin@example.com",
                phone_number="+218919999999",
                password_hash=hash_password("changeme123"),
                name="Admin",
                role="admin",
            )
        )
        db.commit()
    finally:
        db.close()
    r = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "changeme123"})
    assert r.status_code == 200, r.text
    return r.json()["token"], r.json()["user"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_admin_actions_require_admin(client: TestClient):
    host_token, _ = register(client, "host@example.com", "+218990000001", "host")
    r = client.get("/api/admin/actions", headers=auth_headers(host_token))
    assert r.status_code == 403
    assert r.json()["error_code"] == "INSUFFICIENT_PERMISSIONS"


def test_admin_property_moderation_is_recorded(client: TestClient):
    host_token, host = register(client, "host2@example.com", "+218990000002", "host")
    admin_token, admin = seed_admin(client)

    r = client.post(
        "/api/properties",
        headers=auth_headers(host_token),
        json={
            "title": "Moderated",
            "description": "Needs review",
            "city": "Sabha",
            "property_type": "house",
            "guest_capacity": 2,
            "bedrooms": 1,
            "beds": 1,
            "bathrooms": 1,
            "base_price_cents": 7000,
            "cancellation_policy": "strict",
        },
    )
    pid = r.json()["property_id"]

    r = client.patch(f"/api/properties/{pid}", headers=auth_headers(admin_token), json={"title": "Moderated (edited)"})
    assert r.status_code == 200, r.text
    r = client.delete(f"/api/properties/{pid}", headers=auth_headers(admin_token))
    assert r.status_code == 204

    # An admin's own listing is not an override
    r = client.post(
        "/api/properties",
        headers=auth_headers(admin_token),
        json={
            "title": "Admin Place",
            "description": "Owned by staff",
            "city": "Sabha",
            "property_type": "house",
            "guest_capacity": 2,
            "bedrooms": 1,
            "beds": 1,
            "bathrooms": 1,
            "base_price_cents": 7000,
            "cancellation_policy": "strict",
        },
    )
    assert r.status_code == 201, r.text
    client.patch(f"/api/properties/{r.json()['property_id']}", headers=auth_headers(admin_token), json={"beds": 2})

    r = client.get("/api/admin/actions", headers=auth_headers(admin_token))
    actions = r.json()
    assert [a["action_type"] for a in actions] == ["property_deactivate", "property_update"]
    assert all(a["admin_id"] == admin["user_id"] and a["target_entity_id"] == pid for a in actions)
    assert actions[1]["details"] == {"title": "Moderated (edited)"}
    assert actions[0]["details"] is None

    r = client.get("/api/admin/actions", headers=auth_headers(admin_token), params={"action_type": "property_update"})
    assert len(r.json()) == 1
    r = client.get("/api/admin/actions", headers=auth_headers(admin_token), params={"target_entity_type": "booking"})
    assert r.json() == []
