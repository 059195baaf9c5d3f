# User profile API tests: self updates, admin-only fields, uniqueness and per-user listings.
from __future__ import annotations

from typing import Tuple

from fastapi.testclient import TestClient

from libyastay.db import SessionLocal
from libyastay import models
from libyastay.routes.auth import hash_password


# Helper: register a user and return (token, user JSON)
def register(client: TestClient, email: str, phone: str, role: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "phone_number": phone, "password": "changeme123", "name": email.split("@")[0]}
    if role:
        payload["role"] = role
    r = client.post("/api/auth/register", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["token"], data["user"]


# Helper: admins are never self-registered; insert one directly and log in
def seed_admin(client: TestClient, email: str = "admin@example.com") -> Tuple[str, dict]:
    db = SessionLocal()
    try:
        db.add(
            models.User(
                email=email,
                phone_number="+218919999999",
                password_hash=hash_password("changeme123"),
                name="Admin",
                role="admin",
                is_verified=True,
            )
        )
        db.commit()
    finally:
        db.close()
    r = client.post("/api/auth/login", json={"email": email, "password": "changeme123"})
    assert r.status_code == 200, r.text
    return r.json()["token"], r.json()["user"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_get_user_profile(client: TestClient):
    token, me = register(client, "me@example.com", "+218920000001")
    _, other = register(client, "other@example.com", "+218920000002", "host")

    r = client.get(f"/api/users/{other['user_id']}", headers=auth_headers(token))
    assert r.status_code == 200, r.text
    assert r.json()["email"] == "other@example.com"

    r = client.get("/api/users/user_missing", headers=auth_headers(token))
    assert r.status_code == 404
    assert r.json()["error_code"] == "USER_NOT_FOUND"


def test_update_own_profile_and_password(client: TestClient):
    token, me = register(client, "self@example.com", "+218920000003")

    r = client.patch(
        f"/api/users/{me['user_id']}",
        headers=auth_headers(token),
        json={"name": "Salma", "bio": "Loves the coast", "password": "newsecret99"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["name"] == "Salma"
    assert r.json()["bio"] == "Loves the coast"

    r = client.post("/api/auth/login", json={"email": "self@example.com", "password": "newsecret99"})
    assert r.status_code == 200, r.text


def test_update_rules(client: TestClient):
    token, me = register(client, "rules@example.com", "+218920000004")
    other_token, other = register(client, "taken@example.com", "+218920000005")

    # Empty patch
    r = client.patch(f"/api/users/{me['user_id']}", headers=auth_headers(token), json={})
    assert r.status_code == 400
    assert r.json()["error_code"] == "NO_UPDATE_FIELDS"

    # Someone else's profile
    r = client.patch(f"/api/users/{other['user_id']}", headers=auth_headers(token), json={"name": "Nope"})
    assert r.status_code == 403
    assert r.json()["error_code"] == "FORBIDDEN_ACCESS"

    # Admin-only fields
    r = client.patch(f"/api/users/{me['user_id']}", headers=auth_headers(token), json={"role": "host"})
    assert r.status_code == 403
    r = client.patch(f"/api/users/{me['user_id']}", headers=auth_headers(token), json={"is_verified": True})
    assert r.status_code == 403

    # Email already in use
    r = client.patch(f"/api/users/{me['user_id']}", headers=auth_headers(token), json={"email": "taken@example.com"})
    assert r.status_code == 409
    assert r.json()["error_code"] == "USER_ALREADY_EXISTS"

    # Required fields cannot be nulled
    r = client.patch(f"/api/users/{me['user_id']}", headers=auth_headers(token), json={"name": None})
    assert r.status_code == 400
    assert r.json()["error_code"] == "VALIDATION_ERROR"


def test_admin_can_verify_user_and_is_audited(client: TestClient):
    admin_token, admin = seed_admin(client)
    _, user = register(client, "verifyme@example.com", "+218920000006")

    r = client.patch(
        f"/api/users/{user['user_id']}",
        headers=auth_headers(admin_token),
        json={"is_verified": True, "role": "host", "password": "resetpass1"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["is_verified"] is True
    assert r.json()["role"] == "host"

    r = client.get("/api/admin/actions", headers=auth_headers(admin_token), params={"action_type": "user_update"})
    assert r.status_code == 200, r.text
    actions = r.json()
    assert len(actions) == 1
    assert actions[0]["target_entity_id"] == user["user_id"]
    assert actions[0]["details"] == {"is_verified": True, "role": "host"}


def test_user_listings_hide_inactive_from_others(client: TestClient):
    host_token, host = register(client, "lister@example.com", "+218920000007", "host")
    guest_token, _ = register(client, "viewer@example.com", "+218920000008")

    base = {
        "description": "Sea view",
        "city": "Tripoli",
        "property_type": "apartment",
        "guest_capacity": 2,
        "bedrooms": 1,
        "beds": 1,
        "bathrooms": 1,
        "base_price_cents": 10000,
        "cancellation_policy": "flexible",
    }
    for title in ("Active flat", "Old flat"):
        r = client.post("/api/properties", headers=auth_headers(host_token), json={**base, "title": title})
        assert r.status_code == 201, r.text
        last = r.json()
    r = client.delete(f"/api/properties/{last['property_id']}", headers=auth_headers(host_token))
    assert r.status_code == 204

    r = client.get(
        f"/api/users/{host['user_id']}/listings",
        headers=auth_headers(guest_token),
        params={"include_inactive": True},
    )
    assert [p["title"] for p in r.json()] == ["Active flat"]

    r = client.get(
        f"/api/users/{host['user_id']}/listings",
        headers=auth_headers(host_token),
        params={"include_inactive": True},
    )
    assert sorted(p["title"] for p in r.json()) == ["Active flat", "Old flat"]


def test_user_bookings_are_private(client: TestClient):
    token, me = register(client, "private@example.com", "+218920000009")
    other_token, other = register(client, "snoop@example.com", "+218920000010")

    r = client.get(f"/api/users/{me['user_id']}/bookings", headers=auth_headers(token))
    assert r.status_code == 200, r.text
    assert r.json() == {"bookings": [], "total_count": 0}

    r = client.get(f"/api/users/{me['user_id']}/bookings", headers=auth_headers(other_token))
    assert r.status_code == 403
