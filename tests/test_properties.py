# Property API tests: listing CRUD, ownership rules, photos and search filters.
from __future__ import annotations

from typing import Tuple

from fastapi.testclient import TestClient


# Helper: register a user and return (token, user JSON)
def register(client: TestClient, email: str, phone: str, role: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "phone_number": phone, "password": "changeme123", "name": email.split("@")[0]}
    if role:
        payload["role"] = role
    r = client.post("/api/auth/register", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["token"], data["user"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# Helper: create a listing owned by the authenticated host
def create_property(client: TestClient, token: str, title: str, price_cents: int = 15000, **overrides) -> dict:
    payload = {
        "title": title,
        "description": "Bright apartment close to the old medina",
        "city": "Tripoli",
        "neighborhood": "Gargaresh",
        "property_type": "apartment",
        "guest_capacity": 4,
        "bedrooms": 2,
        "beds": 2,
        "bathrooms": 1,
        "amenities": "wifi,air_conditioning,parking",
        "base_price_cents": price_cents,
        "cancellation_policy": "moderate",
    }
    payload.update(overrides)
    r = client.post("/api/properties", headers=auth_headers(token), json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def test_create_property_requires_host(client: TestClient):
    guest_token, _ = register(client, "guest@example.com", "+218930000001")
    r = client.post(
        "/api/properties",
        headers=auth_headers(guest_token),
        json={
            "title": "Nope",
            "description": "x",
            "city": "Benghazi",
            "property_type": "villa",
            "guest_capacity": 2,
            "bedrooms": 1,
            "beds": 1,
            "bathrooms": 1,
            "base_price_cents": 5000,
            "cancellation_policy": "strict",
        },
    )
    assert r.status_code == 403, r.text
    assert r.json()["error_code"] == "INSUFFICIENT_PERMISSIONS"

    r = client.post("/api/properties", json={})
    assert r.status_code in (400, 401)


def test_create_and_read_property(client: TestClient):
    host_token, host = register(client, "host@example.com", "+218930000002", "host")
    prop = create_property(client, host_token, "  Medina Loft  ", has_power_backup=True)

    assert prop["property_id"].startswith("prop_")
    assert prop["host_id"] == host["user_id"]
    assert prop["title"] == "Medina Loft"
    assert prop["currency"] == "LYD"
    assert prop["has_power_backup"] is True
    assert prop["is_active"] is True

    r = client.get(f"/api/properties/{prop['property_id']}")
    assert r.status_code == 200, r.text
    assert r.json()["title"] == "Medina Loft"

    r = client.get("/api/properties/prop_missing")
    assert r.status_code == 404
    assert r.json()["error_code"] == "PROPERTY_NOT_FOUND"


def test_create_property_validation(client: TestClient):
    host_token, _ = register(client, "v@example.com", "+218930000003", "host")
    r = client.post(
        "/api/properties",
        headers=auth_headers(host_token),
        json={
            "title": "Bad",
            "description": "x",
            "city": "Misrata",
            "property_type": "house",
            "guest_capacity": 0,
            "bedrooms": 1,
            "beds": 1,
            "bathrooms": 1,
            "base_price_cents": -1,
            "cancellation_policy": "whenever",
        },
    )
    assert r.status_code == 400
    fields = {d["field"] for d in r.json()["details"]}
    assert {"guest_capacity", "base_price_cents", "cancellation_policy"} <= fields


def test_update_and_soft_delete_by_owner_only(client: TestClient):
    host_token, _ = register(client, "owner@example.com", "+218930000004", "host")
    other_token, _ = register(client, "intruder@example.com", "+218930000005", "host")
    prop = create_property(client, host_token, "Harbor Flat")
    pid = prop["property_id"]

    r = client.patch(f"/api/properties/{pid}", headers=auth_headers(other_token), json={"title": "Mine now"})
    assert r.status_code == 403
    assert r.json()["error_code"] == "FORBIDDEN_ACCESS"
    assert client.get(f"/api/properties/{pid}").json()["title"] == "Harbor Flat"

    r = client.patch(f"/api/properties/{pid}", headers=auth_headers(host_token), json={})
    assert r.status_code == 400
    assert r.json()["error_code"] == "NO_UPDATE_FIELDS"

    r = client.patch(
        f"/api/properties/{pid}",
        headers=auth_headers(host_token),
        json={"base_price_cents": 20000, "instant_book": True},
    )
    assert r.status_code == 200, r.text
    assert r.json()["base_price_cents"] == 20000
    assert r.json()["instant_book"] is True

    r = client.delete(f"/api/properties/{pid}", headers=auth_headers(other_token))
    assert r.status_code == 403

    r = client.delete(f"/api/properties/{pid}", headers=auth_headers(host_token))
    assert r.status_code == 204

    # Still readable by id, gone from search
    r = client.get(f"/api/properties/{pid}")
    assert r.status_code == 200
    assert r.json()["is_active"] is False
    r = client.get("/api/properties")
    assert r.json()["total_count"] == 0


def test_photos_crud(client: TestClient):
    host_token, _ = register(client, "photos@example.com", "+218930000006", "host")
    other_token, _ = register(client, "nophotos@example.com", "+218930000007", "host")
    pid = create_property(client, host_token, "Photo House")["property_id"]

    r = client.post(
        f"/api/properties/{pid}/photos",
        headers=auth_headers(host_token),
        json={"photo_url": "https://cdn.example.com/b.jpg", "caption": "Bedroom", "display_order": 2},
    )
    assert r.status_code == 201, r.text
    second = r.json()
    r = client.post(
        f"/api/properties/{pid}/photos",
        headers=auth_headers(host_token),
        json={"photo_url": "https://cdn.example.com/a.jpg", "display_order": 1},
    )
    assert r.status_code == 201, r.text
    first = r.json()

    r = client.post(
        f"/api/properties/{pid}/photos",
        headers=auth_headers(host_token),
        json={"photo_url": "ftp://cdn.example.com/c.jpg"},
    )
    assert r.status_code == 400

    r = client.post(
        f"/api/properties/{pid}/photos",
        headers=auth_headers(other_token),
        json={"photo_url": "https://cdn.example.com/x.jpg"},
    )
    assert r.status_code == 403

    r = client.get(f"/api/properties/{pid}/photos")
    assert [p["photo_id"] for p in r.json()] == [first["photo_id"], second["photo_id"]]

    r = client.patch(
        f"/api/properties/{pid}/photos/{second['photo_id']}",
        headers=auth_headers(host_token),
        json={"display_order": 0},
    )
    assert r.status_code == 200, r.text
    r = client.get(f"/api/properties/{pid}/photos")
    assert r.json()[0]["photo_id"] == second["photo_id"]

    r = client.delete(f"/api/properties/{pid}/photos/{first['photo_id']}", headers=auth_headers(host_token))
    assert r.status_code == 204
    r = client.delete(f"/api/properties/{pid}/photos/{first['photo_id']}", headers=auth_headers(host_token))
    assert r.status_code == 404
    assert r.json()["error_code"] == "PHOTO_NOT_FOUND"


def test_photo_patch_requires_http_url(client: TestClient):
    host_token, _ = register(client, "photopatch@example.com", "+218930000010", "host")
    pid = create_property(client, host_token, "Courtyard House")["property_id"]
    photo = client.post(
        f"/api/properties/{pid}/photos",
        headers=auth_headers(host_token),
        json={"photo_url": "https://cdn.example.com/court.jpg"},
    ).json()
    url = f"/api/properties/{pid}/photos/{photo['photo_id']}"

    for bad in ("javascript:alert(1)", "ftp://cdn.example.com/court.jpg"):
        r = client.patch(url, headers=auth_headers(host_token), json={"photo_url": bad})
        assert r.status_code == 400
        assert r.json()["error_code"] == "VALIDATION_ERROR"

    r = client.patch(url, headers=auth_headers(host_token), json={"photo_url": None})
    assert r.status_code == 400

    r = client.patch(url, headers=auth_headers(host_token), json={"photo_url": "http://cdn.example.com/new.jpg"})
    assert r.status_code == 200, r.text
    assert r.json()["photo_url"] == "http://cdn.example.com/new.jpg"

    r = client.get(f"/api/properties/{pid}/photos")
    assert [p["photo_url"] for p in r.json()] == ["http://cdn.example.com/new.jpg"]


def test_search_filters(client: TestClient):
    host_token, _ = register(client, "searchhost@example.com", "+218930000008", "host")
    create_property(client, host_token, "Cheap Tripoli", 8000, guest_capacity=2)
    create_property(client, host_token, "Big Tripoli", 30000, guest_capacity=8, instant_book=True)
    create_property(
        client, host_token, "Benghazi Villa", 25000,
        city="Benghazi", neighborhood="Fuwayhat", property_type="villa", amenities="pool,wifi",
    )

    r = client.get("/api/properties", params={"location": "tripoli"})
    assert r.status_code == 200, r.text
    assert r.json()["total_count"] == 2

    # Neighborhood matches too
    r = client.get("/api/properties", params={"location": "fuway"})
    assert [p["title"] for p in r.json()["properties"]] == ["Benghazi Villa"]

    r = client.get("/api/properties", params={"guests": 5})
    assert [p["title"] for p in r.json()["properties"]] == ["Big Tripoli"]

    r = client.get("/api/properties", params={"price_min": 10000, "price_max": 26000})
    assert [p["title"] for p in r.json()["properties"]] == ["Benghazi Villa"]

    r = client.get("/api/properties", params={"property_type": "villa"})
    assert r.json()["total_count"] == 1

    r = client.get("/api/properties", params={"amenities": "wifi,pool"})
    assert [p["title"] for p in r.json()["properties"]] == ["Benghazi Villa"]

    r = client.get("/api/properties", params={"instant_book": True})
    assert [p["title"] for p in r.json()["properties"]] == ["Big Tripoli"]

    r = client.get("/api/properties", params={"sort_by": "price_low_to_high"})
    assert [p["base_price_cents"] for p in r.json()["properties"]] == [8000, 25000, 30000]

    r = client.get("/api/properties", params={"sort_by": "price_high_to_low", "limit": 1, "offset": 1})
    assert r.json()["total_count"] == 3
    assert [p["base_price_cents"] for p in r.json()["properties"]] == [25000]

    # Wildcards in the location term are matched literally
    r = client.get("/api/properties", params={"location": "%"})
    assert r.json()["total_count"] == 0


def test_search_rejects_bad_ranges(client: TestClient):
    r = client.get("/api/properties", params={"price_min": 500, "price_max": 100})
    assert r.status_code == 400

    r = client.get("/api/properties", params={"check_in": "2026-05-01"})
    assert r.status_code == 400

    r = client.get("/api/properties", params={"check_in": "2026-05-03", "check_out": "2026-05-01"})
    assert r.status_code == 400

    r = client.get("/api/properties", params={"limit": 0})
    assert r.status_code == 400
    assert r.json()["error_code"] == "VALIDATION_ERROR"


def test_search_excludes_blocked_dates(client: TestClient):
    host_token, _ = register(client, "blocked@example.com", "+218930000009", "host")
    blocked = create_property(client, host_token, "Blocked")
    create_property(client, host_token, "Open")

    r = client.post(
        f"/api/properties/{blocked['property_id']}/availability",
        headers=auth_headers(host_token),
        json={"date": "2026-06-02", "is_available": False},
    )
    assert r.status_code == 200, r.text

    r = client.get("/api/properties", params={"check_in": "2026-06-01", "check_out": "2026-06-04"})
    assert [p["title"] for p in r.json()["properties"]] == ["Open"]

    # The blocked night is outside [check_in, check_out)
    r = client.get("/api/properties", params={"check_in": "2026-06-03", "check_out": "2026-06-05"})
    assert r.json()["total_count"] == 2
    r = client.get("/api/properties", params={"check_in": "2026-05-30", "check_out": "2026-06-02"})
    assert r.json()["total_count"] == 2
