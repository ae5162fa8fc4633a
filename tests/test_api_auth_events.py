from conftest import auth_headers, make_tier, make_user
from models import UserRole


def test_register_login_refresh_and_me(client, db):
    registered = client.post(
        "/api/auth/register",
        json={"name": "Asha Raman", "email": "Asha@Example.com", "password": "password123", "role": "organizer"},
    )
    assert registered.status_code == 201
    assert registered.json()["user"]["email"] == "asha@example.com"
    assert registered.json()["user"]["role"] == "organizer"

    duplicate = client.post(
        "/api/auth/register",
        json={"name": "Asha Raman", "email": "asha@example.com", "password": "password123"},
    )
    assert duplicate.status_code == 409

    bad = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "wrong-password"})
    assert bad.status_code == 401

    login = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "password123"})
    assert login.status_code == 200
    tokens = login.json()

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.json()["name"] == "Asha Raman"

    refreshed = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    rejected = client.post("/api/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert rejected.status_code == 401


def test_admin_cannot_self_register(client, db):
    response = client.post(
        "/api/auth/register",
        json={"name": "Root", "email": "root@example.com", "password": "password123", "role": "admin"},
    )
    assert response.status_code == 422


def test_missing_token_is_rejected(client, db):
    assert client.get("/api/auth/me").status_code in (401, 403)


def test_health(client, db):
    assert client.get("/api/health").json() == {"status": "healthy"}


def test_event_lifecycle(client, db, organizer, participant):
    headers = auth_headers(organizer)
    assert client.post("/api/events", json={"title": "Demo Day"}, headers=auth_headers(participant)).status_code == 403

    bad_dates = client.post(
        "/api/events",
        json={"title": "Demo Day", "start_date": "2026-05-02T10:00:00Z", "end_date": "2026-05-01T10:00:00Z"},
        headers=headers,
    )
    assert bad_dates.status_code == 400

    created = client.post("/api/events", json={"title": "Demo Day"}, headers=headers)
    assert created.status_code == 201
    event = created.json()
    assert event["status"] == "DRAFT"
    assert event["slug"] == "demo-day"
    second = client.post("/api/events", json={"title": "Demo Day"}, headers=headers).json()
    assert second["slug"] == "demo-day-2"

    assert client.get(f"/api/events/{event['id']}").status_code == 404
    assert client.get(f"/api/events/{event['id']}", headers=headers).status_code == 200
    assert client.get("/api/events").json() == []

    published = client.put(f"/api/events/{event['id']}", json={"status": "PUBLISHED"}, headers=headers)
    assert published.json()["status"] == "PUBLISHED"
    listing = client.get("/api/events?search=demo")
    assert [row["id"] for row in listing.json()] == [event["id"]]
    assert listing.headers["x-total-count"] == "1"

    assert client.delete(f"/api/events/{event['id']}", headers=headers).status_code == 400
    assert client.delete(f"/api/events/{second['id']}", headers=headers).status_code == 200


def test_ticket_tiers_and_promo_codes(client, db, event, organizer):
    headers = auth_headers(organizer)
    tier = client.post(
        f"/api/events/{event.id}/ticket-tiers",
        json={"name": "General", "price": 200, "quantity": 50},
        headers=headers,
    )
    assert tier.status_code == 201
    tier_id = tier.json()["id"]

    tiers = client.get(f"/api/events/{event.id}/ticket-tiers").json()
    assert tiers[0]["sale_status"] == "on_sale"
    assert tiers[0]["available"] == 50

    promo = client.post(
        f"/api/events/{event.id}/promo-codes",
        json={"code": "early", "discount_type": "percentage", "discount_value": 25},
        headers=headers,
    )
    assert promo.status_code == 201
    assert promo.json()["code"] == "EARLY"
    duplicate = client.post(
        f"/api/events/{event.id}/promo-codes",
        json={"code": "EARLY", "discount_type": "fixed", "discount_value": 10},
        headers=headers,
    )
    assert duplicate.status_code == 409

    quote = client.post(
        f"/api/events/{event.id}/quote",
        json={"ticket_tier_id": tier_id, "quantity": 2, "promo_code": "early"},
    )
    assert quote.json() == {"subtotal": 400.0, "discount": 100.0, "total": 300.0, "currency": "INR", "promo_code_id": promo.json()["id"]}


def test_only_admin_reads_config(client, db, organizer):
    admin = make_user(db, "admin@example.com", UserRole.ADMIN)
    assert client.get("/api/admin/config", headers=auth_headers(organizer)).status_code == 403
    config = client.get("/api/admin/config", headers=auth_headers(admin)).json()
    assert config == {"registration_open": True, "waitlist_auto_invite": False}
    updated = client.put("/api/admin/config/registration_open", json={"value": False}, headers=auth_headers(admin))
    assert updated.json() == {"registration_open": False}
    assert client.put("/api/admin/config/unknown", json={"value": True}, headers=auth_headers(admin)).status_code == 404
