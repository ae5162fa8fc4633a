import uuid

import pytest

import routers.materials as materials_router
from conftest import auth_headers
from models import Material, MaterialDownload
from rate_limiter import check_rate_limit, reset_rate_limits, tracked_keys
from validation import first_invalid_uuid, is_valid_uuid


@pytest.fixture(autouse=True)
def clean_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


def test_is_valid_uuid():
    assert is_valid_uuid(str(uuid.uuid4()))
    assert not is_valid_uuid("not-a-uuid")
    assert not is_valid_uuid("")
    assert not is_valid_uuid(None)
    assert not is_valid_uuid(123)

    canonical = str(uuid.uuid4())
    assert is_valid_uuid(canonical.upper())
    assert not is_valid_uuid("{%s}" % canonical)
    assert not is_valid_uuid("urn:uuid:" + canonical)
    assert not is_valid_uuid(canonical.replace("-", ""))


def test_first_invalid_uuid_reports_field_name():
    good = str(uuid.uuid4())
    assert first_invalid_uuid({"material_id": good}, ("material_id", "event_id"), required=("material_id",)) is None
    assert first_invalid_uuid({}, ("material_id",), required=("material_id",)) == "material_id"
    assert first_invalid_uuid({"material_id": good, "event_id": "x"}, ("material_id", "event_id")) == "event_id"


def test_sliding_window_rate_limit():
    results = [check_rate_limit("u1", "fn", 2, 60, now=100.0 + i) for i in range(3)]
    assert [r["allowed"] for r in results] == [True, True, False]
    assert results[0]["remaining"] == 1
    assert results[2]["retry_after"] == pytest.approx(58.0)

    assert check_rate_limit("u2", "fn", 2, 60, now=102.0)["allowed"] is True
    assert check_rate_limit("u1", "other", 2, 60, now=102.0)["allowed"] is True
    assert check_rate_limit("u1", "fn", 2, 60, now=160.5)["allowed"] is True


def test_expired_rate_limit_keys_are_dropped():
    for user in ("u1", "u2", "u3"):
        check_rate_limit(user, "fn", 2, 60, now=100.0)
    check_rate_limit("u1", "other", 2, 600, now=100.0)
    assert tracked_keys() == 4

    check_rate_limit("u4", "fn", 2, 60, now=400.0)
    assert tracked_keys() == 2

    check_rate_limit("u4", "fn", 2, 60, now=800.0)
    assert tracked_keys() == 1


def _material(db, event):
    material = Material(event_id=event.id, title="Slides", file_url="https://cdn.example.com/slides.pdf")
    db.add(material)
    db.commit()
    db.refresh(material)
    return material


def test_track_download_requires_auth(client, db, event):
    response = client.post("/api/functions/track-material-download", json={"material_id": str(uuid.uuid4())})
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Unauthorized"}


def test_track_download_validates_ids(client, db, event, participant):
    headers = auth_headers(participant)
    response = client.post("/api/functions/track-material-download", json={"material_id": "abc"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid material_id format"

    braced = "{%s}" % uuid.uuid4()
    response = client.post("/api/functions/track-material-download", json={"material_id": braced}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid material_id format"

    response = client.post(
        "/api/functions/track-material-download",
        json={"material_id": str(uuid.uuid4()), "workspace_id": "nope"},
        headers=headers,
    )
    assert response.json()["error"] == "Invalid workspace_id format"

    response = client.post("/api/functions/track-material-download", json={"material_id": str(uuid.uuid4())}, headers=headers)
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Material not found"}


def test_track_download_records_and_counts(client, db, event, participant):
    material = _material(db, event)
    headers = {**auth_headers(participant), "User-Agent": "pytest-agent"}
    first = client.post("/api/functions/track-material-download", json={"material_id": material.id}, headers=headers)
    second = client.post(
        "/api/functions/track-material-download",
        json={"material_id": material.id, "event_id": event.id},
        headers=headers,
    )
    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["data"]["download_count"] == 1
    assert second.json()["data"]["download_count"] == 2
    assert second.json()["data"]["download_url"] == "https://cdn.example.com/slides.pdf"

    rows = db.query(MaterialDownload).all()
    assert len(rows) == 2
    assert {row.user_agent for row in rows} == {"pytest-agent"}
    assert {row.event_id for row in rows} == {event.id}


def test_track_download_rate_limited(client, db, event, participant, monkeypatch):
    monkeypatch.setattr(materials_router, "MATERIAL_DOWNLOAD_RATE_LIMIT", 1)
    material = _material(db, event)
    headers = auth_headers(participant)
    assert client.post("/api/functions/track-material-download", json={"material_id": material.id}, headers=headers).status_code == 200
    limited = client.post("/api/functions/track-material-download", json={"material_id": material.id}, headers=headers)
    assert limited.status_code == 429
    assert limited.json() == {"success": False, "error": "Rate limit exceeded"}
    assert "retry-after" in limited.headers


def test_material_stats_for_organizer(client, db, event, organizer, participant):
    material = _material(db, event)
    for _ in range(2):
        client.post("/api/functions/track-material-download", json={"material_id": material.id}, headers=auth_headers(participant))
    stats = client.get(f"/api/events/{event.id}/materials/stats", headers=auth_headers(organizer))
    assert stats.status_code == 200
    assert stats.json() == [
        {"material_id": material.id, "title": "Slides", "download_count": 2, "unique_downloaders": 1}
    ]
    assert client.get(f"/api/events/{event.id}/materials/stats", headers=auth_headers(participant)).status_code == 403


def test_create_material(client, db, event, organizer):
    response = client.post(
        f"/api/events/{event.id}/materials",
        json={"title": "Schedule", "file_url": "https://cdn.example.com/schedule.pdf"},
        headers=auth_headers(organizer),
    )
    assert response.status_code == 201
    assert response.json()["download_count"] == 0
