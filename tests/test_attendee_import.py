import io
from datetime import datetime, timezone

import pytest
from openpyxl import Workbook

from attendee_import import (
    import_attendees,
    match_tier,
    parse_attendee_csv,
    parse_attendee_xlsx,
    parse_csv_line,
    plan_bulk_invitations,
    sniff_columns,
)
from conftest import auth_headers, make_tier
from models import Registration, RegistrationStatus, TicketTier

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tiers():
    return [TicketTier(id="t-general", name="General"), TicketTier(id="t-vip", name="VIP Pass")]


def test_parse_csv_line_handles_quotes():
    assert parse_csv_line('"Raman, Asha",asha@example.com,"+91 1"') == ["Raman, Asha", "asha@example.com", "+91 1"]


def test_sniff_columns_uses_keyword_matching():
    columns = sniff_columns(["Full Name", "Email Address", "Mobile", "Ticket Type", "Comments"])
    assert columns == {"name": 0, "email": 1, "phone": 2, "ticket": 3, "notes": 4}


def test_sniff_columns_requires_email_and_name():
    with pytest.raises(ValueError, match='must have an "email" column'):
        sniff_columns(["name", "phone"])
    with pytest.raises(ValueError, match='must have a "name" or "fullname" column'):
        sniff_columns(["email", "phone"])


def test_match_tier_prefers_exact_then_contains():
    tiers = _tiers()
    assert match_tier("general", tiers).id == "t-general"
    assert match_tier("vip", tiers).id == "t-vip"
    assert match_tier("Student", tiers) is None


def test_parse_attendee_csv_collects_rows_and_skips():
    text = "\ufeffname,email,phone,ticket,notes\n" \
        "Asha,ASHA@example.com,123,VIP,Veg\n" \
        "\n" \
        ",missing@example.com,,,\n" \
        "Karthik,karthik@example.com,,unknown,\n"
    result = parse_attendee_csv(text, _tiers())
    assert [a["email"] for a in result["attendees"]] == ["asha@example.com", "karthik@example.com"]
    assert result["attendees"][0]["ticket_tier_id"] == "t-vip"
    assert result["attendees"][0]["notes"] == "Veg"
    assert result["attendees"][1]["ticket_tier_id"] == "t-general"
    assert result["skipped"] == [{"row": 4, "reason": "Missing name"}]


def test_parse_attendee_csv_requires_data_rows():
    with pytest.raises(ValueError, match="header row and at least one data row"):
        parse_attendee_csv("name,email\n", _tiers())
    with pytest.raises(ValueError, match="No valid attendee data found in CSV"):
        parse_attendee_csv("name,email\n,\n", _tiers())


def test_parse_attendee_xlsx():
    wb = Workbook()
    ws = wb.active
    ws.append(["Full Name", "Email", "Tier"])
    ws.append(["Asha", "asha@example.com", "VIP"])
    ws.append(["Karthik", None, "General"])
    buffer = io.BytesIO()
    wb.save(buffer)

    result = parse_attendee_xlsx(buffer.getvalue(), _tiers())
    assert len(result["attendees"]) == 1
    assert result["attendees"][0]["ticket_tier_id"] == "t-vip"
    assert result["skipped"] == [{"row": 3, "reason": "Missing email"}]


def test_import_attendees_reports_duplicates_and_capacity(db, event):
    tier = make_tier(db, event, "General", quantity=2)
    rows = [
        {"row": 2, "full_name": "Asha", "email": "asha@example.com", "ticket_tier_id": tier.id},
        {"row": 3, "full_name": "Asha Again", "email": "ASHA@example.com", "ticket_tier_id": tier.id},
        {"row": 4, "full_name": "Bala", "email": "bala@example.com", "ticket_tier_id": tier.id},
        {"row": 5, "full_name": "Chitra", "email": "chitra@example.com", "ticket_tier_id": tier.id},
        {"row": 6, "full_name": "Dev", "email": "dev@example.com", "ticket_tier_id": "missing"},
    ]
    result = import_attendees(db, event, rows, NOW)

    assert result["imported"] == 2
    reasons = {f["row"]: f["reason"] for f in result["failures"]}
    assert reasons == {
        3: "Duplicate email in file",
        5: "No spots available for this ticket type",
        6: "No ticket type available",
    }
    db.refresh(tier)
    assert tier.sold_count == 2
    assert db.query(Registration).filter(Registration.status == RegistrationStatus.CONFIRMED).count() == 2

    again = import_attendees(db, event, rows[:1], NOW)
    assert again["imported"] == 0
    assert again["failures"][0]["reason"] == "Already registered"


def test_plan_bulk_invitations(db, event):
    tier = make_tier(db, event, "General")
    import_attendees(db, event, [{"row": 2, "full_name": "Asha", "email": "asha@example.com", "ticket_tier_id": tier.id}], NOW)
    plan = plan_bulk_invitations(db, event, ["new@example.com", "bad-address", "NEW@example.com", "asha@example.com", " "])
    assert plan["recipients"] == ["new@example.com"]
    assert plan["failures"] == [
        {"email": "bad-address", "reason": "Invalid email"},
        {"email": "new@example.com", "reason": "Duplicate email"},
        {"email": "asha@example.com", "reason": "Already registered"},
    ]


def test_import_endpoint_preview_and_commit(client, db, event, organizer):
    make_tier(db, event, "General", quantity=10)
    csv_bytes = b"name,email\nAsha,asha@example.com\nBala,bala@example.com\n"
    headers = auth_headers(organizer)

    preview = client.post(
        f"/api/events/{event.id}/attendees/import?preview=true",
        files={"file": ("guests.csv", csv_bytes, "text/csv")},
        headers=headers,
    )
    assert preview.status_code == 200
    assert preview.json()["preview"] is True
    assert preview.json()["total"] == 2
    assert preview.json()["attendees"][0]["ticket_tier_name"] == "General"
    assert db.query(Registration).count() == 0

    committed = client.post(
        f"/api/events/{event.id}/attendees/import",
        files={"file": ("guests.csv", csv_bytes, "text/csv")},
        headers=headers,
    )
    assert committed.status_code == 200
    assert committed.json()["imported"] == 2


def test_import_endpoint_rejects_bad_files(client, db, event, organizer):
    make_tier(db, event, "General")
    headers = auth_headers(organizer)
    wrong_type = client.post(
        f"/api/events/{event.id}/attendees/import",
        files={"file": ("guests.txt", b"name,email\n", "text/plain")},
        headers=headers,
    )
    assert wrong_type.status_code == 400
    no_email = client.post(
        f"/api/events/{event.id}/attendees/import",
        files={"file": ("guests.csv", b"name,phone\nAsha,1\n", "text/csv")},
        headers=headers,
    )
    assert no_email.status_code == 400
    assert no_email.json()["detail"] == 'CSV must have an "email" column'


def test_export_attendees_csv(client, db, event, organizer):
    tier = make_tier(db, event, "General")
    import_attendees(db, event, [{"row": 2, "full_name": "Asha", "email": "asha@example.com", "ticket_tier_id": tier.id}], NOW)
    response = client.get(f"/api/events/{event.id}/attendees/export?format=csv", headers=auth_headers(organizer))
    assert response.status_code == 200
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("Registration ID,Name,Email")
    assert "asha@example.com" in lines[1]
    assert lines[1].split(",")[7] == "No"
