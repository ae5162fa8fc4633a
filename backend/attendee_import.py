"""Attendee intake: CSV/XLSX sniffing, bulk import and bulk invitations."""
import csv
import io
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from fastapi import HTTPException
from openpyxl import load_workbook
from sqlalchemy.orm import Session

from models import Event, TicketTier
from registration_service import create_confirmed_registration, email_is_registered, normalize_email

logger = logging.getLogger(__name__)

TEMPLATE_HEADERS = ["full_name", "email", "phone", "ticket_type", "notes"]
TEMPLATE_SAMPLE_ROWS = [
    ["Asha Raman", "asha@example.com", "+91 98765 43210", "General", "Vegetarian meal"],
    ["Karthik S", "karthik@example.com", "", "VIP", ""],
]

# Each column takes the first header containing one of its keywords.
COLUMN_KEYWORDS = (
    ("name", ("name",)),
    ("email", ("email",)),
    ("phone", ("phone", "mobile")),
    ("ticket", ("ticket", "tier")),
    ("notes", ("note", "comment")),
)


def parse_csv_line(line: str) -> List[str]:
    return next(csv.reader([line]), [])


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip().replace('"', "")


def sniff_columns(headers: Sequence[str], label: str = "CSV") -> Dict[str, Optional[int]]:
    normalized = [_clean(h).lower() for h in headers]
    columns: Dict[str, Optional[int]] = {}
    for column, keywords in COLUMN_KEYWORDS:
        columns[column] = next(
            (idx for idx, header in enumerate(normalized) if any(k in header for k in keywords)),
            None,
        )
    if columns["email"] is None:
        raise ValueError(f'{label} must have an "email" column')
    if columns["name"] is None:
        raise ValueError(f'{label} must have a "name" or "fullname" column')
    return columns


def match_tier(ticket_value: str, tiers: Sequence[TicketTier]) -> Optional[TicketTier]:
    needle = _clean(ticket_value).lower()
    if not needle:
        return None
    for tier in tiers:
        if tier.name.lower() == needle:
            return tier
    for tier in tiers:
        if needle in tier.name.lower():
            return tier
    return None


def _rows_to_attendees(
    headers: Sequence[str],
    rows: Iterable[tuple],
    tiers: Sequence[TicketTier],
    label: str,
) -> Dict[str, List[dict]]:
    columns = sniff_columns(headers, label)
    default_tier_id = tiers[0].id if tiers else None

    def cell(values, column):
        idx = columns[column]
        if idx is None or idx >= len(values):
            return ""
        return _clean(values[idx])

    attendees: List[dict] = []
    skipped: List[dict] = []
    for row_number, values in rows:
        name = cell(values, "name")
        email = cell(values, "email")
        if not name or not email:
            missing = "name" if not name else "email"
            skipped.append({"row": row_number, "reason": f"Missing {missing}"})
            continue

        tier_id = default_tier_id
        ticket_value = cell(values, "ticket")
        if ticket_value:
            matched = match_tier(ticket_value, tiers)
            if matched:
                tier_id = matched.id

        attendees.append({
            "row": row_number,
            "full_name": name,
            "email": email.lower(),
            "phone": cell(values, "phone") or None,
            "ticket_tier_id": tier_id,
            "notes": cell(values, "notes") or None,
        })

    if not attendees:
        raise ValueError(f"No valid attendee data found in {label}")
    return {"attendees": attendees, "skipped": skipped}


def parse_attendee_csv(text: str, tiers: Sequence[TicketTier]) -> Dict[str, List[dict]]:
    """Parse an attendee CSV against the event's active tiers.

    Returns ``{"attendees": [...], "skipped": [...]}``. Raises ``ValueError``
    for a file that cannot be imported at all.
    """
    lines = [(idx, line) for idx, line in enumerate(text.lstrip("\ufeff").splitlines(), start=1) if line.strip()]
    if len(lines) < 2:
        raise ValueError("CSV file must have a header row and at least one data row")
    headers = parse_csv_line(lines[0][1])
    rows = ((row_number, parse_csv_line(line)) for row_number, line in lines[1:])
    return _rows_to_attendees(headers, rows, tiers, "CSV")


def parse_attendee_xlsx(content: bytes, tiers: Sequence[TicketTier]) -> Dict[str, List[dict]]:
    wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    ws = wb.active
    all_rows = [
        (row_number, row)
        for row_number, row in enumerate(ws.iter_rows(values_only=True), start=1)
        if any(_clean(value) for value in row)
    ]
    wb.close()
    if len(all_rows) < 2:
        raise ValueError("Spreadsheet must have a header row and at least one data row")
    headers = [_clean(value) for value in all_rows[0][1]]
    return _rows_to_attendees(headers, all_rows[1:], tiers, "Spreadsheet")


def import_attendees(db: Session, event: Event, attendees: List[dict], now: datetime) -> dict:
    """Create confirmed registrations for parsed rows. Commits on success."""
    tiers_by_id = {
        tier.id: tier
        for tier in db.query(TicketTier).filter(TicketTier.event_id == event.id).all()
    }
    imported: List[dict] = []
    failures: List[Dict[str, object]] = []
    seen = set()
    for row in attendees:
        email = normalize_email(row.get("email"))
        if email in seen:
            failures.append({"row": row.get("row"), "email": email, "reason": "Duplicate email in file"})
            continue
        seen.add(email)
        if email_is_registered(db, event.id, email):
            failures.append({"row": row.get("row"), "email": email, "reason": "Already registered"})
            continue
        tier = tiers_by_id.get(row.get("ticket_tier_id"))
        if not tier:
            failures.append({"row": row.get("row"), "email": email, "reason": "No ticket type available"})
            continue
        try:
            registration = create_confirmed_registration(
                db,
                event,
                tier,
                full_name=row["full_name"],
                email=email,
                phone=row.get("phone"),
                notes=row.get("notes"),
                now=now,
                form_responses={"source": "bulk_import"},
            )
        except HTTPException as exc:
            failures.append({"row": row.get("row"), "email": email, "reason": str(exc.detail)})
            continue
        imported.append({"registration_id": registration.id, "email": email, "ticket_tier_id": tier.id})

    db.commit()
    logger.info("Imported %s attendees for event %s (%s failed)", len(imported), event.id, len(failures))
    return {
        "imported": len(imported),
        "failed": len(failures),
        "failures": failures,
        "registrations": imported,
    }


def plan_bulk_invitations(db: Session, event: Event, emails: List[str]) -> dict:
    """Split raw invitation emails into sendable addresses and failures."""
    recipients: List[str] = []
    failures: List[Dict[str, str]] = []
    seen = set()
    for raw in emails:
        email = normalize_email(raw)
        if not email:
            continue
        if "@" not in email:
            failures.append({"email": email, "reason": "Invalid email"})
            continue
        if email in seen:
            failures.append({"email": email, "reason": "Duplicate email"})
            continue
        seen.add(email)
        if email_is_registered(db, event.id, email):
            failures.append({"email": email, "reason": "Already registered"})
            continue
        recipients.append(email)
    return {"recipients": recipients, "failures": failures}
