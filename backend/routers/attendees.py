from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from attendee_import import (
    TEMPLATE_HEADERS,
    TEMPLATE_SAMPLE_ROWS,
    import_attendees,
    parse_attendee_csv,
    parse_attendee_xlsx,
    plan_bulk_invitations,
)
from database import get_db
from email_templates import build_registration_confirmation_email, build_registration_invitation_email
from emailer import send_batch_background
from models import AttendanceRecord, Registration, RegistrationAttendee, RegistrationStatus, TicketTier, User
from registration_service import create_confirmed_registration, email_is_registered, get_event_or_404, get_tier_or_404
from routers.registrations import registration_payload
from schemas import BulkInvitationRequest, BulkInvitationResponse, ManualAttendeeCreate, RegistrationResponse, RegistrationStatusEnum
from security import require_event_organizer
from time_utils import now_tz
from utils import export_response, export_to_csv, log_activity

router = APIRouter()

MAX_IMPORT_BYTES = 5 * 1024 * 1024


def _active_tiers(db: Session, event_id: str):
    return (
        db.query(TicketTier)
        .filter(TicketTier.event_id == event_id, TicketTier.is_active == True)  # noqa: E712
        .order_by(TicketTier.sort_order.asc(), TicketTier.created_at.asc())
        .all()
    )


@router.post("/events/{event_id}/attendees", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
def add_attendee(
    event_id: str,
    payload: ManualAttendeeCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    tier = get_tier_or_404(db, event.id, payload.ticket_tier_id)
    if not tier.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ticket type is not active")
    if email_is_registered(db, event.id, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Attendee is already registered")

    registration = create_confirmed_registration(
        db,
        event,
        tier,
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        promo_code=payload.promo_code,
        notes=payload.notes,
        now=now_tz(),
        form_responses={"source": "manual", "added_by": user.id},
    )
    db.commit()
    db.refresh(registration)

    if payload.send_confirmation:
        subject, html, text = build_registration_confirmation_email(
            payload.full_name, event.title, tier.name, registration.id, registration.total_amount or 0.0, tier.currency
        )
        background_tasks.add_task(send_batch_background, [(payload.email, subject, html, text)], "registration confirmation")
    log_activity(db, user, "add_attendee", event_id=event.id, method="POST", path=request.url.path, meta={"registration_id": registration.id})
    return registration_payload(registration)


@router.post("/events/{event_id}/attendees/invitations", response_model=BulkInvitationResponse)
def send_bulk_invitations(
    event_id: str,
    payload: BulkInvitationRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    tier = get_tier_or_404(db, event.id, payload.ticket_tier_id)
    plan = plan_bulk_invitations(db, event, payload.emails)

    subject, html, text = build_registration_invitation_email(event.title, tier.name)
    messages = [(email, subject, html, text) for email in plan["recipients"]]
    if messages:
        background_tasks.add_task(send_batch_background, messages, "registration invitation")
    log_activity(
        db,
        user,
        "send_bulk_invitations",
        event_id=event.id,
        method="POST",
        path=request.url.path,
        meta={"sent": len(messages), "failed": len(plan["failures"])},
    )
    return BulkInvitationResponse(sent=len(messages), failed=len(plan["failures"]), failures=plan["failures"])


@router.get("/events/{event_id}/attendees/import-template")
def download_import_template(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    content = export_to_csv(TEMPLATE_HEADERS, TEMPLATE_SAMPLE_ROWS)
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=attendee-import-template.csv"},
    )


@router.post("/events/{event_id}/attendees/import")
def import_attendee_file(
    event_id: str,
    request: Request,
    file: UploadFile = File(...),
    preview: bool = Query(False),
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    tiers = _active_tiers(db, event.id)
    if not tiers:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Configure ticket tiers for this event before importing attendees")

    contents = file.file.read()
    if len(contents) > MAX_IMPORT_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is too large")
    extension = Path(file.filename or "").suffix.lower()
    try:
        if extension == ".xlsx":
            parsed = parse_attendee_xlsx(contents, tiers)
        elif extension == ".csv":
            parsed = parse_attendee_csv(contents.decode("utf-8-sig"), tiers)
        else:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only .csv and .xlsx files are supported")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV file must be UTF-8 encoded") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    tier_names = {tier.id: tier.name for tier in tiers}
    for row in parsed["attendees"]:
        row["ticket_tier_name"] = tier_names.get(row["ticket_tier_id"])

    if preview:
        return {
            "preview": True,
            "total": len(parsed["attendees"]),
            "attendees": parsed["attendees"],
            "skipped": parsed["skipped"],
        }

    result = import_attendees(db, event, parsed["attendees"], now_tz())
    log_activity(
        db,
        user,
        "import_attendees",
        event_id=event.id,
        method="POST",
        path=request.url.path,
        meta={"imported": result["imported"], "failed": result["failed"], "skipped": len(parsed["skipped"])},
    )
    result["skipped"] = parsed["skipped"]
    result["preview"] = False
    return result


@router.get("/events/{event_id}/attendees/export")
def export_attendees(
    event_id: str,
    format: str = Query("csv"),
    status_filter: Optional[RegistrationStatusEnum] = Query(None, alias="status"),
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    query = (
        db.query(RegistrationAttendee, Registration, TicketTier)
        .join(Registration, Registration.id == RegistrationAttendee.registration_id)
        .outerjoin(TicketTier, TicketTier.id == RegistrationAttendee.ticket_tier_id)
        .filter(Registration.event_id == event.id)
    )
    if status_filter:
        query = query.filter(Registration.status == RegistrationStatus(status_filter.value))
    rows = query.order_by(Registration.created_at.asc(), RegistrationAttendee.created_at.asc()).all()
    checked = {
        row.registration_id
        for row in db.query(AttendanceRecord.registration_id).filter(AttendanceRecord.event_id == event.id).all()
    }

    headers = ["Registration ID", "Name", "Email", "Phone", "Ticket", "Status", "Amount", "Checked In", "Registered At", "Notes"]
    data = [
        [
            registration.id,
            attendee.full_name,
            attendee.email,
            attendee.phone or "",
            tier.name if tier else "",
            registration.status.value,
            registration.total_amount or 0,
            "Yes" if registration.id in checked else "No",
            registration.created_at.isoformat() if registration.created_at else "",
            attendee.notes or "",
        ]
        for attendee, registration, tier in rows
    ]
    return export_response(headers, data, format, f"{event.slug}-attendees")
