from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from database import get_db
from email_templates import build_waitlist_promotion_email
from emailer import send_batch_background
from models import Registration, TicketTier, User, WaitlistEntry, WaitlistPriority, WaitlistSource
from registration_service import get_event_or_404
from routers.registrations import queue_waitlist_invites, registration_payload
from schemas import (
    RegistrationResponse,
    TicketAvailabilityResponse,
    WaitlistBulkPromoteRequest,
    WaitlistEntryCreate,
    WaitlistEntryResponse,
    WaitlistMoveRequest,
    WaitlistStatsResponse,
)
from security import require_event_organizer
from time_utils import now_tz
from utils import log_activity
from waitlist_service import (
    add_entry,
    bulk_promote,
    compact_positions,
    get_entry_or_404,
    move_entry,
    promote_entry,
    remove_entry,
    send_invites,
    ticket_availability,
    waiting_entries,
    waitlist_stats,
)

router = APIRouter()


def entry_payload(entry: WaitlistEntry) -> WaitlistEntryResponse:
    payload = WaitlistEntryResponse.model_validate(entry)
    payload.ticket_tier_name = entry.ticket_tier.name if entry.ticket_tier else None
    return payload


def _queue_promotion_email(background_tasks: BackgroundTasks, event, entry: WaitlistEntry, registration, db: Session) -> None:
    tier = db.query(TicketTier).filter(TicketTier.id == registration.ticket_tier_id).first()
    subject, html, text = build_waitlist_promotion_email(entry.full_name, event.title, tier.name if tier else "General", registration.id)
    background_tasks.add_task(send_batch_background, [(entry.email, subject, html, text)], "waitlist promotion")


@router.get("/events/{event_id}/waitlist", response_model=List[WaitlistEntryResponse])
def list_waitlist(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    return [entry_payload(entry) for entry in waiting_entries(db, event_id)]


@router.post("/events/{event_id}/waitlist", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
def add_to_waitlist(
    event_id: str,
    payload: WaitlistEntryCreate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    entry = add_entry(
        db,
        event,
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        ticket_tier_id=payload.ticket_tier_id,
        priority=WaitlistPriority(payload.priority.value),
        source=WaitlistSource.MANUAL,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(entry)
    log_activity(db, user, "add_waitlist_entry", event_id=event.id, method="POST", path=request.url.path, meta={"entry_id": entry.id})
    return entry_payload(entry)


@router.get("/events/{event_id}/waitlist/stats", response_model=WaitlistStatsResponse)
def get_waitlist_stats(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    return WaitlistStatsResponse(**waitlist_stats(db, event_id, now_tz()))


@router.get("/events/{event_id}/waitlist/availability", response_model=List[TicketAvailabilityResponse])
def get_ticket_availability(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    return [TicketAvailabilityResponse(**row) for row in ticket_availability(db, event_id)]


@router.post("/events/{event_id}/waitlist/send-invites")
def invite_from_waitlist(
    event_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    invited = send_invites(db, event, now_tz())
    if not invited:
        db.rollback()
        return {"invited": 0, "message": "No available spots or nobody is waiting"}
    db.commit()
    queue_waitlist_invites(background_tasks, event, invited)
    log_activity(db, user, "send_waitlist_invites", event_id=event.id, method="POST", path=request.url.path, meta={"invited": len(invited)})
    return {"invited": len(invited), "message": f"Invited {len(invited)} attendee(s) from the waitlist"}


@router.post("/events/{event_id}/waitlist/bulk-promote")
def bulk_promote_entries(
    event_id: str,
    payload: WaitlistBulkPromoteRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    result = bulk_promote(db, event, payload.entry_ids, now_tz(), promoted_by=user.id)
    db.commit()
    for item in result["promoted"]:
        entry = db.query(WaitlistEntry).filter(WaitlistEntry.id == item["entry_id"]).first()
        registration = db.query(Registration).filter(Registration.id == item["registration_id"]).first()
        if entry and registration:
            _queue_promotion_email(background_tasks, event, entry, registration, db)
    log_activity(
        db,
        user,
        "bulk_promote_waitlist",
        event_id=event.id,
        method="POST",
        path=request.url.path,
        meta={"promoted": len(result["promoted"]), "skipped": len(result["skipped"])},
    )
    return result


@router.post("/events/{event_id}/waitlist/{entry_id}/promote", response_model=RegistrationResponse)
def promote_waitlist_entry(
    event_id: str,
    entry_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    entry = get_entry_or_404(db, event.id, entry_id)
    registration = promote_entry(db, event, entry, now_tz(), promoted_by=user.id)
    db.commit()
    db.refresh(registration)
    _queue_promotion_email(background_tasks, event, entry, registration, db)
    log_activity(
        db,
        user,
        "promote_waitlist_entry",
        event_id=event.id,
        method="POST",
        path=request.url.path,
        meta={"entry_id": entry.id, "registration_id": registration.id},
    )
    return registration_payload(registration)


@router.put("/events/{event_id}/waitlist/{entry_id}/position", response_model=List[WaitlistEntryResponse])
def move_waitlist_entry(
    event_id: str,
    entry_id: str,
    payload: WaitlistMoveRequest,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    entry = get_entry_or_404(db, event_id, entry_id)
    entries = move_entry(db, entry, payload.new_position)
    db.commit()
    return [entry_payload(row) for row in entries]


@router.post("/events/{event_id}/waitlist/{entry_id}/move-up", response_model=List[WaitlistEntryResponse])
def move_waitlist_entry_up(event_id: str, entry_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    entry = get_entry_or_404(db, event_id, entry_id)
    compact_positions(db, event_id)
    entries = move_entry(db, entry, max(1, entry.position - 1))
    db.commit()
    return [entry_payload(row) for row in entries]


@router.post("/events/{event_id}/waitlist/{entry_id}/move-down", response_model=List[WaitlistEntryResponse])
def move_waitlist_entry_down(event_id: str, entry_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    entry = get_entry_or_404(db, event_id, entry_id)
    compact_positions(db, event_id)
    entries = move_entry(db, entry, entry.position + 1)
    db.commit()
    return [entry_payload(row) for row in entries]


@router.delete("/events/{event_id}/waitlist/{entry_id}")
def remove_waitlist_entry(
    event_id: str,
    entry_id: str,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    entry = get_entry_or_404(db, event_id, entry_id)
    remove_entry(db, entry)
    db.commit()
    log_activity(db, user, "remove_waitlist_entry", event_id=event_id, method="DELETE", path=request.url.path, meta={"entry_id": entry_id})
    return {"message": "Removed from waitlist"}
