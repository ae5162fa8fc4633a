import logging
from typing import List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from database import get_db
from email_templates import build_registration_confirmation_email, build_waitlist_invite_email
from emailer import send_batch_background
from models import (
    AttendanceRecord,
    Event,
    EventStatus,
    Registration,
    RegistrationAttendee,
    RegistrationStatus,
    User,
    WaitlistSource,
)
from pricing import tier_available, tier_sale_status
from registration_service import (
    cancel_registration,
    check_in,
    create_confirmed_registration,
    email_is_registered,
    get_config_flag,
    get_event_or_404,
    get_tier_or_404,
    registration_stats,
    set_config_flag,
)
from schemas import (
    CheckInRequest,
    ConfigFlagUpdate,
    RegistrationCreate,
    RegistrationResponse,
    RegistrationStatsResponse,
    RegistrationStatusEnum,
    WaitlistedRegistrationResponse,
)
from security import can_manage_event, require_admin, require_event_organizer, require_user
from time_utils import as_utc, now_tz
from utils import log_activity
from waitlist_service import add_entry, send_invites

router = APIRouter()
logger = logging.getLogger(__name__)

OPEN_EVENT_STATUSES = (EventStatus.PUBLISHED, EventStatus.ONGOING)
CONFIG_FLAGS = {"registration_open": True, "waitlist_auto_invite": False}


def _checked_in_ids(db: Session, registration_ids: List[str]) -> set:
    if not registration_ids:
        return set()
    rows = db.query(AttendanceRecord.registration_id).filter(AttendanceRecord.registration_id.in_(registration_ids)).all()
    return {row.registration_id for row in rows}


def registration_payload(registration: Registration, checked_in: bool = False) -> RegistrationResponse:
    payload = RegistrationResponse.model_validate(registration)
    payload.checked_in = checked_in
    return payload


def _get_registration_or_404(db: Session, event_id: str, registration_id: str) -> Registration:
    registration = (
        db.query(Registration)
        .filter(Registration.id == registration_id, Registration.event_id == event_id)
        .first()
    )
    if not registration:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registration not found")
    return registration


def queue_waitlist_invites(background_tasks: BackgroundTasks, event: Event, entries) -> None:
    messages = []
    for entry in entries:
        subject, html, text = build_waitlist_invite_email(entry.full_name, event.title)
        messages.append((entry.email, subject, html, text))
    if messages:
        background_tasks.add_task(send_batch_background, messages, "waitlist invite")


@router.post(
    "/events/{event_id}/register",
    response_model=Union[RegistrationResponse, WaitlistedRegistrationResponse],
    status_code=status.HTTP_201_CREATED,
)
def self_register(
    event_id: str,
    payload: RegistrationCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not get_config_flag(db, "registration_open", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Registration is closed")
    event = get_event_or_404(db, event_id)
    if event.status not in OPEN_EVENT_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event is not open for registration")
    now = now_tz()
    if event.registration_deadline and as_utc(event.registration_deadline) < as_utc(now):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Registration deadline has passed")

    tier = get_tier_or_404(db, event.id, payload.ticket_tier_id)
    sale_status = tier_sale_status(tier, now)
    if sale_status in ("inactive", "not_started", "ended"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ticket type is not on sale")
    if email_is_registered(db, event.id, user.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already registered for this event")

    full_name = payload.full_name or user.name
    if tier_available(tier) < payload.quantity:
        entry = add_entry(
            db,
            event,
            full_name=full_name,
            email=user.email,
            phone=payload.phone or user.phone,
            ticket_tier_id=tier.id,
            source=WaitlistSource.WEBSITE,
        )
        db.commit()
        logger.info("Tier %s sold out; waitlisted %s at position %s", tier.id, user.email, entry.position)
        return WaitlistedRegistrationResponse(waitlist_entry_id=entry.id, position=entry.position)

    registration = create_confirmed_registration(
        db,
        event,
        tier,
        full_name=full_name,
        email=user.email,
        phone=payload.phone or user.phone,
        user_id=user.id,
        quantity=payload.quantity,
        promo_code=payload.promo_code,
        form_responses=payload.form_responses,
        now=now,
    )
    db.commit()
    db.refresh(registration)

    subject, html, text = build_registration_confirmation_email(
        full_name, event.title, tier.name, registration.id, registration.total_amount or 0.0, tier.currency
    )
    background_tasks.add_task(send_batch_background, [(user.email, subject, html, text)], "registration confirmation")
    return registration_payload(registration)


@router.get("/me/registrations", response_model=List[RegistrationResponse])
def my_registrations(user: User = Depends(require_user), db: Session = Depends(get_db)):
    registrations = (
        db.query(Registration)
        .filter(Registration.user_id == user.id)
        .order_by(Registration.created_at.desc())
        .all()
    )
    checked = _checked_in_ids(db, [r.id for r in registrations])
    return [registration_payload(r, r.id in checked) for r in registrations]


@router.get("/events/{event_id}/registrations", response_model=List[RegistrationResponse])
def list_registrations(
    event_id: str,
    response: Response,
    status_filter: Optional[RegistrationStatusEnum] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    query = db.query(Registration).filter(Registration.event_id == event_id)
    if status_filter:
        query = query.filter(Registration.status == RegistrationStatus(status_filter.value))
    if search:
        needle = search.strip().lower()
        matching = db.query(RegistrationAttendee.registration_id).filter(
            or_(
                func.lower(RegistrationAttendee.full_name).contains(needle),
                func.lower(RegistrationAttendee.email).contains(needle),
            )
        )
        query = query.filter(Registration.id.in_(matching))

    total = query.count()
    registrations = (
        query.order_by(Registration.created_at.desc(), Registration.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    response.headers["X-Total-Count"] = str(total)
    response.headers["X-Page"] = str(page)
    response.headers["X-Page-Size"] = str(page_size)
    checked = _checked_in_ids(db, [r.id for r in registrations])
    return [registration_payload(r, r.id in checked) for r in registrations]


@router.get("/events/{event_id}/registrations/stats", response_model=RegistrationStatsResponse)
def get_registration_stats(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    event = get_event_or_404(db, event_id)
    return RegistrationStatsResponse(**registration_stats(db, event, now_tz()))


@router.get("/events/{event_id}/registrations/{registration_id}", response_model=RegistrationResponse)
def get_registration(event_id: str, registration_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    event = get_event_or_404(db, event_id)
    registration = _get_registration_or_404(db, event.id, registration_id)
    if registration.user_id != user.id and not can_manage_event(user, event):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registration not found")
    return registration_payload(registration, registration.id in _checked_in_ids(db, [registration.id]))


@router.post("/events/{event_id}/registrations/{registration_id}/check-in")
def check_in_registration(
    event_id: str,
    registration_id: str,
    request: Request,
    payload: Optional[CheckInRequest] = None,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    registration = _get_registration_or_404(db, event.id, registration_id)
    method = payload.method if payload else "manual"
    record = check_in(db, event, registration, user.id, method)
    db.commit()
    db.refresh(record)
    log_activity(db, user, "check_in", event_id=event.id, method="POST", path=request.url.path, meta={"registration_id": registration.id})
    return {
        "id": record.id,
        "registration_id": record.registration_id,
        "check_in_method": record.check_in_method,
        "check_in_time": record.check_in_time,
    }


@router.post("/events/{event_id}/registrations/{registration_id}/cancel", response_model=RegistrationResponse)
def cancel(
    event_id: str,
    registration_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    registration = _get_registration_or_404(db, event.id, registration_id)
    if registration.user_id != user.id and not can_manage_event(user, event):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to cancel this registration")

    cancel_registration(db, registration)
    invited = []
    if get_config_flag(db, "waitlist_auto_invite", False):
        invited = send_invites(db, event, now_tz())
    db.commit()
    db.refresh(registration)
    queue_waitlist_invites(background_tasks, event, invited)
    log_activity(
        db,
        user,
        "cancel_registration",
        event_id=event.id,
        method="POST",
        path=request.url.path,
        meta={"registration_id": registration.id, "waitlist_invited": len(invited)},
    )
    return registration_payload(registration)


@router.get("/admin/config")
def get_config(user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return {key: get_config_flag(db, key, default) for key, default in CONFIG_FLAGS.items()}


@router.put("/admin/config/{key}")
def update_config(key: str, payload: ConfigFlagUpdate, request: Request, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    if key not in CONFIG_FLAGS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown config key")
    set_config_flag(db, key, payload.value)
    log_activity(db, user, "update_config", method="PUT", path=request.url.path, meta={"key": key, "value": payload.value})
    return {key: payload.value}
