import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from models import (
    AttendanceRecord,
    Event,
    PromoCode,
    Registration,
    RegistrationAttendee,
    RegistrationStatus,
    SystemConfig,
    TicketTier,
    WaitlistEntry,
    WaitlistStatus,
)
from pricing import UNLIMITED_TIER_QUANTITY, tier_available, validate_promo_code
from time_utils import as_utc

logger = logging.getLogger(__name__)

MAX_CAPACITY_LIMIT = 99999
ACTIVE_REGISTRATION_STATUSES = (RegistrationStatus.CONFIRMED, RegistrationStatus.PENDING)


def get_config_flag(db: Session, key: str, default: bool = False) -> bool:
    row = db.query(SystemConfig).filter(SystemConfig.key == key).first()
    if not row:
        return default
    return str(row.value).strip().lower() in {"1", "true", "yes", "on"}


def set_config_flag(db: Session, key: str, value: bool) -> None:
    row = db.query(SystemConfig).filter(SystemConfig.key == key).first()
    text_value = "true" if value else "false"
    if row:
        row.value = text_value
    else:
        db.add(SystemConfig(key=key, value=text_value))
    db.commit()


def get_event_or_404(db: Session, event_id: str) -> Event:
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event


def get_tier_or_404(db: Session, event_id: str, tier_id: str) -> TicketTier:
    tier = db.query(TicketTier).filter(TicketTier.id == tier_id, TicketTier.event_id == event_id).first()
    if not tier:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket tier not found")
    return tier


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def email_is_registered(db: Session, event_id: str, email: str) -> bool:
    normalized = normalize_email(email)
    if not normalized:
        return False
    row = (
        db.query(RegistrationAttendee.id)
        .join(Registration, Registration.id == RegistrationAttendee.registration_id)
        .filter(
            Registration.event_id == event_id,
            Registration.status != RegistrationStatus.CANCELLED,
            func.lower(RegistrationAttendee.email) == normalized,
        )
        .first()
    )
    return row is not None


def reserve_seats(db: Session, tier: TicketTier, quantity: int) -> None:
    """Increment ``sold_count`` in one guarded UPDATE so concurrent bookings cannot oversell."""
    updated = (
        db.query(TicketTier)
        .filter(
            TicketTier.id == tier.id,
            TicketTier.sold_count + quantity <= func.coalesce(TicketTier.quantity, UNLIMITED_TIER_QUANTITY),
        )
        .update({TicketTier.sold_count: TicketTier.sold_count + quantity}, synchronize_session=False)
    )
    db.refresh(tier)
    if updated != 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No spots available for this ticket type")


def release_seats(db: Session, tier: TicketTier, quantity: int) -> None:
    db.query(TicketTier).filter(TicketTier.id == tier.id).update(
        {TicketTier.sold_count: case((TicketTier.sold_count > quantity, TicketTier.sold_count - quantity), else_=0)},
        synchronize_session=False,
    )
    db.refresh(tier)


def claim_promo_use(db: Session, promo: PromoCode) -> None:
    updated = (
        db.query(PromoCode)
        .filter(
            PromoCode.id == promo.id,
            or_(PromoCode.usage_limit.is_(None), PromoCode.times_used < PromoCode.usage_limit),
        )
        .update({PromoCode.times_used: PromoCode.times_used + 1}, synchronize_session=False)
    )
    db.refresh(promo)
    if updated != 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Promo code usage limit reached")


def create_confirmed_registration(
    db: Session,
    event: Event,
    tier: TicketTier,
    *,
    full_name: str,
    email: str,
    now: datetime,
    phone: Optional[str] = None,
    user_id: Optional[str] = None,
    quantity: int = 1,
    promo_code: Optional[str] = None,
    notes: Optional[str] = None,
    form_responses: Optional[Dict[str, Any]] = None,
) -> Registration:
    """Book ``quantity`` seats on ``tier`` and add the primary attendee.

    Flushes but does not commit; callers own the transaction. Raises 400 when
    the tier cannot cover the requested quantity or the promo code is
    rejected. Seats and promo usage are claimed with guarded UPDATEs before
    any row is added, so a rejected booking leaves nothing behind.
    """
    if tier.event_id != event.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ticket tier does not belong to this event")
    if tier_available(tier) < quantity:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No spots available for this ticket type")

    subtotal = round(float(tier.price or 0) * quantity, 2)
    discount = 0.0
    promo = None
    if promo_code:
        promo, discount = validate_promo_code(db, event.id, promo_code, tier.id, quantity, subtotal, now)

    reserve_seats(db, tier, quantity)
    if promo:
        try:
            claim_promo_use(db, promo)
        except HTTPException:
            release_seats(db, tier, quantity)
            raise

    registration = Registration(
        event_id=event.id,
        user_id=user_id,
        ticket_tier_id=tier.id,
        status=RegistrationStatus.CONFIRMED,
        quantity=quantity,
        subtotal_amount=subtotal,
        discount_amount=discount,
        total_amount=round(subtotal - discount, 2),
        promo_code_id=promo.id if promo else None,
        form_responses=form_responses,
    )
    db.add(registration)
    db.flush()

    db.add(RegistrationAttendee(
        registration_id=registration.id,
        full_name=full_name.strip(),
        email=normalize_email(email),
        phone=(phone or "").strip() or None,
        ticket_tier_id=tier.id,
        is_primary=True,
        notes=notes,
    ))
    db.flush()
    return registration


def cancel_registration(db: Session, registration: Registration) -> Registration:
    if registration.status == RegistrationStatus.CANCELLED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Registration is already cancelled")
    released = registration.status in ACTIVE_REGISTRATION_STATUSES
    registration.status = RegistrationStatus.CANCELLED
    if released and registration.ticket_tier_id:
        tier = db.query(TicketTier).filter(TicketTier.id == registration.ticket_tier_id).first()
        if tier:
            release_seats(db, tier, int(registration.quantity or 1))
    db.flush()
    return registration


def check_in(db: Session, event: Event, registration: Registration, checked_in_by: Optional[str], method: str = "manual") -> AttendanceRecord:
    if registration.event_id != event.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registration not found")
    if registration.status != RegistrationStatus.CONFIRMED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only confirmed registrations can be checked in")
    existing = db.query(AttendanceRecord).filter(AttendanceRecord.registration_id == registration.id).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Attendee already checked in")
    record = AttendanceRecord(
        event_id=event.id,
        registration_id=registration.id,
        user_id=checked_in_by,
        check_in_method=method,
    )
    db.add(record)
    db.flush()
    return record


def registration_stats(db: Session, event: Event, now: datetime) -> dict:
    regs = db.query(Registration.id, Registration.status, Registration.created_at).filter(Registration.event_id == event.id).all()
    checked_in_ids = {
        row.registration_id
        for row in db.query(AttendanceRecord.registration_id).filter(AttendanceRecord.event_id == event.id).all()
    }
    tiers = db.query(TicketTier.quantity).filter(TicketTier.event_id == event.id).all()
    capacity_limit = sum(UNLIMITED_TIER_QUANTITY if row.quantity is None else int(row.quantity) for row in tiers)

    total_registered = sum(1 for r in regs if r.status in ACTIVE_REGISTRATION_STATUSES)
    confirmed = sum(1 for r in regs if r.status == RegistrationStatus.CONFIRMED)
    pending = sum(1 for r in regs if r.status == RegistrationStatus.PENDING)
    cancelled = sum(1 for r in regs if r.status == RegistrationStatus.CANCELLED)
    checked_in = sum(1 for r in regs if r.id in checked_in_ids)

    waitlisted = (
        db.query(func.count(WaitlistEntry.id))
        .filter(WaitlistEntry.event_id == event.id, WaitlistEntry.status == WaitlistStatus.WAITING)
        .scalar()
    ) or 0

    current = as_utc(now)
    one_week_ago = current - timedelta(days=7)
    two_weeks_ago = current - timedelta(days=14)
    this_week = 0
    last_week = 0
    for r in regs:
        created = as_utc(r.created_at)
        if created is None:
            continue
        if created >= one_week_ago:
            this_week += 1
        elif created >= two_weeks_ago:
            last_week += 1

    if last_week > 0:
        trend = round((this_week - last_week) / last_week * 100)
    else:
        trend = 100 if this_week > 0 else 0

    check_in_rate = round(checked_in / confirmed * 100, 1) if confirmed > 0 else 0.0

    return {
        "total_registered": total_registered,
        "confirmed": confirmed,
        "checked_in": checked_in,
        "pending": pending,
        "waitlisted": int(waitlisted),
        "cancelled": cancelled,
        "capacity_limit": min(capacity_limit, MAX_CAPACITY_LIMIT),
        "registration_trend": int(trend),
        "check_in_rate": check_in_rate,
        "available_spots": max(0, capacity_limit - total_registered),
    }
