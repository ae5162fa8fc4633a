import re
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db
from models import (
    DiscountType,
    Event,
    EventMode,
    EventStatus,
    EventVisibility,
    PromoCode,
    Registration,
    TicketTier,
    User,
)
from pricing import find_promo_code, quote, tier_available, tier_sale_status
from registration_service import get_event_or_404, get_tier_or_404
from schemas import (
    EventCreate,
    EventResponse,
    EventUpdate,
    PriceQuoteRequest,
    PriceQuoteResponse,
    PromoCodeCreate,
    PromoCodeResponse,
    PromoCodeUpdate,
    TicketTierCreate,
    TicketTierResponse,
    TicketTierUpdate,
)
from security import can_manage_event, get_optional_user, require_event_organizer, require_organizer
from time_utils import as_utc, now_tz
from utils import log_activity

router = APIRouter()

PUBLICLY_READABLE = (EventVisibility.PUBLIC, EventVisibility.UNLISTED)


def _slugify(value: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", value.strip().lower()).strip("-")
    return cleaned[:110] if cleaned else "event"


def _next_slug(db: Session, title: str) -> str:
    base = _slugify(title)
    slug = base
    counter = 2
    while db.query(Event).filter(Event.slug == slug).first():
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def _validate_dates(start: Optional[datetime], end: Optional[datetime], deadline: Optional[datetime]) -> None:
    if start and end and as_utc(start) > as_utc(end):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Start date must be before end date")
    if deadline and end and as_utc(deadline) > as_utc(end):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Registration deadline must be before end date")


def _validate_window(start: Optional[datetime], end: Optional[datetime], label: str) -> None:
    if start and end and as_utc(start) > as_utc(end):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} start must be before {label.lower()} end")


def tier_payload(tier: TicketTier, now: datetime) -> TicketTierResponse:
    data = TicketTierResponse.model_validate(tier).model_dump()
    data["sale_status"] = tier_sale_status(tier, now)
    data["available"] = tier_available(tier)
    return TicketTierResponse(**data)


# ---------------------------------------------------------------- events

@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    request: Request,
    user: User = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    _validate_dates(payload.start_date, payload.end_date, payload.registration_deadline)
    event = Event(
        slug=_next_slug(db, payload.title),
        organizer_id=user.id,
        title=payload.title.strip(),
        description=payload.description,
        mode=EventMode(payload.mode.value),
        status=EventStatus.DRAFT,
        visibility=EventVisibility(payload.visibility.value),
        venue=payload.venue,
        start_date=payload.start_date,
        end_date=payload.end_date,
        registration_deadline=payload.registration_deadline,
        capacity=payload.capacity,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    log_activity(db, user, "create_event", event_id=event.id, method="POST", path=request.url.path)
    return EventResponse.model_validate(event)


@router.get("/events", response_model=List[EventResponse])
def list_public_events(
    response: Response,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = db.query(Event).filter(Event.visibility == EventVisibility.PUBLIC, Event.status != EventStatus.DRAFT)
    if search:
        query = query.filter(func.lower(Event.title).contains(search.strip().lower()))
    total = query.count()
    events = (
        query.order_by(Event.start_date.is_(None), Event.start_date.asc(), Event.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    response.headers["X-Total-Count"] = str(total)
    response.headers["X-Page"] = str(page)
    response.headers["X-Page-Size"] = str(page_size)
    return [EventResponse.model_validate(e) for e in events]


@router.get("/events/mine", response_model=List[EventResponse])
def list_my_events(user: User = Depends(require_organizer), db: Session = Depends(get_db)):
    events = db.query(Event).filter(Event.organizer_id == user.id).order_by(Event.created_at.desc()).all()
    return [EventResponse.model_validate(e) for e in events]


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: str, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
    event = get_event_or_404(db, event_id)
    publicly_readable = event.visibility in PUBLICLY_READABLE and event.status != EventStatus.DRAFT
    if not publicly_readable and not can_manage_event(user, event):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return EventResponse.model_validate(event)


@router.put("/events/{event_id}", response_model=EventResponse)
def update_event(
    event_id: str,
    payload: EventUpdate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    updates = payload.model_dump(exclude_unset=True)
    _validate_dates(
        updates.get("start_date", event.start_date),
        updates.get("end_date", event.end_date),
        updates.get("registration_deadline", event.registration_deadline),
    )
    enum_fields = {"mode": EventMode, "status": EventStatus, "visibility": EventVisibility}
    for field, value in updates.items():
        if field in enum_fields and value is not None:
            value = enum_fields[field](value.value if hasattr(value, "value") else value)
        if field == "title" and value:
            value = value.strip()
        setattr(event, field, value)
    db.commit()
    db.refresh(event)
    log_activity(db, user, "update_event", event_id=event.id, method="PUT", path=request.url.path, meta={"fields": sorted(updates)})
    return EventResponse.model_validate(event)


@router.delete("/events/{event_id}")
def delete_event(
    event_id: str,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    if event.status != EventStatus.DRAFT:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only draft events can be deleted; cancel it instead")
    if db.query(Registration.id).filter(Registration.event_id == event.id).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event has registrations")
    db.query(PromoCode).filter(PromoCode.event_id == event.id).delete(synchronize_session=False)
    db.query(TicketTier).filter(TicketTier.event_id == event.id).delete(synchronize_session=False)
    db.delete(event)
    db.commit()
    log_activity(db, user, "delete_event", event_id=event_id, method="DELETE", path=request.url.path)
    return {"message": "Event deleted"}


# ---------------------------------------------------------------- ticket tiers

@router.get("/events/{event_id}/ticket-tiers", response_model=List[TicketTierResponse])
def list_ticket_tiers(
    event_id: str,
    include_inactive: bool = False,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    query = db.query(TicketTier).filter(TicketTier.event_id == event.id)
    if not (include_inactive and can_manage_event(user, event)):
        query = query.filter(TicketTier.is_active == True)  # noqa: E712
    now = now_tz()
    tiers = query.order_by(TicketTier.sort_order.asc(), TicketTier.created_at.asc()).all()
    return [tier_payload(tier, now) for tier in tiers]


@router.post("/events/{event_id}/ticket-tiers", response_model=TicketTierResponse, status_code=status.HTTP_201_CREATED)
def create_ticket_tier(
    event_id: str,
    payload: TicketTierCreate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    _validate_window(payload.sale_start, payload.sale_end, "Sale")
    tier = TicketTier(event_id=event.id, **payload.model_dump())
    tier.currency = tier.currency.upper()
    db.add(tier)
    db.commit()
    db.refresh(tier)
    log_activity(db, user, "create_ticket_tier", event_id=event.id, method="POST", path=request.url.path, meta={"tier_id": tier.id})
    return tier_payload(tier, now_tz())


@router.put("/events/{event_id}/ticket-tiers/{tier_id}", response_model=TicketTierResponse)
def update_ticket_tier(
    event_id: str,
    tier_id: str,
    payload: TicketTierUpdate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    tier = get_tier_or_404(db, event_id, tier_id)
    updates = payload.model_dump(exclude_unset=True)
    _validate_window(updates.get("sale_start", tier.sale_start), updates.get("sale_end", tier.sale_end), "Sale")
    if "quantity" in updates and updates["quantity"] is not None and updates["quantity"] < int(tier.sold_count or 0):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quantity cannot be lower than tickets already sold")
    for field, value in updates.items():
        if field == "currency" and value:
            value = value.upper()
        setattr(tier, field, value)
    db.commit()
    db.refresh(tier)
    log_activity(db, user, "update_ticket_tier", event_id=event_id, method="PUT", path=request.url.path, meta={"tier_id": tier.id})
    return tier_payload(tier, now_tz())


@router.delete("/events/{event_id}/ticket-tiers/{tier_id}")
def delete_ticket_tier(
    event_id: str,
    tier_id: str,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    tier = get_tier_or_404(db, event_id, tier_id)
    if int(tier.sold_count or 0) > 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tier has sold tickets; deactivate it instead")
    db.query(PromoCode).filter(PromoCode.ticket_tier_id == tier.id).update({PromoCode.ticket_tier_id: None}, synchronize_session=False)
    db.delete(tier)
    db.commit()
    log_activity(db, user, "delete_ticket_tier", event_id=event_id, method="DELETE", path=request.url.path, meta={"tier_id": tier_id})
    return {"message": "Ticket tier deleted"}


# ---------------------------------------------------------------- promo codes

@router.get("/events/{event_id}/promo-codes", response_model=List[PromoCodeResponse])
def list_promo_codes(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    rows = db.query(PromoCode).filter(PromoCode.event_id == event_id).order_by(PromoCode.created_at.desc()).all()
    return [PromoCodeResponse.model_validate(row) for row in rows]


@router.post("/events/{event_id}/promo-codes", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
def create_promo_code(
    event_id: str,
    payload: PromoCodeCreate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    if find_promo_code(db, event.id, payload.code):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Promo code already exists for this event")
    if payload.ticket_tier_id:
        get_tier_or_404(db, event.id, payload.ticket_tier_id)
    _validate_window(payload.valid_from, payload.valid_until, "Validity")
    data = payload.model_dump()
    data["discount_type"] = DiscountType(payload.discount_type.value)
    promo = PromoCode(event_id=event.id, **data)
    db.add(promo)
    db.commit()
    db.refresh(promo)
    log_activity(db, user, "create_promo_code", event_id=event.id, method="POST", path=request.url.path, meta={"code": promo.code})
    return PromoCodeResponse.model_validate(promo)


def _get_promo_or_404(db: Session, event_id: str, promo_id: str) -> PromoCode:
    promo = db.query(PromoCode).filter(PromoCode.id == promo_id, PromoCode.event_id == event_id).first()
    if not promo:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promo code not found")
    return promo


@router.put("/events/{event_id}/promo-codes/{promo_id}", response_model=PromoCodeResponse)
def update_promo_code(
    event_id: str,
    promo_id: str,
    payload: PromoCodeUpdate,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    promo = _get_promo_or_404(db, event_id, promo_id)
    updates = payload.model_dump(exclude_unset=True)
    _validate_window(updates.get("valid_from", promo.valid_from), updates.get("valid_until", promo.valid_until), "Validity")
    value = updates.get("discount_value")
    if value is not None and promo.discount_type == DiscountType.PERCENTAGE and value > 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Percentage discount cannot exceed 100")
    for field, new_value in updates.items():
        setattr(promo, field, new_value)
    db.commit()
    db.refresh(promo)
    return PromoCodeResponse.model_validate(promo)


@router.delete("/events/{event_id}/promo-codes/{promo_id}")
def delete_promo_code(
    event_id: str,
    promo_id: str,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    promo = _get_promo_or_404(db, event_id, promo_id)
    if int(promo.times_used or 0) > 0:
        promo.is_active = False
        db.commit()
        return {"message": "Promo code has been used; deactivated instead"}
    db.delete(promo)
    db.commit()
    return {"message": "Promo code deleted"}


@router.post("/events/{event_id}/quote", response_model=PriceQuoteResponse)
def price_quote(event_id: str, payload: PriceQuoteRequest, db: Session = Depends(get_db)):
    get_event_or_404(db, event_id)
    tier = get_tier_or_404(db, event_id, payload.ticket_tier_id)
    return PriceQuoteResponse(**quote(db, tier, payload.quantity, payload.promo_code, now_tz()))
