"""Waitlist queue operations.

Among the ``waiting`` entries of an event, positions always run 1..N with no
gaps. Every mutation here ends by renumbering the queue, so callers only need
to commit.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import (
    Event,
    Registration,
    TicketTier,
    WaitlistEntry,
    WaitlistPriority,
    WaitlistSource,
    WaitlistStatus,
)
from pricing import tier_available
from registration_service import create_confirmed_registration, normalize_email
from time_utils import as_utc, start_of_today

logger = logging.getLogger(__name__)

PRIORITY_LEVELS = (WaitlistPriority.HIGH, WaitlistPriority.VIP)
PROMOTABLE_STATUSES = (WaitlistStatus.WAITING, WaitlistStatus.INVITED)


def waiting_entries(db: Session, event_id: str) -> List[WaitlistEntry]:
    return (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.event_id == event_id, WaitlistEntry.status == WaitlistStatus.WAITING)
        .order_by(WaitlistEntry.position.asc(), WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
        .all()
    )


def _renumber(entries: List[WaitlistEntry]) -> None:
    for index, entry in enumerate(entries, start=1):
        if entry.position != index:
            entry.position = index


def compact_positions(db: Session, event_id: str) -> List[WaitlistEntry]:
    db.flush()
    entries = waiting_entries(db, event_id)
    _renumber(entries)
    db.flush()
    return entries


def get_entry_or_404(db: Session, event_id: str, entry_id: str) -> WaitlistEntry:
    entry = db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id, WaitlistEntry.event_id == event_id).first()
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Waitlist entry not found")
    return entry


def add_entry(
    db: Session,
    event: Event,
    *,
    full_name: str,
    email: str,
    phone: Optional[str] = None,
    ticket_tier_id: Optional[str] = None,
    priority: WaitlistPriority = WaitlistPriority.NORMAL,
    source: WaitlistSource = WaitlistSource.MANUAL,
    notes: Optional[str] = None,
) -> WaitlistEntry:
    normalized_email = normalize_email(email)
    duplicate = (
        db.query(WaitlistEntry.id)
        .filter(
            WaitlistEntry.event_id == event.id,
            WaitlistEntry.status == WaitlistStatus.WAITING,
            func.lower(WaitlistEntry.email) == normalized_email,
        )
        .first()
    )
    if duplicate:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email is already on the waitlist")
    if ticket_tier_id:
        tier = db.query(TicketTier).filter(TicketTier.id == ticket_tier_id, TicketTier.event_id == event.id).first()
        if not tier:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket tier not found")

    entries = compact_positions(db, event.id)
    entry = WaitlistEntry(
        event_id=event.id,
        ticket_tier_id=ticket_tier_id,
        full_name=full_name.strip(),
        email=normalized_email,
        phone=(phone or "").strip() or None,
        position=len(entries) + 1,
        priority=priority,
        source=source,
        notes=notes,
        status=WaitlistStatus.WAITING,
    )
    db.add(entry)
    db.flush()
    return entry


def move_entry(db: Session, entry: WaitlistEntry, new_position: int) -> List[WaitlistEntry]:
    if entry.status != WaitlistStatus.WAITING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only waiting entries can be reordered")
    entries = compact_positions(db, entry.event_id)
    target = min(max(int(new_position), 1), len(entries))
    current_index = next(i for i, row in enumerate(entries) if row.id == entry.id)
    if current_index + 1 == target:
        return entries
    entries.pop(current_index)
    entries.insert(target - 1, entry)
    _renumber(entries)
    db.flush()
    return entries


def remove_entry(db: Session, entry: WaitlistEntry) -> WaitlistEntry:
    if entry.status != WaitlistStatus.WAITING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only waiting entries can be removed")
    entry.status = WaitlistStatus.REMOVED
    compact_positions(db, entry.event_id)
    return entry


def _resolve_tier(db: Session, event: Event, entry: WaitlistEntry) -> TicketTier:
    if entry.ticket_tier_id:
        tier = db.query(TicketTier).filter(TicketTier.id == entry.ticket_tier_id).first()
        if tier and tier.is_active and tier_available(tier) > 0:
            return tier
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No spots available for this ticket type")

    tiers = (
        db.query(TicketTier)
        .filter(TicketTier.event_id == event.id, TicketTier.is_active == True)  # noqa: E712
        .order_by(TicketTier.sort_order.asc(), TicketTier.created_at.asc())
        .all()
    )
    for tier in tiers:
        if tier_available(tier) > 0:
            return tier
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No spots available for this ticket type")


def promote_entry(db: Session, event: Event, entry: WaitlistEntry, now: datetime, promoted_by: Optional[str] = None) -> Registration:
    if entry.status not in PROMOTABLE_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cannot promote an entry that is {entry.status.value}")
    tier = _resolve_tier(db, event, entry)

    registration = create_confirmed_registration(
        db,
        event,
        tier,
        full_name=entry.full_name,
        email=entry.email,
        phone=entry.phone,
        notes=entry.notes,
        now=now,
        form_responses={
            "promoted_from_waitlist": True,
            "waitlist_entry_id": entry.id,
            "promoted_by": promoted_by,
        },
    )
    entry.status = WaitlistStatus.PROMOTED
    entry.promoted_at = as_utc(now)
    entry.registration_id = registration.id
    compact_positions(db, event.id)
    logger.info("Promoted waitlist entry %s to registration %s", entry.id, registration.id)
    return registration


def bulk_promote(db: Session, event: Event, entry_ids: List[str], now: datetime, promoted_by: Optional[str] = None) -> dict:
    promoted: List[Dict[str, str]] = []
    skipped: List[Dict[str, str]] = []
    seen = set()
    for entry_id in entry_ids:
        if entry_id in seen:
            continue
        seen.add(entry_id)
        entry = db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id, WaitlistEntry.event_id == event.id).first()
        if not entry:
            skipped.append({"entry_id": entry_id, "reason": "Waitlist entry not found"})
            continue
        try:
            registration = promote_entry(db, event, entry, now, promoted_by=promoted_by)
        except HTTPException as exc:
            skipped.append({"entry_id": entry_id, "reason": str(exc.detail)})
            continue
        promoted.append({"entry_id": entry_id, "registration_id": registration.id})
    return {"promoted": promoted, "skipped": skipped}


def total_available(db: Session, event_id: str) -> int:
    tiers = (
        db.query(TicketTier)
        .filter(TicketTier.event_id == event_id, TicketTier.is_active == True)  # noqa: E712
        .all()
    )
    return sum(tier_available(tier) for tier in tiers)


def send_invites(db: Session, event: Event, now: datetime) -> List[WaitlistEntry]:
    entries = compact_positions(db, event.id)
    to_invite = min(total_available(db, event.id), len(entries))
    if to_invite <= 0:
        return []
    invited = entries[:to_invite]
    for entry in invited:
        entry.status = WaitlistStatus.INVITED
        entry.invited_at = as_utc(now)
    compact_positions(db, event.id)
    logger.info("Invited %s waitlisted attendees for event %s", len(invited), event.id)
    return invited


def waitlist_stats(db: Session, event_id: str, now: datetime) -> dict:
    entries = waiting_entries(db, event_id)
    current = as_utc(now)
    priority_count = sum(1 for e in entries if e.priority in PRIORITY_LEVELS)
    total_days = 0.0
    for entry in entries:
        created = as_utc(entry.created_at) or current
        total_days += abs((current - created).total_seconds()) / 86400
    avg_wait_days = round(total_days / len(entries), 1) if entries else 0.0

    midnight = as_utc(start_of_today())
    invited_rows = (
        db.query(WaitlistEntry.invited_at)
        .filter(WaitlistEntry.event_id == event_id, WaitlistEntry.status == WaitlistStatus.INVITED)
        .all()
    )
    invited_today = sum(1 for row in invited_rows if row.invited_at and as_utc(row.invited_at) >= midnight)

    return {
        "total_waiting": len(entries),
        "priority_count": priority_count,
        "avg_wait_days": avg_wait_days,
        "invited_today": invited_today,
    }


def ticket_availability(db: Session, event_id: str) -> List[dict]:
    tiers = (
        db.query(TicketTier)
        .filter(TicketTier.event_id == event_id, TicketTier.is_active == True)  # noqa: E712
        .order_by(TicketTier.sort_order.asc(), TicketTier.created_at.asc())
        .all()
    )
    counts = dict(
        db.query(WaitlistEntry.ticket_tier_id, func.count(WaitlistEntry.id))
        .filter(WaitlistEntry.event_id == event_id, WaitlistEntry.status == WaitlistStatus.WAITING)
        .group_by(WaitlistEntry.ticket_tier_id)
        .all()
    )
    return [
        {
            "tier_id": tier.id,
            "tier_name": tier.name,
            "available": tier_available(tier),
            "waitlisted": int(counts.get(tier.id, 0)),
        }
        for tier in tiers
    ]
