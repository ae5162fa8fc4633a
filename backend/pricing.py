from datetime import datetime
from typing import Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import DiscountType, PromoCode, TicketTier
from time_utils import as_utc

UNLIMITED_TIER_QUANTITY = 9999


def tier_capacity(tier: TicketTier) -> int:
    return UNLIMITED_TIER_QUANTITY if tier.quantity is None else int(tier.quantity)


def tier_available(tier: TicketTier) -> int:
    return max(0, tier_capacity(tier) - int(tier.sold_count or 0))


def tier_sale_status(tier: TicketTier, now: datetime) -> str:
    if not tier.is_active:
        return "inactive"
    current = as_utc(now)
    if tier.sale_start and as_utc(tier.sale_start) > current:
        return "not_started"
    if tier.sale_end and as_utc(tier.sale_end) < current:
        return "ended"
    if tier_available(tier) <= 0:
        return "sold_out"
    return "on_sale"


def compute_discount(
    subtotal: float,
    quantity: int,
    discount_type: DiscountType,
    discount_value: float,
    max_quantity: Optional[int] = None,
) -> float:
    if subtotal <= 0 or discount_value <= 0:
        return 0.0
    if discount_type == DiscountType.PERCENTAGE:
        discount = subtotal * float(discount_value) / 100
    else:
        applicable_qty = min(quantity, max_quantity) if max_quantity else quantity
        discount = float(discount_value) * applicable_qty
    return round(min(max(discount, 0.0), subtotal), 2)


def find_promo_code(db: Session, event_id: str, code: str) -> Optional[PromoCode]:
    normalized = str(code or "").strip().upper()
    if not normalized:
        return None
    return (
        db.query(PromoCode)
        .filter(PromoCode.event_id == event_id, func.upper(PromoCode.code) == normalized)
        .first()
    )


def validate_promo_code(
    db: Session,
    event_id: str,
    code: str,
    tier_id: Optional[str],
    quantity: int,
    subtotal: float,
    now: datetime,
) -> Tuple[PromoCode, float]:
    promo = find_promo_code(db, event_id, code)
    if not promo or not promo.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or inactive promo code")

    current = as_utc(now)
    if promo.valid_from and as_utc(promo.valid_from) > current:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Promo code is not active yet")
    if promo.valid_until and as_utc(promo.valid_until) < current:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Promo code has expired")
    if promo.usage_limit is not None and int(promo.times_used or 0) >= int(promo.usage_limit):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Promo code usage limit reached")
    if promo.ticket_tier_id and tier_id and promo.ticket_tier_id != tier_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Promo code does not apply to this ticket type")

    discount = compute_discount(subtotal, quantity, promo.discount_type, promo.discount_value, promo.max_quantity)
    return promo, discount


def quote(
    db: Session,
    tier: TicketTier,
    quantity: int,
    promo_code: Optional[str],
    now: datetime,
) -> dict:
    subtotal = round(float(tier.price or 0) * quantity, 2)
    promo = None
    discount = 0.0
    if promo_code:
        promo, discount = validate_promo_code(db, tier.event_id, promo_code, tier.id, quantity, subtotal, now)
    return {
        "subtotal": subtotal,
        "discount": discount,
        "total": round(subtotal - discount, 2),
        "currency": tier.currency,
        "promo_code_id": promo.id if promo else None,
    }
