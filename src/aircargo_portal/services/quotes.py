# src/aircargo_portal/services/quotes.py
"""
Quote issuance.

The server always re-prices the request; a client-side rate snapshot is only
compared against that result, and any difference in total, base, or express
surcharge rejects the quote outright.
"""
from __future__ import annotations

import logging
import random
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..documents.quote_document import QuoteDocument, render_quote_html
from ..errors import NotFoundError, ValidationError
from ..models import ShippingQuote
from ..rules.capacity import as_utc
from ..rules.rate_calculator import CalculatedRate
from ..settings import Settings, settings as default_settings
from .bookings import parse_customer_id
from .rates import calculate_for_destination

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SNAPSHOT_FIELDS = (
    ("total_cost", "total_cost"),
    ("base_shipping_cost", "base_shipping_cost"),
    ("express_surcharge", "express_surcharge"),
)
_REFERENCE_ATTEMPTS = 5


def generate_quote_reference(
    airport_code: Optional[str] = None,
    *,
    today: Optional[date] = None,
    prefix: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """``QCS-20250114-GEO-4821`` style reference; the airport segment is optional."""
    day = today or datetime.now(timezone.utc).date()
    lead = prefix or default_settings.quote_reference_prefix
    segment = re.sub(r"[^A-Z0-9]", "", (airport_code or "").upper())
    number = (rng or random).randint(1000, 9999)
    middle = f"{segment}-" if segment else ""
    return f"{lead}-{day:%Y%m%d}-{middle}{number}"


def _reference_taken(db: Session, reference: str) -> bool:
    return db.execute(
        select(ShippingQuote.id).where(ShippingQuote.quote_reference == reference)
    ).first() is not None


def _snapshot_deltas(result: CalculatedRate, snapshot: Optional[Dict[str, Any]]) -> Dict[str, Optional[Decimal]]:
    deltas: Dict[str, Optional[Decimal]] = {}
    if not snapshot:
        return deltas
    computed = result.breakdown
    for key, attr in _SNAPSHOT_FIELDS:
        raw = snapshot.get(key)
        if raw is None or raw == "":
            deltas[key] = None
            continue
        try:
            claimed = Decimal(str(raw))
        except Exception:
            raise ValidationError(f"Invalid {key} in rate snapshot") from None
        deltas[key] = claimed - getattr(computed, attr)
    return deltas


def _dimensions_line(dims: Optional[Dict[str, Any]]) -> Optional[str]:
    if not dims:
        return None
    sides = [dims.get(k) for k in ("length", "width", "height")]
    if not all(sides):
        return None
    return '{}" L x {}" W x {}" H'.format(*sides)


def _side(dims: Optional[Dict[str, Any]], name: str) -> Optional[Decimal]:
    raw = (dims or {}).get(name)
    if raw is None or raw == "":
        return None
    return Decimal(str(raw))


def create_quote(
    db: Session,
    data: Dict[str, Any],
    *,
    customer_id: Any = None,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    config: Optional[Settings] = None,
) -> ShippingQuote:
    cfg = config or default_settings
    full_name = str(data.get("full_name") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    if not full_name or not email:
        raise ValidationError("Full name and email are required")
    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required")
    customer = parse_customer_id(customer_id) if customer_id else None

    dims = data.get("dimensions") or None
    result = calculate_for_destination(
        db,
        weight=data.get("weight"),
        destination_id=data.get("destination_id"),
        dimensions=dims,
        service_type=data.get("service_type") or "standard",
        declared_value=data.get("declared_value"),
        special_handling=bool(data.get("special_handling")),
        consolidation_fee=data.get("consolidation_fee"),
    )

    deltas = _snapshot_deltas(result, data.get("rate_snapshot"))
    tampered = {k: str(v) for k, v in deltas.items() if v is not None and v != 0}
    if tampered:
        logger.error("Quote rejected: rate snapshot mismatch email=%s deltas=%s", email, tampered)
        raise ValidationError("Quoted amounts do not match current rates; please recalculate and try again")

    issued = as_utc(now) if now is not None else datetime.now(timezone.utc)
    expires = issued + timedelta(days=cfg.quote_valid_days)
    follow_up = issued + timedelta(days=cfg.quote_follow_up_days)
    destination = result.destination
    b = result.breakdown

    # references carry the business-day date, not the UTC one
    issued_on = issued.astimezone(ZoneInfo(cfg.business_timezone)).date()
    notes = (data.get("special_instructions") or "").strip() or None

    def _document(reference: str) -> QuoteDocument:
        return QuoteDocument(
            reference=reference,
            customer_name=full_name,
            customer_email=email,
            customer_phone=data.get("phone") or None,
            created_at=issued,
            expires_at=expires,
            destination_country=destination.country_name,
            destination_city=destination.city_name,
            airport_code=destination.airport_code,
            service_type=result.service_type.value,
            actual_weight=result.actual_weight,
            billable_weight=result.billable_weight,
            dimensional_weight=result.dimensional_weight,
            dimensions=_dimensions_line(dims),
            declared_value=result.declared_value,
            base_shipping_cost=b.base_shipping_cost,
            express_surcharge=b.express_surcharge,
            consolidation_fee=b.consolidation_fee,
            handling_fee=b.handling_fee,
            insurance_cost=b.insurance_cost,
            total_cost=b.total_cost,
            transit_label=result.transit.label,
            transit_average_days=result.transit.average_days,
            notes=notes,
        )

    def _quote(reference: str) -> ShippingQuote:
        return ShippingQuote(
            quote_reference=reference,
            customer_id=customer,
            email=email,
            full_name=full_name,
            phone=data.get("phone") or None,
            destination_id=destination.id,
            weight_lbs=result.actual_weight,
            length_inches=_side(dims, "length"),
            width_inches=_side(dims, "width"),
            height_inches=_side(dims, "height"),
            service_type=result.service_type.value,
            declared_value=result.declared_value,
            base_shipping_cost=b.base_shipping_cost,
            express_surcharge=b.express_surcharge,
            consolidation_fee=b.consolidation_fee,
            handling_fee=b.handling_fee,
            insurance_cost=b.insurance_cost,
            total_cost=b.total_cost,
            estimated_transit_days=result.transit.average_days,
            transit_label=result.transit.label,
            special_instructions=notes,
            status="pending",
            quote_document_html=render_quote_html(_document(reference), cfg),
            quote_metadata={
                "rate_per_lb": str(b.rate_per_lb),
                "billable_weight": str(result.billable_weight),
                "dimensional_weight": str(result.dimensional_weight) if result.dimensional_weight is not None else None,
                "transit_estimate": {
                    "min": result.transit.min_days,
                    "max": result.transit.max_days,
                    "average": result.transit.average_days,
                    "label": result.transit.label,
                },
                "follow_up_window_days": cfg.quote_follow_up_days,
                "client_snapshot_checked": bool(deltas),
            },
            follow_up_due_at=follow_up,
            quote_expires_at=expires,
            created_at=issued,
        )

    for _ in range(_REFERENCE_ATTEMPTS):
        reference = generate_quote_reference(
            destination.airport_code, today=issued_on, prefix=cfg.quote_reference_prefix, rng=rng
        )
        if _reference_taken(db, reference):
            continue
        quote = _quote(reference)
        db.add(quote)
        try:
            db.commit()
        except IntegrityError:
            # reference claimed by a concurrent request
            db.rollback()
            logger.warning("Quote reference collision ref=%s; retrying", reference)
            continue
        db.refresh(quote)
        logger.info("Quote issued ref=%s dest=%s total=%s", reference, destination.airport_code, b.total_cost)
        return quote
    raise ValidationError("Could not allocate a quote reference; please retry")


def list_quotes(db: Session, *, customer_id: Any = None, email: Optional[str] = None) -> List[ShippingQuote]:
    if not customer_id and not email:
        raise ValidationError("customer id or email is required")
    clauses = []
    if customer_id:
        clauses.append(ShippingQuote.customer_id == parse_customer_id(customer_id))
    if email:
        clauses.append(ShippingQuote.email == email.strip().lower())
    stmt = select(ShippingQuote).where(or_(*clauses)).order_by(ShippingQuote.created_at.desc(), ShippingQuote.id.desc())
    return list(db.execute(stmt).scalars())


def get_quote(db: Session, ref: Any, *, customer_id: Any = None, email: Optional[str] = None) -> ShippingQuote:
    """Fetch by quote reference for the customer id or email that owns it."""
    if not customer_id and not email:
        raise ValidationError("customer id or email is required")
    customer = parse_customer_id(customer_id) if customer_id else None
    owner_email = (email or "").strip().lower() or None

    key = str(ref or "").strip().upper()
    quote = None
    if key:
        quote = db.execute(
            select(ShippingQuote).where(ShippingQuote.quote_reference == key)
        ).scalar_one_or_none()
    owned = quote is not None and (
        (customer is not None and quote.customer_id == customer)
        or (owner_email is not None and quote.email == owner_email)
    )
    if not owned:
        raise NotFoundError("Quote not found")
    return quote


def quote_to_dict(q: ShippingQuote) -> Dict[str, Any]:
    def _s(v):
        return str(v) if v is not None else None

    return {
        "id": q.id,
        "quote_reference": q.quote_reference,
        "customer_id": _s(q.customer_id),
        "email": q.email,
        "full_name": q.full_name,
        "phone": q.phone,
        "destination_id": q.destination_id,
        "weight_lbs": _s(q.weight_lbs),
        "dimensions": {
            "length": _s(q.length_inches),
            "width": _s(q.width_inches),
            "height": _s(q.height_inches),
        },
        "service_type": q.service_type,
        "declared_value": _s(q.declared_value),
        "rate_breakdown": {
            "base_shipping_cost": _s(q.base_shipping_cost),
            "express_surcharge": _s(q.express_surcharge),
            "consolidation_fee": _s(q.consolidation_fee),
            "handling_fee": _s(q.handling_fee),
            "insurance_cost": _s(q.insurance_cost),
            "total_cost": _s(q.total_cost),
        },
        "estimated_transit_days": q.estimated_transit_days,
        "transit_label": q.transit_label,
        "special_instructions": q.special_instructions,
        "status": q.status,
        "metadata": q.quote_metadata or {},
        "follow_up_due_at": as_utc(q.follow_up_due_at).isoformat() if q.follow_up_due_at else None,
        "quote_expires_at": as_utc(q.quote_expires_at).isoformat() if q.quote_expires_at else None,
        "created_at": as_utc(q.created_at).isoformat() if q.created_at else None,
    }
