# src/aircargo_portal/services/shipments.py
from __future__ import annotations

import logging
import random
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..models import Shipment, ShipmentItem, ShipmentTrackingEvent
from ..rules.capacity import as_utc
from .bookings import parse_customer_id
from .destinations import get_active_destination

logger = logging.getLogger(__name__)

SHIPMENT_STATUSES = (
    "pending_pickup",
    "picked_up",
    "processing",
    "in_transit",
    "customs_clearance",
    "out_for_delivery",
    "delivered",
    "exception",
    "cancelled",
)
_TRACKING_ALPHABET = string.ascii_uppercase + string.digits


def generate_tracking_number(
    *, now: Optional[datetime] = None, rng: Optional[random.Random] = None, prefix: str = "QCS"
) -> str:
    """Prefix + epoch milliseconds + three random upper-case alphanumerics."""
    at = as_utc(now) if now is not None else datetime.now(timezone.utc)
    millis = int(at.timestamp() * 1000)
    suffix = "".join((rng or random).choice(_TRACKING_ALPHABET) for _ in range(3))
    return f"{prefix}{millis}{suffix}"


def _positive(value: Any, message: str) -> Decimal:
    try:
        dec = Decimal(str(value))
    except Exception:
        raise ValidationError(message) from None
    if not dec.is_finite() or dec <= 0:
        raise ValidationError(message)
    return dec


def _optional_dec(value: Any, message: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        dec = Decimal(str(value))
    except Exception:
        raise ValidationError(message) from None
    if not dec.is_finite() or dec < 0:
        raise ValidationError(message)
    return dec


def _build_item(raw: Dict[str, Any], index: int) -> ShipmentItem:
    n = index + 1
    description = str(raw.get("description") or "").strip()
    if not description:
        raise ValidationError(f"Item {n}: description is required")
    weight = _positive(raw.get("weight_lbs", raw.get("weight")), f"Item {n}: weight must be greater than 0")
    try:
        quantity = Decimal(str(raw.get("quantity", 1)))
    except Exception:
        raise ValidationError(f"Item {n}: quantity must be at least 1") from None
    if not quantity.is_finite() or quantity < 1:
        raise ValidationError(f"Item {n}: quantity must be at least 1")
    if quantity != quantity.to_integral_value():
        raise ValidationError(f"Item {n}: quantity must be a whole number")
    return ShipmentItem(
        description=description,
        weight_lbs=weight,
        quantity=int(quantity),
        length_inches=_optional_dec(raw.get("length_inches"), f"Item {n}: invalid dimensions"),
        width_inches=_optional_dec(raw.get("width_inches"), f"Item {n}: invalid dimensions"),
        height_inches=_optional_dec(raw.get("height_inches"), f"Item {n}: invalid dimensions"),
        declared_value=_optional_dec(raw.get("declared_value"), f"Item {n}: invalid declared value") or Decimal("0"),
        category=str(raw.get("category") or "general"),
        notes=raw.get("notes") or None,
    )


def create_shipment(
    db: Session,
    customer_id: Any,
    data: Dict[str, Any],
    *,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> Shipment:
    customer = parse_customer_id(customer_id)
    raw_items = data.get("items") or []
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required")
    items = [_build_item(raw, i) for i, raw in enumerate(raw_items)]

    destination = get_active_destination(db, data.get("destination_id"))
    service = str(data.get("service_type") or "standard").strip().lower()
    if service not in ("standard", "express"):
        raise ValidationError("invalid service type")

    at = as_utc(now) if now is not None else datetime.now(timezone.utc)
    pickup = data.get("pickup_scheduled_at")
    if pickup and not isinstance(pickup, datetime):
        try:
            pickup = datetime.fromisoformat(str(pickup).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("pickup_scheduled_at must be an ISO-8601 timestamp") from None

    total_weight = sum((item.weight_lbs * item.quantity for item in items), Decimal("0"))
    total_value = sum((item.declared_value * item.quantity for item in items), Decimal("0"))

    shipment = Shipment(
        tracking_number=generate_tracking_number(now=at, rng=rng),
        customer_id=customer,
        destination_id=destination.id,
        service_type=service,
        status="pending_pickup",
        pickup_scheduled_at=as_utc(pickup) if pickup else None,
        special_instructions=(data.get("special_instructions") or None),
        total_declared_value=total_value,
        total_weight=total_weight,
        created_at=at,
        updated_at=at,
    )
    shipment.items.extend(items)
    shipment.tracking_events.append(
        ShipmentTrackingEvent(
            status="pending_pickup",
            notes="Shipment created",
            occurred_at=at,
            is_customer_visible=True,
        )
    )
    db.add(shipment)
    db.commit()
    db.refresh(shipment)
    logger.info(
        "Shipment created id=%s tracking=%s items=%d weight=%s",
        shipment.id, shipment.tracking_number, len(items), total_weight,
    )
    return shipment


def list_shipments(db: Session, customer_id: Any) -> List[Shipment]:
    customer = parse_customer_id(customer_id)
    stmt = (
        select(Shipment)
        .where(Shipment.customer_id == customer)
        .order_by(Shipment.created_at.desc(), Shipment.id.desc())
    )
    return list(db.execute(stmt).scalars())


def _shipment_by_id(db: Session, shipment_id: Any) -> Optional[Shipment]:
    try:
        key = int(shipment_id)
    except (TypeError, ValueError):
        return None
    return db.get(Shipment, key)


def get_shipment(db: Session, customer_id: Any, shipment_id: Any) -> Shipment:
    customer = parse_customer_id(customer_id)
    shipment = _shipment_by_id(db, shipment_id)
    if shipment is None or shipment.customer_id != customer:
        raise NotFoundError("Shipment not found")
    return shipment


def update_shipment_status(
    db: Session,
    shipment_id: Any,
    status: Any,
    *,
    customer_id: Any,
    location: Optional[str] = None,
    notes: Optional[str] = None,
    customer_visible: bool = True,
    now: Optional[datetime] = None,
) -> Shipment:
    """Move a shipment to ``status`` and append a tracking event.

    Customers may only update their own shipments; ``customer_id=None`` is the
    staff path and reaches any shipment.
    """
    new_status = str(status or "").strip().lower()
    if new_status not in SHIPMENT_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(SHIPMENT_STATUSES)}")
    if customer_id is None:
        shipment = _shipment_by_id(db, shipment_id)
    else:
        shipment = get_shipment(db, customer_id, shipment_id)
    if shipment is None:
        raise NotFoundError("Shipment not found")

    at = as_utc(now) if now is not None else datetime.now(timezone.utc)
    previous = shipment.status
    shipment.status = new_status
    shipment.updated_at = at
    shipment.tracking_events.append(
        ShipmentTrackingEvent(
            status=new_status,
            location=location,
            notes=notes,
            occurred_at=at,
            is_customer_visible=customer_visible,
        )
    )
    db.commit()
    db.refresh(shipment)
    logger.info("Shipment %s status %s -> %s", shipment.tracking_number, previous, new_status)
    return shipment


def _s(v: Any) -> Optional[str]:
    return str(v) if v is not None else None


def shipment_to_dict(s: Shipment, *, include_items: bool = False) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": s.id,
        "tracking_number": s.tracking_number,
        "customer_id": str(s.customer_id),
        "destination_id": s.destination_id,
        "service_type": s.service_type,
        "status": s.status,
        "pickup_scheduled_at": as_utc(s.pickup_scheduled_at).isoformat() if s.pickup_scheduled_at else None,
        "special_instructions": s.special_instructions,
        "total_weight": _s(s.total_weight),
        "total_declared_value": _s(s.total_declared_value),
        "created_at": as_utc(s.created_at).isoformat() if s.created_at else None,
    }
    if include_items:
        out["items"] = [
            {
                "id": i.id,
                "description": i.description,
                "weight_lbs": _s(i.weight_lbs),
                "quantity": i.quantity,
                "declared_value": _s(i.declared_value),
                "category": i.category,
                "notes": i.notes,
            }
            for i in s.items
        ]
        out["tracking"] = [
            {
                "status": e.status,
                "location": e.location,
                "notes": e.notes,
                "occurred_at": as_utc(e.occurred_at).isoformat(),
            }
            for e in s.tracking_events
            if e.is_customer_visible
        ]
    return out
