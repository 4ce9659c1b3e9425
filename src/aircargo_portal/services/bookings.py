# src/aircargo_portal/services/bookings.py
"""
Booking creation against the local ledger, plus the front door that routes
window listings and submissions to the remote capacity service when one is
configured.

Creation is idempotent on ``idempotency_key``: replaying a key returns the
booking that key already produced with ``created=False``.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clients.capacity_client import CapacityServiceClient
from ..clients.postal_client import PostalClient
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Booking
from ..rules.capacity import TimeWindow, as_utc
from ..settings import Settings, settings as default_settings
from .availability import (
    ACTIVE_BOOKING_STATUSES,
    AvailabilityService,
    WindowQuery,
    parse_pickup_or_drop,
    parse_weight,
)

logger = logging.getLogger(__name__)

# pg_advisory_xact_lock key shared by every booking writer
BOOKING_LOCK_KEY = 727_001


def new_idempotency_key() -> str:
    return str(uuid.uuid4())


def parse_customer_id(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value or "").strip())
    except ValueError:
        raise ValidationError("A valid customer id is required") from None


def _parse_dt(value: Any, label: str) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an ISO-8601 timestamp") from None


@dataclass(frozen=True)
class BookingRequest:
    window_start: datetime
    window_end: datetime
    address: Dict[str, Any]
    estimated_weight_lbs: Decimal
    pickup_or_drop: str
    idempotency_key: str
    service_type: str = "standard"
    notes: Optional[str] = None
    zip_code: Optional[str] = None
    quote_id: Optional[int] = None

    @classmethod
    def build(cls, data: Dict[str, Any], *, now: Optional[datetime] = None) -> "BookingRequest":
        key = str(data.get("idempotency_key") or "").strip()
        if not key:
            raise ValidationError("Idempotency key is required")

        start = _parse_dt(data.get("window_start"), "window_start")
        end = _parse_dt(data.get("window_end"), "window_end")
        if end <= start:
            raise ValidationError("Window end must be after window start")
        current = as_utc(now) if now is not None else datetime.now(timezone.utc)
        if start <= current:
            raise ValidationError("Cannot book for past time slots")

        address = data.get("address")
        if not isinstance(address, dict) or not address:
            raise ValidationError("Address is required")

        service = str(data.get("service_type") or "standard").strip().lower()
        if service not in ("standard", "express"):
            raise ValidationError("invalid service type")

        zip_code = (data.get("zip_code") or address.get("zip_code") or address.get("zip") or "").strip() or None
        return cls(
            window_start=start,
            window_end=end,
            address=address,
            estimated_weight_lbs=parse_weight(data.get("estimated_weight_lbs")),
            pickup_or_drop=parse_pickup_or_drop(data.get("pickup_or_drop")),
            idempotency_key=key,
            service_type=service,
            notes=(data.get("notes") or None),
            zip_code=zip_code,
            quote_id=data.get("quote_id"),
        )

    def to_payload(self, customer_id: uuid.UUID) -> Dict[str, Any]:
        return {
            "customer_id": str(customer_id),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "address": self.address,
            "estimated_weight_lbs": str(self.estimated_weight_lbs),
            "pickup_or_drop": self.pickup_or_drop,
            "service_type": self.service_type,
            "notes": self.notes,
            "zip_code": self.zip_code,
            "quote_id": self.quote_id,
            "idempotency_key": self.idempotency_key,
        }


def booking_to_dict(b: Booking) -> Dict[str, Any]:
    vehicle = b.assigned_vehicle
    return {
        "id": str(b.id),
        "customer_id": str(b.customer_id),
        "quote_id": b.quote_id,
        "shipment_id": b.shipment_id,
        "pickup_or_drop": b.pickup_or_drop,
        "window_start": as_utc(b.window_start).isoformat(),
        "window_end": as_utc(b.window_end).isoformat(),
        "address": b.address,
        "status": b.status,
        "notes": b.notes,
        "service_type": b.service_type,
        "estimated_weight": str(b.estimated_weight),
        "zip_code": b.zip_code,
        "distance_miles": str(b.distance_miles) if b.distance_miles is not None else None,
        "assigned_vehicle": {"id": str(vehicle.id), "name": vehicle.name} if vehicle else None,
        "idempotency_key": b.idempotency_key,
        "created_at": as_utc(b.created_at).isoformat() if b.created_at else None,
    }


def _by_key(db: Session, key: str, customer: uuid.UUID) -> Optional[Booking]:
    """Booking already made with ``key``; a key owned by another customer is a conflict."""
    booking = db.execute(select(Booking).where(Booking.idempotency_key == key)).scalar_one_or_none()
    if booking is not None and booking.customer_id != customer:
        logger.warning("Idempotency key reused across customers key=%s", key)
        raise ConflictError("Idempotency key has already been used for another booking")
    return booking


def _lock_ledger(db: Session) -> None:
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": BOOKING_LOCK_KEY})


def create_booking(
    db: Session,
    customer_id: Any,
    request: BookingRequest,
    *,
    postal_client: Optional[PostalClient] = None,
    now: Optional[datetime] = None,
    config: Optional[Settings] = None,
) -> Tuple[Booking, bool]:
    """Reserve a window on the ledger; returns ``(booking, created)``."""
    customer = parse_customer_id(customer_id)

    existing = _by_key(db, request.idempotency_key, customer)
    if existing is not None:
        logger.info("Booking replay key=%s id=%s", request.idempotency_key, existing.id)
        return existing, False

    _lock_ledger(db)

    overlapping = db.execute(
        select(Booking.id).where(
            Booking.customer_id == customer,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.window_start < request.window_end,
            Booking.window_end > request.window_start,
        )
    ).first()
    if overlapping is not None:
        db.rollback()
        raise ConflictError("You already have a booking that overlaps this time window")

    availability = AvailabilityService(db, postal_client=postal_client, now=now, config=config)
    window = TimeWindow(request.window_start, request.window_end)
    try:
        availability.check_offered_window(window)
    except ValidationError:
        db.rollback()
        raise

    distance = None
    if request.pickup_or_drop == "pickup" and request.zip_code:
        location = availability.locate_pickup(request.zip_code)
        if availability.is_out_of_area(location):
            db.rollback()
            raise ValidationError(availability.out_of_area_message(location))
        distance = location.distance_miles if location else None

    offer = availability.offer_for_window(
        window,
        request.estimated_weight_lbs,
        availability.fleet(),
        availability.booked_loads(window.start, window.end),
        availability.capacity_ceilings(window.start, window.end),
    )
    if offer is None:
        db.rollback()
        raise ConflictError("time window no longer available")

    booking = Booking(
        customer_id=customer,
        quote_id=request.quote_id,
        pickup_or_drop=request.pickup_or_drop,
        window_start=request.window_start,
        window_end=request.window_end,
        address=request.address,
        status="confirmed",
        notes=request.notes,
        service_type=request.service_type,
        estimated_weight=request.estimated_weight_lbs,
        zip_code=request.zip_code,
        distance_miles=distance,
        assigned_vehicle_id=uuid.UUID(offer.vehicle.vehicle.id),
        idempotency_key=request.idempotency_key,
    )
    db.add(booking)
    try:
        db.commit()
    except IntegrityError:
        # same key committed by a concurrent request
        db.rollback()
        existing = _by_key(db, request.idempotency_key, customer)
        if existing is None:
            raise
        return existing, False
    db.refresh(booking)
    logger.info(
        "Booking created id=%s customer=%s vehicle=%s window=%s",
        booking.id, customer, offer.vehicle.vehicle.name, window.display,
    )
    return booking, True


def list_bookings(db: Session, customer_id: Any) -> List[Booking]:
    customer = parse_customer_id(customer_id)
    return list(
        db.execute(
            select(Booking)
            .where(Booking.customer_id == customer)
            .order_by(Booking.window_start.desc())
        ).scalars()
    )


def get_booking(db: Session, customer_id: Any, booking_id: Any) -> Booking:
    customer = parse_customer_id(customer_id)
    try:
        key = uuid.UUID(str(booking_id))
    except ValueError:
        raise NotFoundError("Booking not found") from None
    booking = db.get(Booking, key)
    if booking is None or booking.customer_id != customer:
        raise NotFoundError("Booking not found")
    return booking


def cancel_booking(db: Session, customer_id: Any, booking_id: Any) -> Booking:
    booking = get_booking(db, customer_id, booking_id)
    if booking.status == "cancelled":
        return booking
    if booking.status not in ACTIVE_BOOKING_STATUSES:
        raise ConflictError(f"Booking is {booking.status} and can no longer be cancelled")
    booking.status = "cancelled"
    db.commit()
    db.refresh(booking)
    logger.info("Booking cancelled id=%s", booking.id)
    return booking


class BookingClient:
    """Lists windows and submits bookings through whichever provider is configured.

    With a ``remote`` capacity client every call goes to the external service;
    otherwise they run against the ledger in ``db``.  Each submission without
    an idempotency key gets a fresh one, so a retried attempt is a new booking
    and a replayed key is the same booking.
    """

    def __init__(
        self,
        db: Session,
        *,
        remote: Optional[CapacityServiceClient] = None,
        postal_client: Optional[PostalClient] = None,
        now: Optional[datetime] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.remote = remote
        self.postal_client = postal_client
        self.now = now
        self.config = config or default_settings

    def list_windows(self, query: WindowQuery) -> Dict[str, Any]:
        if self.remote is not None:
            return self.remote.list_windows(
                date=query.on.isoformat(),
                estimated_weight_lbs=query.estimated_weight_lbs,
                pickup_or_drop=query.pickup_or_drop,
                service_type=query.service_type,
                zip_code=query.zip_code,
            )
        service = AvailabilityService(self.db, postal_client=self.postal_client, now=self.now, config=self.config)
        return service.list_windows(query).to_dict()

    def submit(self, customer_id: Any, data: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        fields = dict(data)
        if not fields.get("idempotency_key"):
            fields["idempotency_key"] = new_idempotency_key()
        request = BookingRequest.build(fields, now=self.now)
        customer = parse_customer_id(customer_id)

        if self.remote is not None:
            result = self.remote.create_booking(request.to_payload(customer))
            return result["booking"], bool(result.get("created", True))

        booking, created = create_booking(
            self.db,
            customer,
            request,
            postal_client=self.postal_client,
            now=self.now,
            config=self.config,
        )
        return booking_to_dict(booking), created

    def list_bookings(self, customer_id: Any) -> List[Dict[str, Any]]:
        customer = parse_customer_id(customer_id)
        if self.remote is not None:
            return self.remote.list_bookings(str(customer))
        return [booking_to_dict(b) for b in list_bookings(self.db, customer)]

    def get_booking(self, customer_id: Any, booking_id: Any) -> Dict[str, Any]:
        customer = parse_customer_id(customer_id)
        if self.remote is not None:
            return self.remote.get_booking(str(customer), _remote_booking_id(booking_id))
        return booking_to_dict(get_booking(self.db, customer, booking_id))

    def cancel(self, customer_id: Any, booking_id: Any) -> Dict[str, Any]:
        customer = parse_customer_id(customer_id)
        if self.remote is not None:
            return self.remote.cancel_booking(str(customer), _remote_booking_id(booking_id))
        return booking_to_dict(cancel_booking(self.db, customer, booking_id))


def _remote_booking_id(booking_id: Any) -> str:
    key = str(booking_id or "").strip()
    if not key:
        raise NotFoundError("Booking not found")
    return quote(key, safe="")
