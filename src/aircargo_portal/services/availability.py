# src/aircargo_portal/services/availability.py
"""
Pickup/drop-off availability computed from the booking ledger in Postgres.

Notes:
- Windows are generated in the business timezone and compared in UTC.
- Used capacity is time-weighted: a booking only counts for the share of its
  own window that overlaps the candidate window.
- Capacity blocks impose a fleet-wide ceiling on top of per-vehicle limits.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clients.postal_client import PostalClient
from ..errors import TransientError, ValidationError
from ..models import AvailabilityOverride, Booking, CapacityBlock, PostalGeo, Vehicle
from ..rules.business_hours import BusinessDay, HoursOverride, resolve_business_day, upcoming_closures
from ..rules.capacity import (
    BookedLoad,
    CapacityCeiling,
    FleetVehicle,
    TimeWindow,
    VehicleCapacity,
    as_utc,
    best_vehicle,
    fleet_ceiling,
    generate_windows,
    haversine_miles,
    vehicle_capacity_for_window,
)
from ..settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

ACTIVE_BOOKING_STATUSES = ("pending", "confirmed")
PICKUP_OR_DROP = ("pickup", "dropoff")


class UnavailableReason(str, Enum):
    OUT_OF_SERVICE_AREA = "OutOfServiceArea"
    CLOSED = "Closed"
    NO_CAPACITY = "NoCapacity"


def _lbs(x: Decimal) -> str:
    return str(x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def parse_weight(value: Any, message: str = "Valid estimated weight is required") -> Decimal:
    try:
        weight = Decimal(str(value))
    except Exception:
        raise ValidationError(message) from None
    if not weight.is_finite() or weight <= 0:
        raise ValidationError(message)
    return weight


def parse_pickup_or_drop(value: Any) -> str:
    kind = str(value or "").strip().lower()
    if kind not in PICKUP_OR_DROP:
        raise ValidationError('pickup_or_drop must be either "pickup" or "dropoff"')
    return kind


@dataclass(frozen=True)
class WindowQuery:
    on: date
    estimated_weight_lbs: Decimal
    pickup_or_drop: str
    service_type: str = "standard"
    zip_code: Optional[str] = None

    @classmethod
    def build(
        cls,
        on: Any,
        estimated_weight_lbs: Any,
        pickup_or_drop: Any,
        service_type: Any = "standard",
        zip_code: Optional[str] = None,
    ) -> "WindowQuery":
        if not on:
            raise ValidationError("Date is required")
        if not isinstance(on, date):
            try:
                on = date.fromisoformat(str(on)[:10])
            except ValueError:
                raise ValidationError("Date is required") from None
        service = str(service_type or "standard").strip().lower()
        if service not in ("standard", "express"):
            raise ValidationError("invalid service type")
        return cls(
            on=on,
            estimated_weight_lbs=parse_weight(estimated_weight_lbs),
            pickup_or_drop=parse_pickup_or_drop(pickup_or_drop),
            service_type=service,
            zip_code=(zip_code or "").strip() or None,
        )


@dataclass(frozen=True)
class PickupLocation:
    label: str
    distance_miles: Optional[Decimal] = None


@dataclass(frozen=True)
class WindowOffer:
    window: TimeWindow
    vehicle: VehicleCapacity
    remaining_lbs: Decimal


@dataclass
class AvailabilityResult:
    query: WindowQuery
    offers: List[WindowOffer] = field(default_factory=list)
    reason: Optional[UnavailableReason] = None
    message: Optional[str] = None
    business_day: Optional[BusinessDay] = None
    location: Optional[PickupLocation] = None
    travel_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        windows = [
            {
                "start": o.window.start.isoformat(),
                "end": o.window.end.isoformat(),
                "display": o.window.display,
                "remaining_capacity_lbs": _lbs(o.remaining_lbs),
                "assigned_vehicle": {
                    "id": o.vehicle.vehicle.id,
                    "name": o.vehicle.vehicle.name,
                    "capacity_lbs": _lbs(o.vehicle.total),
                },
                "estimated_travel_time_minutes": self.travel_minutes,
                "pickup_location": self.location.label if self.location else None,
            }
            for o in self.offers
        ]
        out: Dict[str, Any] = {
            "available_windows": windows,
            "request_details": {
                "date": self.query.on.isoformat(),
                "pickup_or_drop": self.query.pickup_or_drop,
                "estimated_weight_lbs": _lbs(self.query.estimated_weight_lbs),
                "service_type": self.query.service_type,
                "zip_code": self.query.zip_code,
                "distance_miles": str(self.location.distance_miles)
                if self.location and self.location.distance_miles is not None
                else None,
                "pickup_location": self.location.label if self.location else None,
            },
        }
        if self.reason is not None:
            out["reason"] = self.reason.value
            out["message"] = self.message
        if self.business_day is not None:
            out["business_hours"] = {
                "open_time": self.business_day.open_time.strftime("%H:%M"),
                "close_time": self.business_day.close_time.strftime("%H:%M"),
                "is_closed": self.business_day.is_closed,
                "is_holiday": self.business_day.is_holiday,
                "holiday_name": self.business_day.holiday_name,
            }
        return out


class AvailabilityService:
    """Reads vehicles, bookings and calendar overrides to offer booking windows."""

    def __init__(
        self,
        db: Session,
        *,
        postal_client: Optional[PostalClient] = None,
        now: Optional[datetime] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.config = config or default_settings
        self.postal_client = postal_client
        self.now = as_utc(now) if now is not None else datetime.now(timezone.utc)
        self.tz = ZoneInfo(self.config.business_timezone)

    # ------------- Calendar -------------

    @property
    def today(self) -> date:
        return self.now.astimezone(self.tz).date()

    def _override_for(self, on: date) -> Optional[HoursOverride]:
        row = self.db.execute(
            select(AvailabilityOverride).where(AvailabilityOverride.date == on)
        ).scalar_one_or_none()
        if row is None:
            return None
        return HoursOverride(
            is_closed=bool(row.is_closed),
            open_time=row.open_time,
            close_time=row.close_time,
            reason=row.reason,
        )

    def business_day(self, on: date) -> BusinessDay:
        return resolve_business_day(
            on,
            default_open=self.config.default_open_time,
            default_close=self.config.default_close_time,
            override=self._override_for(on),
            country=self.config.holiday_country,
            subdivision=self.config.holiday_subdivision,
        )

    def upcoming_closures(self, days: int = 60) -> List[Dict[str, str]]:
        end = self.today + timedelta(days=days)
        rows = self.db.execute(
            select(AvailabilityOverride).where(
                AvailabilityOverride.date >= self.today, AvailabilityOverride.date < end
            )
        ).scalars().all()
        overrides = {
            r.date: HoursOverride(is_closed=bool(r.is_closed), open_time=r.open_time, close_time=r.close_time, reason=r.reason)
            for r in rows
        }
        return upcoming_closures(
            self.today,
            days=days,
            overrides=overrides,
            country=self.config.holiday_country,
            subdivision=self.config.holiday_subdivision,
        )

    def check_date(self, on: date) -> None:
        if on < self.today:
            raise ValidationError("Cannot book for past dates")
        horizon = self.config.booking_horizon_days
        if on > self.today + timedelta(days=horizon):
            raise ValidationError(f"Cannot book more than {horizon} days in advance")

    def windows_for(self, day: BusinessDay) -> List[TimeWindow]:
        return generate_windows(
            day.on,
            day.open_time,
            day.close_time,
            tz=self.tz,
            window_hours=self.config.booking_window_hours,
            now=self.now,
        )

    def check_offered_window(self, window: TimeWindow) -> BusinessDay:
        """Reject a window the listing for its date would not offer."""
        on = as_utc(window.start).astimezone(self.tz).date()
        self.check_date(on)
        day = self.business_day(on)
        if day.is_closed:
            raise ValidationError(day.closure_message)
        if window not in self.windows_for(day):
            raise ValidationError(
                f"Requested time window is not offered on {on.isoformat()}; "
                f"choose one of the {self.config.booking_window_hours}-hour windows within business hours"
            )
        return day

    # ------------- Service area -------------

    def locate_pickup(self, zip_code: Optional[str]) -> Optional[PickupLocation]:
        """Distance from HQ for a pickup ZIP; unknown ZIPs are allowed without a distance."""
        z = PostalClient.normalise_zip(zip_code or "")
        if not z:
            return None

        lat = lng = None
        label = f"ZIP {z}"
        geo = self.db.get(PostalGeo, z)
        if geo is not None:
            lat, lng = float(geo.latitude), float(geo.longitude)
            if geo.city and geo.state:
                label = f"{geo.city}, {geo.state}"
        elif self.postal_client is not None:
            try:
                found = self.postal_client.lookup(z)
            except TransientError:
                logger.warning("Postal lookup unavailable for %s; skipping distance check", z)
                found = None
            if found is not None:
                lat, lng, label = float(found.latitude), float(found.longitude), found.label

        if lat is None or lng is None:
            logger.info("ZIP %s not geocoded; allowing without distance validation", z)
            return PickupLocation(label=label)

        miles = haversine_miles(self.config.hq_latitude, self.config.hq_longitude, lat, lng)
        return PickupLocation(label=label, distance_miles=miles)

    def out_of_area_message(self, location: PickupLocation) -> str:
        return (
            f"Pickup location in {location.label} ({location.distance_miles:.1f} miles away) is beyond our "
            f"{self.config.service_radius_miles}-mile service radius. Please choose drop-off or contact "
            "support for special arrangements."
        )

    def is_out_of_area(self, location: Optional[PickupLocation]) -> bool:
        return (
            location is not None
            and location.distance_miles is not None
            and location.distance_miles > self.config.service_radius_miles
        )

    def travel_minutes(self, location: Optional[PickupLocation]) -> Optional[int]:
        if location is None or not location.distance_miles:
            return None
        return math.ceil(location.distance_miles * self.config.travel_minutes_per_mile)

    # ------------- Capacity -------------

    def fleet(self) -> List[FleetVehicle]:
        rows = self.db.execute(
            select(Vehicle).where(Vehicle.active.is_(True)).order_by(Vehicle.name)
        ).scalars().all()
        return [FleetVehicle(id=str(v.id), name=v.name, capacity_lbs=Decimal(v.capacity_lbs)) for v in rows]

    def booked_loads(self, start: datetime, end: datetime) -> List[BookedLoad]:
        rows = self.db.execute(
            select(Booking).where(
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                Booking.window_start < as_utc(end),
                Booking.window_end > as_utc(start),
            )
        ).scalars().all()
        return [
            BookedLoad(
                window_start=as_utc(b.window_start),
                window_end=as_utc(b.window_end),
                weight_lbs=Decimal(str(b.estimated_weight or 0)),
                vehicle_id=str(b.assigned_vehicle_id) if b.assigned_vehicle_id else None,
            )
            for b in rows
        ]

    def capacity_ceilings(self, start: datetime, end: datetime) -> List[CapacityCeiling]:
        rows = self.db.execute(
            select(CapacityBlock).where(
                CapacityBlock.window_start < as_utc(end),
                CapacityBlock.window_end > as_utc(start),
            )
        ).scalars().all()
        return [
            CapacityCeiling(as_utc(r.window_start), as_utc(r.window_end), Decimal(r.max_lbs))
            for r in rows
        ]

    @staticmethod
    def offer_for_window(
        window: TimeWindow,
        required_lbs: Decimal,
        vehicles: Sequence[FleetVehicle],
        loads: Sequence[BookedLoad],
        ceilings: Sequence[CapacityCeiling] = (),
    ) -> Optional[WindowOffer]:
        capacity = vehicle_capacity_for_window(vehicles, loads, window)
        choice = best_vehicle(capacity, required_lbs)
        if choice is None:
            return None
        ceiling = fleet_ceiling(ceilings, capacity, window)
        if ceiling is not None and ceiling < required_lbs:
            return None
        remaining = choice.remaining if ceiling is None else min(choice.remaining, ceiling)
        return WindowOffer(window=window, vehicle=choice, remaining_lbs=remaining)

    # ------------- Listing -------------

    def list_windows(self, query: WindowQuery) -> AvailabilityResult:
        self.check_date(query.on)
        logger.info(
            "Availability date=%s weight=%s kind=%s zip=%s",
            query.on, query.estimated_weight_lbs, query.pickup_or_drop, query.zip_code,
        )
        result = AvailabilityResult(query=query)

        day = self.business_day(query.on)
        result.business_day = day
        if day.is_closed:
            result.reason = UnavailableReason.CLOSED
            result.message = day.closure_message
            return result

        if query.pickup_or_drop == "pickup" and query.zip_code:
            location = self.locate_pickup(query.zip_code)
            result.location = location
            if self.is_out_of_area(location):
                result.reason = UnavailableReason.OUT_OF_SERVICE_AREA
                result.message = self.out_of_area_message(location)
                return result
            result.travel_minutes = self.travel_minutes(location)

        windows = self.windows_for(day)
        if not windows:
            result.reason = UnavailableReason.CLOSED
            result.message = "No remaining booking windows for this date"
            return result

        vehicles = self.fleet()
        if not vehicles:
            result.reason = UnavailableReason.NO_CAPACITY
            result.message = "No vehicles available for this service"
            return result

        span_start, span_end = windows[0].start, windows[-1].end
        loads = self.booked_loads(span_start, span_end)
        ceilings = self.capacity_ceilings(span_start, span_end)

        for window in windows:
            offer = self.offer_for_window(window, query.estimated_weight_lbs, vehicles, loads, ceilings)
            if offer is not None:
                result.offers.append(offer)

        if not result.offers:
            result.reason = UnavailableReason.NO_CAPACITY
            result.message = (
                f"No vehicle with sufficient capacity ({_lbs(query.estimated_weight_lbs)} lbs) "
                "available on this date"
            )
        logger.info("Availability date=%s windows=%d", query.on, len(result.offers))
        return result
