"""Pickup/drop-off window generation and per-vehicle capacity arithmetic."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

__all__ = [
    "BookedLoad",
    "CapacityCeiling",
    "FleetVehicle",
    "TimeWindow",
    "VehicleCapacity",
    "as_utc",
    "best_vehicle",
    "fleet_ceiling",
    "generate_windows",
    "haversine_miles",
    "overlap_weight",
    "vehicle_capacity_for_window",
]

_EARTH_RADIUS_MILES = 3958.8


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC (SQLite drops tzinfo on readback)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _hour_label(dt: datetime) -> str:
    return dt.strftime("%I %p").lstrip("0")


@dataclass(frozen=True)
class TimeWindow:
    start: datetime  # tz-aware
    end: datetime

    @property
    def display(self) -> str:
        return f"{_hour_label(self.start)} - {_hour_label(self.end)}"

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return as_utc(start) < as_utc(self.end) and as_utc(end) > as_utc(self.start)


@dataclass(frozen=True)
class FleetVehicle:
    id: str
    name: str
    capacity_lbs: Decimal


@dataclass(frozen=True)
class BookedLoad:
    window_start: datetime
    window_end: datetime
    weight_lbs: Decimal
    vehicle_id: Optional[str]


@dataclass(frozen=True)
class CapacityCeiling:
    window_start: datetime
    window_end: datetime
    max_lbs: Decimal


@dataclass
class VehicleCapacity:
    vehicle: FleetVehicle
    used: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.vehicle.capacity_lbs

    @property
    def remaining(self) -> Decimal:
        return self.total - self.used


def generate_windows(
    on: date,
    open_time: time,
    close_time: time,
    *,
    tz: ZoneInfo,
    window_hours: int = 2,
    now: Optional[datetime] = None,
) -> List[TimeWindow]:
    """Windows of ``window_hours`` starting on every hour between open and close.

    Windows that have already started (relative to ``now``) are skipped.
    """
    windows: List[TimeWindow] = []
    hour = open_time.hour
    while hour + window_hours <= close_time.hour:
        start = datetime.combine(on, time(hour, 0), tzinfo=tz)
        end = start + timedelta(hours=window_hours)
        if now is None or start > as_utc(now):
            windows.append(TimeWindow(start=start, end=end))
        hour += 1
    return windows


def overlap_weight(load: BookedLoad, window: TimeWindow) -> Decimal:
    """Share of a booking's weight proportional to its time overlap with ``window``."""
    b_start, b_end = as_utc(load.window_start), as_utc(load.window_end)
    w_start, w_end = as_utc(window.start), as_utc(window.end)
    overlap_start = max(b_start, w_start)
    overlap_end = min(b_end, w_end)
    if overlap_start >= overlap_end:
        return Decimal("0")
    booking_seconds = Decimal(str((b_end - b_start).total_seconds()))
    overlap_seconds = Decimal(str((overlap_end - overlap_start).total_seconds()))
    return load.weight_lbs * overlap_seconds / booking_seconds


def vehicle_capacity_for_window(
    vehicles: Sequence[FleetVehicle],
    loads: Iterable[BookedLoad],
    window: TimeWindow,
) -> Dict[str, VehicleCapacity]:
    capacity = {v.id: VehicleCapacity(vehicle=v) for v in vehicles}
    for load in loads:
        if load.vehicle_id and load.vehicle_id in capacity:
            capacity[load.vehicle_id].used += overlap_weight(load, window)
    return capacity


def fleet_ceiling(
    ceilings: Iterable[CapacityCeiling],
    capacity: Dict[str, VehicleCapacity],
    window: TimeWindow,
) -> Optional[Decimal]:
    """Remaining fleet-wide allowance under the tightest overlapping capacity block."""
    limits = [c.max_lbs for c in ceilings if window.overlaps(c.window_start, c.window_end)]
    if not limits:
        return None
    used = sum((c.used for c in capacity.values()), Decimal("0"))
    return max(Decimal("0"), min(limits) - used)


def best_vehicle(
    capacity: Dict[str, VehicleCapacity],
    required_lbs: Decimal,
) -> Optional[VehicleCapacity]:
    """Vehicle with the most remaining capacity that still fits ``required_lbs``."""
    fits = [c for c in capacity.values() if c.remaining >= required_lbs]
    if not fits:
        return None
    return sorted(fits, key=lambda c: (-c.remaining, c.vehicle.name))[0]


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> Decimal:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    miles = 2 * _EARTH_RADIUS_MILES * math.asin(math.sqrt(a))
    return Decimal(str(round(miles, 2)))
