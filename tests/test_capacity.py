from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from aircargo_portal.rules.capacity import (
    BookedLoad,
    CapacityCeiling,
    FleetVehicle,
    TimeWindow,
    as_utc,
    best_vehicle,
    fleet_ceiling,
    generate_windows,
    haversine_miles,
    overlap_weight,
    vehicle_capacity_for_window,
)

NY = ZoneInfo("America/New_York")
UTC = timezone.utc


def _utc(h: int, m: int = 0) -> datetime:
    return datetime(2025, 3, 5, h, m, tzinfo=UTC)


def _window(h1: int, h2: int) -> TimeWindow:
    return TimeWindow(_utc(h1), _utc(h2))


TRUCK = FleetVehicle(id="t1", name="QCS Truck 1", capacity_lbs=Decimal("2000"))
VAN = FleetVehicle(id="v1", name="QCS Van 1", capacity_lbs=Decimal("800"))


def test_windows_start_every_hour_and_fit_before_close():
    windows = generate_windows(date(2025, 3, 5), time(8), time(17), tz=NY)
    assert len(windows) == 8
    assert windows[0].start == datetime(2025, 3, 5, 8, tzinfo=NY)
    assert windows[-1].end == datetime(2025, 3, 5, 17, tzinfo=NY)
    assert windows[0].display == "8 AM - 10 AM"
    assert windows[-1].display == "3 PM - 5 PM"


def test_windows_already_started_are_skipped():
    now = datetime(2025, 3, 5, 11, 30, tzinfo=NY)
    windows = generate_windows(date(2025, 3, 5), time(8), time(17), tz=NY, now=now)
    assert windows[0].start == datetime(2025, 3, 5, 12, tzinfo=NY)
    assert len(windows) == 4


def test_no_windows_when_day_is_shorter_than_a_window():
    assert generate_windows(date(2025, 3, 5), time(9), time(10), tz=NY) == []


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2025, 3, 5, 13, 0)
    assert as_utc(naive) == _utc(13)
    assert as_utc(datetime(2025, 3, 5, 8, tzinfo=NY)).hour == 13


@pytest.mark.parametrize(
    "start,end,expected",
    [
        (13, 15, "100"),  # identical window
        (14, 16, "50"),  # half overlaps
        (12, 16, "50"),  # 2 of 4 hours overlap
        (15, 17, "0"),  # touches the end only
        (9, 11, "0"),
    ],
)
def test_overlap_weight_is_time_proportional(start, end, expected):
    load = BookedLoad(_utc(start), _utc(end), Decimal("100"), "t1")
    assert overlap_weight(load, _window(13, 15)) == Decimal(expected)


def test_vehicle_capacity_ignores_unassigned_and_unknown_vehicles():
    loads = [
        BookedLoad(_utc(13), _utc(15), Decimal("300"), "t1"),
        BookedLoad(_utc(13), _utc(15), Decimal("999"), None),
        BookedLoad(_utc(13), _utc(15), Decimal("999"), "retired"),
    ]
    capacity = vehicle_capacity_for_window([TRUCK, VAN], loads, _window(13, 15))
    assert capacity["t1"].remaining == Decimal("1700")
    assert capacity["v1"].remaining == Decimal("800")


def test_best_vehicle_prefers_most_remaining_capacity():
    capacity = vehicle_capacity_for_window([TRUCK, VAN], [], _window(13, 15))
    assert best_vehicle(capacity, Decimal("100")).vehicle is TRUCK


def test_best_vehicle_skips_vehicles_that_cannot_fit():
    loads = [BookedLoad(_utc(13), _utc(15), Decimal("1900"), "t1")]
    capacity = vehicle_capacity_for_window([TRUCK, VAN], loads, _window(13, 15))
    assert best_vehicle(capacity, Decimal("500")).vehicle is VAN
    assert best_vehicle(capacity, Decimal("900")) is None


def test_best_vehicle_breaks_ties_by_name():
    twin = FleetVehicle(id="t0", name="QCS Truck 0", capacity_lbs=Decimal("2000"))
    capacity = vehicle_capacity_for_window([TRUCK, twin], [], _window(13, 15))
    assert best_vehicle(capacity, Decimal("10")).vehicle is twin


def test_fleet_ceiling_caps_remaining_capacity():
    loads = [BookedLoad(_utc(13), _utc(15), Decimal("300"), "t1")]
    capacity = vehicle_capacity_for_window([TRUCK, VAN], loads, _window(13, 15))
    ceilings = [
        CapacityCeiling(_utc(12), _utc(18), Decimal("1000")),
        CapacityCeiling(_utc(14), _utc(16), Decimal("500")),
        CapacityCeiling(_utc(20), _utc(22), Decimal("10")),
    ]
    assert fleet_ceiling(ceilings, capacity, _window(13, 15)) == Decimal("200")
    assert fleet_ceiling([], capacity, _window(13, 15)) is None


def test_haversine_distance_from_kearny():
    hoboken = haversine_miles(40.7684, -74.1454, 40.7439, -74.0324)
    lakewood = haversine_miles(40.7684, -74.1454, 40.0979, -74.2177)
    assert Decimal("5") < hoboken < Decimal("7")
    assert lakewood > Decimal("40")
    assert haversine_miles(40.7684, -74.1454, 40.7684, -74.1454) == Decimal("0.0")
