from __future__ import annotations

import math
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select, update

from aircargo_portal.clients.postal_client import PostalLocation
from aircargo_portal.errors import TransientError, ValidationError
from aircargo_portal.models import AvailabilityOverride, Booking, CapacityBlock, Vehicle
from aircargo_portal.services.availability import AvailabilityService, UnavailableReason, WindowQuery

# Tuesday 2025-03-04, noon in New York
NOW = datetime(2025, 3, 4, 17, 0, tzinfo=timezone.utc)
WEDNESDAY = date(2025, 3, 5)


def _svc(db, **kw) -> AvailabilityService:
    return AvailabilityService(db, now=kw.pop("now", NOW), **kw)


def _query(on=WEDNESDAY, weight="150", kind="dropoff", zip_code=None) -> WindowQuery:
    return WindowQuery.build(on, weight, kind, "standard", zip_code)


def _vehicle(db, name: str) -> Vehicle:
    return db.execute(select(Vehicle).where(Vehicle.name == name)).scalar_one()


def test_open_weekday_offers_every_window_on_the_largest_vehicle(db):
    result = _svc(db).list_windows(_query())
    assert result.reason is None
    assert len(result.offers) == 8
    assert {o.vehicle.vehicle.name for o in result.offers} == {"QCS Truck 3"}
    assert all(o.remaining_lbs == Decimal("2500") for o in result.offers)
    assert result.offers[0].window.display == "8 AM - 10 AM"


def test_weekend_is_closed(db):
    result = _svc(db).list_windows(_query(on=date(2025, 3, 8)))
    assert result.reason is UnavailableReason.CLOSED
    assert result.message == "Closed on Saturday"
    assert result.offers == []


def test_override_closure(db):
    db.add(AvailabilityOverride(date=WEDNESDAY, is_closed=True, reason="Inventory"))
    db.commit()
    result = _svc(db).list_windows(_query())
    assert result.reason is UnavailableReason.CLOSED
    assert result.message == "Closed for Inventory"


def test_override_short_day(db):
    db.add(AvailabilityOverride(date=WEDNESDAY, open_time=time(10, 0), close_time=time(13, 0)))
    db.commit()
    result = _svc(db).list_windows(_query())
    assert [o.window.display for o in result.offers] == ["10 AM - 12 PM", "11 AM - 1 PM"]


def test_no_windows_left_today(db):
    late = datetime(2025, 3, 5, 21, 0, tzinfo=timezone.utc)  # 4 PM local
    result = _svc(db, now=late).list_windows(_query())
    assert result.reason is UnavailableReason.CLOSED
    assert "No remaining booking windows" in result.message


@pytest.mark.parametrize(
    "on,message",
    [
        (date(2025, 3, 3), "Cannot book for past dates"),
        (date(2025, 4, 10), "Cannot book more than 30 days in advance"),
    ],
)
def test_date_must_be_within_horizon(db, on, message):
    with pytest.raises(ValidationError, match=message):
        _svc(db).list_windows(_query(on=on))


def test_pickup_outside_radius(db):
    result = _svc(db).list_windows(_query(kind="pickup", zip_code="08701"))
    assert result.reason is UnavailableReason.OUT_OF_SERVICE_AREA
    assert "Lakewood, NJ" in result.message
    assert "25-mile service radius" in result.message


def test_pickup_inside_radius_reports_travel_time(db):
    result = _svc(db).list_windows(_query(kind="pickup", zip_code="07030"))
    assert result.reason is None
    assert result.location.label == "Hoboken, NJ"
    assert result.travel_minutes == math.ceil(result.location.distance_miles * Decimal("2.5"))
    window = result.to_dict()["available_windows"][0]
    assert window["pickup_location"] == "Hoboken, NJ"
    assert window["estimated_travel_time_minutes"] == result.travel_minutes


def test_unknown_zip_is_allowed_without_distance(db):
    result = _svc(db).list_windows(_query(kind="pickup", zip_code="99999"))
    assert result.reason is None
    assert result.location.distance_miles is None
    assert result.travel_minutes is None


def test_postal_client_fills_in_missing_zip(db):
    postal = MagicMock()
    postal.lookup.return_value = PostalLocation(
        zip_code="19103", city="Philadelphia", state="PA", latitude=Decimal("39.9526"), longitude=Decimal("-75.1652")
    )
    result = _svc(db, postal_client=postal).list_windows(_query(kind="pickup", zip_code="19103"))
    postal.lookup.assert_called_once_with("19103")
    assert result.reason is UnavailableReason.OUT_OF_SERVICE_AREA
    assert "Philadelphia, PA" in result.message


def test_postal_outage_does_not_block_booking(db):
    postal = MagicMock()
    postal.lookup.side_effect = TransientError("down")
    result = _svc(db, postal_client=postal).list_windows(_query(kind="pickup", zip_code="19103"))
    assert result.reason is None
    assert result.offers


def test_dropoff_skips_the_radius_check(db):
    result = _svc(db).list_windows(_query(kind="dropoff", zip_code="08701"))
    assert result.reason is None


def test_overweight_request_has_no_capacity(db):
    result = _svc(db).list_windows(_query(weight="3000"))
    assert result.reason is UnavailableReason.NO_CAPACITY
    assert "3000.00 lbs" in result.message


def test_no_active_vehicles(db):
    db.execute(update(Vehicle).values(active=False))
    db.commit()
    result = _svc(db).list_windows(_query())
    assert result.reason is UnavailableReason.NO_CAPACITY


def test_existing_bookings_reduce_capacity(db):
    truck3 = _vehicle(db, "QCS Truck 3")
    db.add(
        Booking(
            customer_id=uuid.uuid4(),
            pickup_or_drop="dropoff",
            window_start=datetime(2025, 3, 5, 13, 0, tzinfo=timezone.utc),
            window_end=datetime(2025, 3, 5, 15, 0, tzinfo=timezone.utc),
            address={"line1": "1 Main St"},
            status="confirmed",
            estimated_weight=Decimal("2400"),
            assigned_vehicle_id=truck3.id,
            idempotency_key="seeded-1",
        )
    )
    db.commit()
    result = _svc(db).list_windows(_query())
    first, second = result.offers[0], result.offers[1]
    # 8-10 AM fully overlaps the booking; 9-11 AM overlaps half of it
    assert first.vehicle.vehicle.name == "QCS Truck 1"
    assert first.remaining_lbs == Decimal("2000")
    assert second.vehicle.vehicle.name == "QCS Truck 1"
    assert result.offers[2].vehicle.vehicle.name == "QCS Truck 3"


def test_cancelled_bookings_do_not_count(db):
    truck3 = _vehicle(db, "QCS Truck 3")
    db.add(
        Booking(
            customer_id=uuid.uuid4(),
            pickup_or_drop="dropoff",
            window_start=datetime(2025, 3, 5, 13, 0, tzinfo=timezone.utc),
            window_end=datetime(2025, 3, 5, 15, 0, tzinfo=timezone.utc),
            address={"line1": "1 Main St"},
            status="cancelled",
            estimated_weight=Decimal("2400"),
            assigned_vehicle_id=truck3.id,
            idempotency_key="seeded-2",
        )
    )
    db.commit()
    result = _svc(db).list_windows(_query())
    assert result.offers[0].vehicle.vehicle.name == "QCS Truck 3"


def test_capacity_block_caps_overlapping_windows(db):
    db.add(
        CapacityBlock(
            window_start=datetime(2025, 3, 5, 13, 0, tzinfo=timezone.utc),
            window_end=datetime(2025, 3, 5, 15, 0, tzinfo=timezone.utc),
            max_lbs=100,
            note="Truck maintenance",
        )
    )
    db.commit()
    result = _svc(db).list_windows(_query(weight="150"))
    displays = [o.window.display for o in result.offers]
    assert "8 AM - 10 AM" not in displays
    assert "9 AM - 11 AM" not in displays
    assert len(displays) == 6

    light = _svc(db).list_windows(_query(weight="50"))
    assert light.offers[0].remaining_lbs == Decimal("100")


def test_to_dict_shape(db):
    data = _svc(db).list_windows(_query()).to_dict()
    window = data["available_windows"][0]
    assert set(window) >= {"start", "end", "display", "remaining_capacity_lbs", "assigned_vehicle"}
    assert window["remaining_capacity_lbs"] == "2500.00"
    assert window["assigned_vehicle"]["name"] == "QCS Truck 3"
    assert data["request_details"]["date"] == "2025-03-05"
    assert data["business_hours"] == {
        "open_time": "08:00",
        "close_time": "17:00",
        "is_closed": False,
        "is_holiday": False,
        "holiday_name": None,
    }
    assert "reason" not in data


@pytest.mark.parametrize(
    "args,message",
    [
        ((None, "10", "pickup"), "Date is required"),
        (("not-a-date", "10", "pickup"), "Date is required"),
        ((WEDNESDAY, "0", "pickup"), "Valid estimated weight is required"),
        ((WEDNESDAY, "ten", "pickup"), "Valid estimated weight is required"),
        ((WEDNESDAY, "10", "deliver"), "pickup_or_drop"),
    ],
)
def test_window_query_validation(args, message):
    with pytest.raises(ValidationError, match=message):
        WindowQuery.build(*args)
