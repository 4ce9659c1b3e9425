from __future__ import annotations

import random
import re
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from aircargo_portal.errors import NotFoundError, ValidationError
from aircargo_portal.services.shipments import (
    create_shipment,
    generate_tracking_number,
    get_shipment,
    list_shipments,
    shipment_to_dict,
    update_shipment_status,
)

NOW = datetime(2025, 3, 4, 17, 0, tzinfo=timezone.utc)
CUSTOMER = uuid.UUID("11111111-2222-3333-4444-555555555555")
OTHER = uuid.UUID("99999999-8888-7777-6666-555555555555")


@pytest.fixture
def payload(dest_id):
    def _make(**overrides):
        data = {
            "destination_id": dest_id("KIN"),
            "service_type": "standard",
            "special_instructions": "Call on arrival",
            "items": [
                {"description": "Barrel of groceries", "weight_lbs": "60", "quantity": 2, "declared_value": "150"},
                {"description": "Laptop", "weight_lbs": "6.5", "declared_value": "900", "category": "electronics"},
            ],
        }
        data.update(overrides)
        return data

    return _make


def test_tracking_number_format():
    number = generate_tracking_number(now=NOW, rng=random.Random(3))
    millis = int(NOW.timestamp() * 1000)
    assert number.startswith(f"QCS{millis}")
    assert re.fullmatch(r"QCS\d{13}[A-Z0-9]{3}", number)


def test_create_totals_weight_by_quantity(db, payload):
    shipment = create_shipment(db, CUSTOMER, payload(), now=NOW)
    assert shipment.status == "pending_pickup"
    assert shipment.total_weight == Decimal("126.50")
    assert shipment.total_declared_value == Decimal("1200.00")
    assert len(shipment.items) == 2
    assert shipment.items[1].quantity == 1
    assert shipment.items[1].category == "electronics"


def test_create_records_initial_tracking_event(db, payload):
    shipment = create_shipment(db, CUSTOMER, payload(), now=NOW)
    events = shipment.tracking_events
    assert [(e.status, e.notes) for e in events] == [("pending_pickup", "Shipment created")]


@pytest.mark.parametrize(
    "items,message",
    [
        ([], "At least one item is required"),
        ([{"description": "", "weight_lbs": 1}], "Item 1: description is required"),
        ([{"description": "Box", "weight_lbs": 1}, {"description": "Box", "weight_lbs": 0}], "Item 2: weight must be greater than 0"),
        ([{"description": "Box", "weight_lbs": 1, "quantity": 0}], "Item 1: quantity must be at least 1"),
        ([{"description": "Box", "weight_lbs": 1, "quantity": "many"}], "Item 1: quantity must be at least 1"),
        ([{"description": "Box", "weight_lbs": 1, "quantity": 1.9}], "Item 1: quantity must be a whole number"),
        ([{"description": "Box", "weight_lbs": 1, "quantity": "2.5"}], "Item 1: quantity must be a whole number"),
        ([{"description": "Box", "weight_lbs": 1, "length_inches": "-2"}], "Item 1: invalid dimensions"),
    ],
)
def test_item_validation(db, payload, items, message):
    with pytest.raises(ValidationError, match=message):
        create_shipment(db, CUSTOMER, payload(items=items), now=NOW)


def test_inactive_destination_is_rejected(db, payload, dest_id):
    with pytest.raises(NotFoundError):
        create_shipment(db, CUSTOMER, payload(destination_id=dest_id("NAS")), now=NOW)


def test_bad_service_type(db, payload):
    with pytest.raises(ValidationError, match="invalid service type"):
        create_shipment(db, CUSTOMER, payload(service_type="overnight"), now=NOW)


def test_list_and_get_are_scoped_to_the_customer(db, payload):
    first = create_shipment(db, CUSTOMER, payload(), now=NOW)
    second = create_shipment(db, CUSTOMER, payload(), now=NOW + timedelta(minutes=5))
    create_shipment(db, OTHER, payload(), now=NOW)

    assert [s.id for s in list_shipments(db, CUSTOMER)] == [second.id, first.id]
    assert get_shipment(db, CUSTOMER, first.id).id == first.id
    with pytest.raises(NotFoundError, match="Shipment not found"):
        get_shipment(db, OTHER, first.id)
    with pytest.raises(NotFoundError):
        get_shipment(db, CUSTOMER, "abc")


def test_status_update_appends_event(db, payload):
    shipment = create_shipment(db, CUSTOMER, payload(), now=NOW)
    later = NOW + timedelta(hours=3)
    updated = update_shipment_status(
        db, shipment.id, "in_transit", customer_id=CUSTOMER, location="EWR", notes="Departed", now=later
    )
    assert updated.status == "in_transit"
    assert [e.status for e in updated.tracking_events] == ["pending_pickup", "in_transit"]
    assert updated.tracking_events[-1].location == "EWR"


def test_invalid_status_is_rejected(db, payload):
    shipment = create_shipment(db, CUSTOMER, payload(), now=NOW)
    with pytest.raises(ValidationError, match="Invalid status. Must be one of: pending_pickup"):
        update_shipment_status(db, shipment.id, "lost", customer_id=CUSTOMER)


def test_status_update_for_missing_shipment(db):
    with pytest.raises(NotFoundError):
        update_shipment_status(db, 4242, "delivered", customer_id=None)


def test_other_customers_cannot_update_status(db, payload):
    shipment = create_shipment(db, CUSTOMER, payload(), now=NOW)
    with pytest.raises(NotFoundError, match="Shipment not found"):
        update_shipment_status(db, shipment.id, "delivered", customer_id=OTHER)
    db.refresh(shipment)
    assert shipment.status == "pending_pickup"
    assert len(shipment.tracking_events) == 1


def test_staff_update_reaches_any_shipment(db, payload):
    shipment = create_shipment(db, CUSTOMER, payload(), now=NOW)
    updated = update_shipment_status(db, shipment.id, "delivered", customer_id=None, now=NOW)
    assert updated.status == "delivered"


def test_to_dict_hides_internal_tracking_events(db, payload):
    shipment = create_shipment(db, CUSTOMER, payload(), now=NOW)
    update_shipment_status(db, shipment.id, "processing", customer_id=None, notes="Re-weighed", customer_visible=False, now=NOW)
    update_shipment_status(db, shipment.id, "in_transit", customer_id=CUSTOMER, now=NOW + timedelta(hours=1))

    data = shipment_to_dict(shipment, include_items=True)
    assert [e["status"] for e in data["tracking"]] == ["pending_pickup", "in_transit"]
    assert data["total_weight"] == "126.50"
    assert [i["description"] for i in data["items"]] == ["Barrel of groceries", "Laptop"]
    assert data["tracking_number"].startswith("QCS")

    summary = shipment_to_dict(shipment)
    assert "items" not in summary and "tracking" not in summary
