from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from aircargo_portal.errors import NotFoundError, ValidationError
from aircargo_portal.rules.rate_calculator import (
    DestinationRates,
    Dimensions,
    ServiceType,
    calculate,
    dimensional_weight,
    express_transit_window,
    insurance_cost,
    select_rate_per_lb,
)
from aircargo_portal.services.rates import calculate_for_destination


def _georgetown(**overrides) -> DestinationRates:
    fields = dict(
        id=2,
        country_name="Guyana",
        city_name="Georgetown",
        airport_code="GEO",
        rate_per_lb_1_50=Decimal("4.50"),
        rate_per_lb_51_100=Decimal("4.25"),
        rate_per_lb_101_200=Decimal("4.00"),
        rate_per_lb_201_plus=Decimal("3.50"),
        express_surcharge_percent=Decimal("25.00"),
        transit_days_min=3,
        transit_days_max=5,
    )
    fields.update(overrides)
    return DestinationRates(**fields)


def test_rates_page_worked_example():
    result = calculate(5, None, _georgetown(), "standard", 200)
    b = result.breakdown
    assert result.billable_weight == Decimal("5")
    assert b.base_shipping_cost == Decimal("22.50")
    assert b.insurance_cost == Decimal("15.00")
    assert b.handling_fee == Decimal("0.00")
    assert b.express_surcharge == Decimal("0.00")
    assert b.total_cost == Decimal("37.50")


@pytest.mark.parametrize(
    "billable,expected",
    [
        ("1", "4.50"),
        ("50", "4.50"),
        ("50.01", "4.25"),
        ("100", "4.25"),
        ("100.5", "4.00"),
        ("200", "4.00"),
        ("200.01", "3.50"),
        ("1500", "3.50"),
    ],
)
def test_tier_boundaries_are_inclusive(billable, expected):
    assert select_rate_per_lb(_georgetown(), Decimal(billable)) == Decimal(expected)


@pytest.mark.parametrize("weight", [201, 250, "999.9"])
def test_heavy_shipments_use_the_top_tier_for_the_whole_weight(weight):
    result = calculate(weight, None, _georgetown())
    assert result.breakdown.rate_per_lb == Decimal("3.50")
    expected = (Decimal(str(weight)) * Decimal("3.50")).quantize(Decimal("0.01"))
    assert result.breakdown.base_shipping_cost == expected


def test_two_hundred_and_two_hundred_one_pounds_price_flat_per_tier():
    at_200 = calculate(200, None, _georgetown()).breakdown.base_shipping_cost
    at_201 = calculate(201, None, _georgetown()).breakdown.base_shipping_cost
    assert at_200 == Decimal("800.00")
    assert at_201 == Decimal("703.50")
    assert at_201 < at_200


def test_dimensional_weight_drives_billable_weight():
    result = calculate(5, {"length": 20, "width": 20, "height": 20}, _georgetown())
    assert result.dimensional_weight == Decimal("8000") / Decimal("166")
    assert result.billable_weight == result.dimensional_weight
    assert result.breakdown.base_shipping_cost == Decimal("216.87")


@pytest.mark.parametrize(
    "dims",
    [
        None,
        {},
        {"length": 0, "width": 0, "height": 0},
        {"length": 10, "width": 10},
        {"length": 10, "width": 0, "height": 10},
    ],
)
def test_incomplete_dimensions_fall_back_to_actual_weight(dims):
    result = calculate(5, dims, _georgetown())
    assert result.dimensional_weight is None
    assert result.billable_weight == Decimal("5")


def test_dimensional_weight_helper():
    assert dimensional_weight(Dimensions(Decimal("166"), Decimal("1"), Decimal("1"))) == Decimal("1")
    assert dimensional_weight(None) is None


def test_billable_never_below_actual():
    result = calculate(30, {"length": 1, "width": 1, "height": 1}, _georgetown())
    assert result.billable_weight == Decimal("30")
    assert result.billable_weight >= result.actual_weight


def test_express_surcharge_is_itemized_and_folded_into_base():
    result = calculate(10, None, _georgetown(), "express")
    b = result.breakdown
    assert result.service_type is ServiceType.EXPRESS
    assert b.express_surcharge == Decimal("11.25")
    assert b.base_shipping_cost == Decimal("56.25")
    assert b.total_cost == Decimal("56.25")


def test_standard_has_no_express_surcharge():
    result = calculate(10, None, _georgetown(express_surcharge_percent=Decimal("40")), "standard")
    assert result.breakdown.express_surcharge == Decimal("0.00")
    assert result.breakdown.base_shipping_cost == Decimal("45.00")


@pytest.mark.parametrize("weight", ["0.5", "12", "75", "150", "200", "201", "1000"])
@pytest.mark.parametrize("declared", [None, "50", "2500"])
def test_express_total_never_below_standard(weight, declared):
    dest = _georgetown()
    standard = calculate(weight, None, dest, "standard", declared)
    express = calculate(weight, None, dest, "express", declared)
    assert express.breakdown.total_cost >= standard.breakdown.total_cost
    assert standard.breakdown.total_cost >= standard.breakdown.base_shipping_cost


@pytest.mark.parametrize(
    "declared,expected",
    [
        ("0", "0.00"),
        ("100", "0.00"),
        ("100.01", "15.00"),
        ("200", "15.00"),
        ("300", "15.00"),
        ("400", "22.50"),
        ("1100", "75.00"),
    ],
)
def test_insurance_schedule(declared, expected):
    assert insurance_cost(Decimal(declared)) == Decimal(expected)


def test_special_handling_and_consolidation_fees_add_to_total():
    result = calculate(10, None, _georgetown(), special_handling=True, consolidation_fee="5")
    b = result.breakdown
    assert b.handling_fee == Decimal("20.00")
    assert b.consolidation_fee == Decimal("5.00")
    assert b.total_cost == Decimal("70.00")


def test_identical_inputs_give_identical_output():
    dest = _georgetown()
    first = calculate("12.5", {"length": 10, "width": 12, "height": 14}, dest, "express", "350")
    second = calculate("12.5", {"length": 10, "width": 12, "height": 14}, dest, "express", "350")
    assert first == second
    assert first.to_dict() == second.to_dict()


@pytest.mark.parametrize("weight", [0, -1, "-0.01", "nan", float("nan"), float("inf"), None, True, "abc", ""])
def test_invalid_weight_is_rejected(weight):
    with pytest.raises(ValidationError, match="invalid weight"):
        calculate(weight, None, _georgetown())


def test_negative_dimension_is_rejected():
    with pytest.raises(ValidationError, match="invalid dimensions"):
        calculate(5, {"length": -1, "width": 2, "height": 2}, _georgetown())


@pytest.mark.parametrize("declared", ["-1", "lots"])
def test_invalid_declared_value_is_rejected(declared):
    with pytest.raises(ValidationError, match="invalid declared value"):
        calculate(5, None, _georgetown(), declared_value=declared)


def test_negative_consolidation_fee_is_rejected():
    with pytest.raises(ValidationError, match="invalid consolidation fee"):
        calculate(5, None, _georgetown(), consolidation_fee="-3")


def test_unknown_service_type_is_rejected():
    with pytest.raises(ValidationError, match="invalid service type"):
        calculate(5, None, _georgetown(), "overnight")


@pytest.mark.parametrize("destination", [None, _georgetown(is_active=False)])
def test_missing_or_inactive_destination_is_rejected(destination):
    with pytest.raises(ValidationError, match="unknown destination"):
        calculate(5, None, destination)


@pytest.mark.parametrize(
    "standard,express",
    [
        ((3, 5), (2, 4)),
        ((4, 6), (3, 5)),
        ((1, 1), (1, 1)),
        ((2, 2), (2, 2)),
        ((1, 2), (1, 2)),
        ((1, 3), (1, 2)),
        ((2, 3), (1, 2)),
        ((5, 5), (4, 4)),
    ],
)
def test_express_transit_window(standard, express):
    window = express_transit_window(*standard)
    assert (window.min_days, window.max_days) == express


def test_express_transit_never_wider_or_slower_than_standard():
    for lo in range(1, 11):
        for hi in range(lo, 13):
            fast = express_transit_window(lo, hi)
            assert fast.min_days >= 1
            assert fast.min_days <= fast.max_days <= hi
            assert fast.max_days - fast.min_days <= hi - lo


def test_transit_label_and_average():
    standard = calculate(5, None, _georgetown()).transit
    assert standard.label == "3-5 business days"
    assert standard.average_days == 4

    odd = calculate(5, None, _georgetown(transit_days_min=4, transit_days_max=5)).transit
    assert odd.average_days == 5


def test_to_dict_shape():
    data = calculate(5, None, _georgetown(), "standard", 200).to_dict()
    assert data["destination"] == {"id": 2, "country": "Guyana", "city": "Georgetown", "airportCode": "GEO"}
    assert data["weight"] == {"actual": 5.0, "dimensional": None, "billable": 5.0}
    assert data["serviceType"] == "standard"
    assert data["rateBreakdown"] == {
        "ratePerLb": 4.5,
        "baseShippingCost": 22.5,
        "expressSurcharge": 0.0,
        "consolidationFee": 0.0,
        "handlingFee": 0.0,
        "insuranceCost": 15.0,
        "totalCost": 37.5,
    }
    assert data["transitTime"] == {"min": 3, "max": 5, "estimate": "3-5 business days"}
    assert data["declaredValue"] == 200.0


@pytest.mark.parametrize("weight", [0, -4, "nan"])
def test_weight_is_validated_before_destination_lookup(weight):
    db = MagicMock()
    with pytest.raises(ValidationError, match="invalid weight"):
        calculate_for_destination(db, weight=weight, destination_id=1)
    db.get.assert_not_called()
    db.execute.assert_not_called()


def test_service_prices_against_the_catalog(db, dest_id):
    result = calculate_for_destination(db, weight=5, destination_id=dest_id("GEO"), declared_value=200)
    assert result.breakdown.total_cost == Decimal("37.50")


@pytest.mark.parametrize("destination_id", [None, "abc", 9999])
def test_service_unknown_destination(db, destination_id):
    with pytest.raises(NotFoundError, match="please select a destination"):
        calculate_for_destination(db, weight=5, destination_id=destination_id)


def test_service_inactive_destination(db, dest_id):
    with pytest.raises(NotFoundError):
        calculate_for_destination(db, weight=5, destination_id=dest_id("NAS"))
