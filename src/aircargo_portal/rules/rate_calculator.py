"""Air-cargo rate calculation.

Pricing model:

  - dimensional weight is L × W × H / 166 (inches, imperial divisor) and is
    only considered when all three dimensions are present and positive;
  - billable weight is the greater of actual and dimensional weight;
  - the per-pound rate comes from the destination's four-tier schedule with
    inclusive upper bounds at 50, 100 and 200 lbs.  The selected tier rate is
    applied to the *entire* billable weight (flat-per-tier, not marginal), so
    200 lbs and 201 lbs can price very differently;
  - express adds ``express_surcharge_percent`` of the base cost, folded into
    the base shipping cost and also itemized;
  - the first $100 of declared value is covered free; above that insurance is
    $7.50 per $100 of excess value with a $15.00 minimum.

Everything here is pure: no I/O, no clock, no shared state.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import ValidationError

__all__ = [
    "DIM_DIVISOR",
    "CalculatedRate",
    "DestinationRates",
    "Dimensions",
    "RateBreakdown",
    "ServiceType",
    "TransitEstimate",
    "calculate",
    "dimensional_weight",
    "express_transit_window",
    "insurance_cost",
    "select_rate_per_lb",
    "validate_rate_inputs",
]

DIM_DIVISOR = Decimal("166")

TIER_1_MAX = Decimal("50")
TIER_2_MAX = Decimal("100")
TIER_3_MAX = Decimal("200")

FREE_COVERAGE = Decimal("100")
INSURANCE_RATE = Decimal("0.075")  # $7.50 per $100
INSURANCE_MINIMUM = Decimal("15.00")

SPECIAL_HANDLING_FEE = Decimal("20.00")

_ZERO = Decimal("0")


def _money(x: Decimal | int | float | str) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _number(x: Optional[Decimal]) -> Optional[float]:
    return float(_money(x)) if x is not None else None


def _to_decimal(value: Any, message: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(message)
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(message)
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(message) from None
    if not dec.is_finite():
        raise ValidationError(message)
    return dec


class ServiceType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"

    @classmethod
    def parse(cls, value: Any) -> "ServiceType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "standard").strip().lower())
        except ValueError:
            raise ValidationError("invalid service type") from None


@dataclass(frozen=True)
class Dimensions:
    """Package dimensions in inches; any side may be unknown."""
    length: Optional[Decimal] = None
    width: Optional[Decimal] = None
    height: Optional[Decimal] = None

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> Optional["Dimensions"]:
        if not data:
            return None
        return cls(
            length=data.get("length"),
            width=data.get("width"),
            height=data.get("height"),
        )

    @property
    def is_complete(self) -> bool:
        sides = (self.length, self.width, self.height)
        return all(s is not None and s > 0 for s in sides)


@dataclass(frozen=True)
class DestinationRates:
    """Validated, immutable view of a destination row as the calculator needs it."""
    id: int
    country_name: str
    city_name: str
    airport_code: Optional[str]
    rate_per_lb_1_50: Decimal
    rate_per_lb_51_100: Decimal
    rate_per_lb_101_200: Decimal
    rate_per_lb_201_plus: Decimal
    express_surcharge_percent: Decimal
    transit_days_min: int
    transit_days_max: int
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "country_name": self.country_name,
            "city_name": self.city_name,
            "airport_code": self.airport_code,
            "rate_per_lb_1_50": str(self.rate_per_lb_1_50),
            "rate_per_lb_51_100": str(self.rate_per_lb_51_100),
            "rate_per_lb_101_200": str(self.rate_per_lb_101_200),
            "rate_per_lb_201_plus": str(self.rate_per_lb_201_plus),
            "express_surcharge_percent": str(self.express_surcharge_percent),
            "transit_days_min": self.transit_days_min,
            "transit_days_max": self.transit_days_max,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class RateBreakdown:
    rate_per_lb: Decimal
    base_shipping_cost: Decimal  # includes the express surcharge
    express_surcharge: Decimal
    consolidation_fee: Decimal
    handling_fee: Decimal
    insurance_cost: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class TransitEstimate:
    min_days: int
    max_days: int

    @property
    def average_days(self) -> int:
        midpoint = Decimal(self.min_days + self.max_days) / 2
        return int(midpoint.to_integral_value(rounding=ROUND_HALF_UP))

    @property
    def label(self) -> str:
        return f"{self.min_days}-{self.max_days} business days"


@dataclass(frozen=True)
class CalculatedRate:
    destination: DestinationRates
    service_type: ServiceType
    actual_weight: Decimal
    dimensional_weight: Optional[Decimal]
    billable_weight: Decimal
    declared_value: Decimal
    breakdown: RateBreakdown
    transit: TransitEstimate

    def to_dict(self) -> Dict[str, Any]:
        """Web-client shape: camelCase keys, amounts as JSON numbers rounded to cents."""
        b = self.breakdown
        return {
            "destination": {
                "id": self.destination.id,
                "country": self.destination.country_name,
                "city": self.destination.city_name,
                "airportCode": self.destination.airport_code,
            },
            "weight": {
                "actual": _number(self.actual_weight),
                "dimensional": _number(self.dimensional_weight),
                "billable": _number(self.billable_weight),
            },
            "serviceType": self.service_type.value,
            "rateBreakdown": {
                "ratePerLb": _number(b.rate_per_lb),
                "baseShippingCost": _number(b.base_shipping_cost),
                "expressSurcharge": _number(b.express_surcharge),
                "consolidationFee": _number(b.consolidation_fee),
                "handlingFee": _number(b.handling_fee),
                "insuranceCost": _number(b.insurance_cost),
                "totalCost": _number(b.total_cost),
            },
            "transitTime": {
                "min": self.transit.min_days,
                "max": self.transit.max_days,
                "estimate": self.transit.label,
            },
            "declaredValue": _number(self.declared_value),
        }


@dataclass(frozen=True)
class _RateInputs:
    weight: Decimal
    dimensions: Optional[Dimensions]
    service_type: ServiceType
    declared_value: Decimal
    consolidation_fee: Decimal


def validate_rate_inputs(
    weight_lbs: Any,
    dimensions: Optional[Dimensions | Dict[str, Any]] = None,
    service_type: Any = ServiceType.STANDARD,
    declared_value: Any = None,
    consolidation_fee: Any = None,
) -> _RateInputs:
    """Normalise and validate everything except the destination.

    Runs before any destination lookup so bad input never costs a query.
    """
    if weight_lbs is None:
        raise ValidationError("invalid weight")
    weight = _to_decimal(weight_lbs, "invalid weight")
    if weight <= 0:
        raise ValidationError("invalid weight")

    dims: Optional[Dimensions] = None
    if isinstance(dimensions, dict):
        dimensions = Dimensions.from_mapping(dimensions)
    if dimensions is not None:
        sides: Dict[str, Optional[Decimal]] = {}
        for name in ("length", "width", "height"):
            raw = getattr(dimensions, name)
            if raw is None or raw == "":
                sides[name] = None
                continue
            side = _to_decimal(raw, "invalid dimensions")
            if side < 0:
                raise ValidationError("invalid dimensions")
            sides[name] = side
        dims = Dimensions(**sides)

    value = _ZERO
    if declared_value is not None and declared_value != "":
        value = _to_decimal(declared_value, "invalid declared value")
        if value < 0:
            raise ValidationError("invalid declared value")

    consolidation = _ZERO
    if consolidation_fee is not None and consolidation_fee != "":
        consolidation = _to_decimal(consolidation_fee, "invalid consolidation fee")
        if consolidation < 0:
            raise ValidationError("invalid consolidation fee")

    return _RateInputs(
        weight=weight,
        dimensions=dims,
        service_type=ServiceType.parse(service_type),
        declared_value=value,
        consolidation_fee=consolidation,
    )


def dimensional_weight(dimensions: Optional[Dimensions]) -> Optional[Decimal]:
    if dimensions is None or not dimensions.is_complete:
        return None
    return dimensions.length * dimensions.width * dimensions.height / DIM_DIVISOR


def select_rate_per_lb(destination: DestinationRates, billable_weight: Decimal) -> Decimal:
    if billable_weight <= TIER_1_MAX:
        return destination.rate_per_lb_1_50
    if billable_weight <= TIER_2_MAX:
        return destination.rate_per_lb_51_100
    if billable_weight <= TIER_3_MAX:
        return destination.rate_per_lb_101_200
    return destination.rate_per_lb_201_plus


def insurance_cost(declared_value: Decimal) -> Decimal:
    if declared_value <= FREE_COVERAGE:
        return Decimal("0.00")
    return _money(max(INSURANCE_MINIMUM, (declared_value - FREE_COVERAGE) * INSURANCE_RATE))


def express_transit_window(min_days: int, max_days: int) -> TransitEstimate:
    """One day faster at each bound, floored at 1/2 days.

    Express is never quoted slower or with a wider window than standard, so
    very short lanes (e.g. 1-1 or 2-2 days) keep their standard window.
    """
    fast_max = min(max_days, max(2, max_days - 1))
    fast_min = min(max(1, min_days - 1), fast_max)
    if fast_max - fast_min > max_days - min_days:
        fast_min = fast_max - (max_days - min_days)
    return TransitEstimate(min_days=fast_min, max_days=fast_max)


def calculate(
    weight_lbs: Any,
    dimensions: Optional[Dimensions | Dict[str, Any]],
    destination: Optional[DestinationRates],
    service_type: Any = ServiceType.STANDARD,
    declared_value: Any = None,
    *,
    special_handling: bool = False,
    consolidation_fee: Any = None,
) -> CalculatedRate:
    """Price one package for one destination; raises ``ValidationError``."""
    inputs = validate_rate_inputs(weight_lbs, dimensions, service_type, declared_value, consolidation_fee)
    if destination is None or not destination.is_active:
        raise ValidationError("unknown destination")

    dim_weight = dimensional_weight(inputs.dimensions)
    billable = max(inputs.weight, dim_weight or _ZERO)

    rate = select_rate_per_lb(destination, billable)
    line_haul = billable * rate

    surcharge = _ZERO
    if inputs.service_type is ServiceType.EXPRESS:
        surcharge = line_haul * destination.express_surcharge_percent / Decimal("100")

    base_cost = _money(line_haul + surcharge)
    express_surcharge = _money(surcharge)
    handling = SPECIAL_HANDLING_FEE if special_handling else Decimal("0.00")
    consolidation = _money(inputs.consolidation_fee)
    insurance = insurance_cost(inputs.declared_value)
    total = base_cost + consolidation + handling + insurance

    if inputs.service_type is ServiceType.EXPRESS:
        transit = express_transit_window(destination.transit_days_min, destination.transit_days_max)
    else:
        transit = TransitEstimate(destination.transit_days_min, destination.transit_days_max)

    return CalculatedRate(
        destination=destination,
        service_type=inputs.service_type,
        actual_weight=inputs.weight,
        dimensional_weight=dim_weight,
        billable_weight=billable,
        declared_value=inputs.declared_value,
        breakdown=RateBreakdown(
            rate_per_lb=_money(rate),
            base_shipping_cost=base_cost,
            express_surcharge=express_surcharge,
            consolidation_fee=consolidation,
            handling_fee=handling,
            insurance_cost=insurance,
            total_cost=total,
        ),
        transit=transit,
    )
