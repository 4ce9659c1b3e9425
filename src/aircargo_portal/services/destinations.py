# src/aircargo_portal/services/destinations.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models import Destination
from ..rules.rate_calculator import DestinationRates

logger = logging.getLogger(__name__)

_TIER_FIELDS = ("rate_per_lb_1_50", "rate_per_lb_51_100", "rate_per_lb_101_200", "rate_per_lb_201_plus")
_DEFAULT_EXPRESS_PERCENT = Decimal("25.00")


def _dec(val: Any) -> Optional[Decimal]:
    if val is None:
        return None
    try:
        dec = Decimal(str(val))
    except Exception:
        return None
    return dec if dec.is_finite() else None


def destination_from_row(row: Destination) -> Optional[DestinationRates]:
    """Validate a destination row; malformed rows are logged and dropped."""
    tiers = {name: _dec(getattr(row, name)) for name in _TIER_FIELDS}
    missing = [name for name, rate in tiers.items() if rate is None or rate < 0]
    if missing:
        logger.warning("Destination %s has invalid tier rates %s; skipping", row.id, ",".join(missing))
        return None

    express = _dec(row.express_surcharge_percent)
    if express is None:
        express = _DEFAULT_EXPRESS_PERCENT
    if express < 0:
        logger.warning("Destination %s has a negative express surcharge; skipping", row.id)
        return None

    try:
        t_min, t_max = int(row.transit_days_min), int(row.transit_days_max)
    except (TypeError, ValueError):
        logger.warning("Destination %s has no transit window; skipping", row.id)
        return None
    if t_min < 1 or t_max < t_min:
        logger.warning("Destination %s has transit window %s-%s; skipping", row.id, t_min, t_max)
        return None

    return DestinationRates(
        id=row.id,
        country_name=row.country_name,
        city_name=row.city_name,
        airport_code=row.airport_code,
        rate_per_lb_1_50=tiers["rate_per_lb_1_50"],
        rate_per_lb_51_100=tiers["rate_per_lb_51_100"],
        rate_per_lb_101_200=tiers["rate_per_lb_101_200"],
        rate_per_lb_201_plus=tiers["rate_per_lb_201_plus"],
        express_surcharge_percent=express,
        transit_days_min=t_min,
        transit_days_max=t_max,
        is_active=bool(row.is_active),
    )


def list_active_destinations(db: Session) -> List[DestinationRates]:
    rows = (
        db.execute(
            select(Destination)
            .where(Destination.is_active.is_(True))
            .order_by(Destination.country_name, Destination.city_name)
        )
        .scalars()
        .all()
    )
    out: List[DestinationRates] = []
    for row in rows:
        rates = destination_from_row(row)
        if rates is not None:
            out.append(rates)
    return out


def get_active_destination(db: Session, destination_id: Any) -> DestinationRates:
    try:
        key = int(destination_id)
    except (TypeError, ValueError):
        raise NotFoundError("please select a destination") from None

    row = db.get(Destination, key)
    rates = destination_from_row(row) if row is not None and row.is_active else None
    if rates is None:
        raise NotFoundError("please select a destination")
    return rates
