from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..rules.rate_calculator import CalculatedRate, calculate, validate_rate_inputs
from .destinations import get_active_destination

logger = logging.getLogger(__name__)


def calculate_for_destination(
    db: Session,
    *,
    weight: Any,
    destination_id: Any,
    dimensions: Optional[Dict[str, Any]] = None,
    service_type: Any = "standard",
    declared_value: Any = None,
    special_handling: bool = False,
    consolidation_fee: Any = None,
) -> CalculatedRate:
    """Validate inputs, then resolve the destination, then price.

    Input validation runs first so that bad requests never reach the catalog.
    """
    validate_rate_inputs(weight, dimensions, service_type, declared_value, consolidation_fee)
    destination = get_active_destination(db, destination_id)
    result = calculate(
        weight,
        dimensions,
        destination,
        service_type,
        declared_value,
        special_handling=special_handling,
        consolidation_fee=consolidation_fee,
    )
    logger.info(
        "Rate dest=%s billable=%s service=%s total=%s",
        destination.airport_code or destination.id,
        result.billable_weight,
        result.service_type.value,
        result.breakdown.total_cost,
    )
    return result
