# src/aircargo_portal/api/routes.py
"""
Customer-facing v1 API.

Notes:
- Every success body is ``{"data": ...}``; portal errors are rendered by the
  handlers registered in ``api.main`` as ``{"error": {"code", "message"}}``.
- The caller's identity arrives in the ``X-Customer-Id`` header.
- Every booking call goes to the remote capacity service when
  CAPACITY_SERVICE_URL is set, and to the local ledger otherwise.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..clients.capacity_client import CapacityServiceClient
from ..clients.postal_client import PostalClient
from ..db import get_db
from ..errors import NotFoundError, PortalError
from ..services.availability import AvailabilityService, WindowQuery
from ..services.bookings import BookingClient, parse_customer_id
from ..services.destinations import get_active_destination, list_active_destinations
from ..services.quotes import create_quote, get_quote, list_quotes, quote_to_dict
from ..services.rates import calculate_for_destination
from ..services.shipments import (
    create_shipment,
    get_shipment,
    list_shipments,
    shipment_to_dict,
    update_shipment_status,
)
from ..settings import settings

logger = logging.getLogger("aircargo-api")

router = APIRouter(prefix="/api/v1", tags=["Air Cargo Portal"])

# ============ Pydantic Models ============


class _Body(BaseModel):
    # camelCase from the web client, snake_case from everything else
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DimensionsIn(_Body):
    length: Optional[Any] = Field(None, examples=[12])
    width: Optional[Any] = Field(None, examples=[10])
    height: Optional[Any] = Field(None, examples=[8])


class RateRequest(_Body):
    # Numbers stay loosely typed so the calculator owns the error messages.
    weight: Optional[Any] = Field(None, examples=[5])
    dimensions: Optional[DimensionsIn] = None
    destination_id: Optional[Any] = Field(None, alias="destinationId", examples=[1])
    service_type: Optional[str] = Field("standard", alias="serviceType", examples=["standard"])
    declared_value: Optional[Any] = Field(None, alias="declaredValue", examples=[200])
    special_handling: bool = Field(False, alias="specialHandling")
    consolidation_fee: Optional[Any] = Field(None, alias="consolidationFee")


class RateSnapshot(_Body):
    total_cost: Optional[Any] = Field(None, alias="totalCost")
    base_shipping_cost: Optional[Any] = Field(None, alias="baseShippingCost")
    express_surcharge: Optional[Any] = Field(None, alias="expressSurcharge")


class QuoteRequest(RateRequest):
    full_name: Optional[str] = Field(None, alias="fullName", examples=["Ada Baptiste"])
    email: Optional[str] = Field(None, examples=["ada@example.com"])
    phone: Optional[str] = None
    special_instructions: Optional[str] = Field(None, alias="specialInstructions")
    rate_snapshot: Optional[RateSnapshot] = Field(None, alias="rateSnapshot")


class WindowsRequest(_Body):
    date: Optional[str] = Field(None, examples=["2025-03-04"])
    estimated_weight_lbs: Optional[Any] = Field(None, alias="estimatedWeightLbs", examples=[150])
    pickup_or_drop: Optional[str] = Field(None, alias="pickupOrDrop", examples=["pickup"])
    service_type: Optional[str] = Field("standard", alias="serviceType")
    zip_code: Optional[str] = Field(None, alias="zipCode", examples=["07030"])


class BookingIn(_Body):
    window_start: Optional[str] = Field(None, alias="windowStart", examples=["2025-03-04T14:00:00Z"])
    window_end: Optional[str] = Field(None, alias="windowEnd", examples=["2025-03-04T16:00:00Z"])
    address: Optional[Dict[str, Any]] = None
    estimated_weight_lbs: Optional[Any] = Field(None, alias="estimatedWeightLbs")
    pickup_or_drop: Optional[str] = Field(None, alias="pickupOrDrop")
    service_type: Optional[str] = Field("standard", alias="serviceType")
    notes: Optional[str] = None
    zip_code: Optional[str] = Field(None, alias="zipCode")
    quote_id: Optional[int] = Field(None, alias="quoteId")
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey")


class ShipmentItemIn(_Body):
    description: Optional[str] = None
    weight_lbs: Optional[Any] = Field(None, alias="weightLbs")
    quantity: Optional[Any] = 1
    length_inches: Optional[Any] = Field(None, alias="lengthInches")
    width_inches: Optional[Any] = Field(None, alias="widthInches")
    height_inches: Optional[Any] = Field(None, alias="heightInches")
    declared_value: Optional[Any] = Field(None, alias="declaredValue")
    category: Optional[str] = None
    notes: Optional[str] = None


class ShipmentIn(_Body):
    destination_id: Optional[Any] = Field(None, alias="destinationId")
    service_type: Optional[str] = Field("standard", alias="serviceType")
    pickup_scheduled_at: Optional[str] = Field(None, alias="pickupScheduledAt")
    special_instructions: Optional[str] = Field(None, alias="specialInstructions")
    items: List[ShipmentItemIn] = Field(default_factory=list)


class StatusUpdate(_Body):
    status: Optional[str] = Field(None, examples=["in_transit"])
    location: Optional[str] = None
    notes: Optional[str] = None
    customer_visible: bool = Field(True, alias="customerVisible")


# ============ Dependencies ============


def current_customer(x_customer_id: Optional[str] = Header(None)) -> uuid.UUID:
    return parse_customer_id(x_customer_id)


def postal_client() -> Iterator[Optional[PostalClient]]:
    if not settings.postal_lookup_enabled:
        yield None
        return
    with PostalClient() as client:
        yield client


def booking_client(
    db: Session = Depends(get_db),
    postal: Optional[PostalClient] = Depends(postal_client),
) -> Iterator[BookingClient]:
    remote = None
    if settings.capacity_service_url:
        remote = CapacityServiceClient(settings.capacity_service_url, token=settings.capacity_service_token)
    try:
        yield BookingClient(db, remote=remote, postal_client=postal)
    finally:
        if remote is not None:
            remote.close()


def _unexpected(what: str) -> HTTPException:
    logger.exception("%s failed", what)
    return HTTPException(status_code=500, detail=f"{what} failed")


# ============ Destinations & Rates ============


@router.get("/destinations")
def destinations(db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"data": [d.to_dict() for d in list_active_destinations(db)]}


@router.get("/destinations/{destination_id}")
def destination_detail(destination_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"data": get_active_destination(db, destination_id).to_dict()}


@router.post("/rates/calculate")
def calculate_rate(body: RateRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        result = calculate_for_destination(
            db,
            weight=body.weight,
            destination_id=body.destination_id,
            dimensions=body.dimensions.model_dump() if body.dimensions else None,
            service_type=body.service_type,
            declared_value=body.declared_value,
            special_handling=body.special_handling,
            consolidation_fee=body.consolidation_fee,
        )
    except PortalError:
        raise
    except Exception:
        raise _unexpected("rate calculation")
    return {"data": result.to_dict()}


# ============ Business hours & Bookings ============


@router.get("/business-hours")
def business_hours(
    on: Optional[date] = Query(None, alias="date"),
    days: int = Query(60, ge=1, le=365),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    svc = AvailabilityService(db)
    day = svc.business_day(on or svc.today)
    return {
        "data": {
            "date": day.on.isoformat(),
            "day_name": day.day_name,
            "open_time": day.open_time.strftime("%H:%M"),
            "close_time": day.close_time.strftime("%H:%M"),
            "is_closed": day.is_closed,
            "is_holiday": day.is_holiday,
            "holiday_name": day.holiday_name,
            "upcoming_closures": svc.upcoming_closures(days=days),
        }
    }


@router.post("/bookings/windows")
def booking_windows(
    body: WindowsRequest,
    client: BookingClient = Depends(booking_client),
) -> Dict[str, Any]:
    query = WindowQuery.build(
        body.date,
        body.estimated_weight_lbs,
        body.pickup_or_drop,
        body.service_type,
        body.zip_code,
    )
    try:
        return {"data": client.list_windows(query)}
    except PortalError:
        raise
    except Exception:
        raise _unexpected("availability check")


@router.post("/bookings")
def create_booking_endpoint(
    body: BookingIn,
    response: Response,
    customer: uuid.UUID = Depends(current_customer),
    idempotency_key: Optional[str] = Header(None),
    client: BookingClient = Depends(booking_client),
) -> Dict[str, Any]:
    fields = body.model_dump()
    fields["idempotency_key"] = body.idempotency_key or idempotency_key
    try:
        booking, created = client.submit(customer, fields)
    except PortalError:
        raise
    except Exception:
        raise _unexpected("booking creation")
    response.status_code = 201 if created else 200
    return {"data": {"booking": booking, "created": created}}


@router.get("/bookings")
def my_bookings(
    customer: uuid.UUID = Depends(current_customer),
    client: BookingClient = Depends(booking_client),
) -> Dict[str, Any]:
    return {"data": client.list_bookings(customer)}


@router.get("/bookings/{booking_id}")
def booking_detail(
    booking_id: str,
    customer: uuid.UUID = Depends(current_customer),
    client: BookingClient = Depends(booking_client),
) -> Dict[str, Any]:
    return {"data": client.get_booking(customer, booking_id)}


@router.post("/bookings/{booking_id}/cancel")
def cancel_booking_endpoint(
    booking_id: str,
    customer: uuid.UUID = Depends(current_customer),
    client: BookingClient = Depends(booking_client),
) -> Dict[str, Any]:
    return {"data": client.cancel(customer, booking_id)}


# ============ Quotes ============


@router.post("/quotes", status_code=201)
def create_quote_endpoint(
    body: QuoteRequest,
    x_customer_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    try:
        quote = create_quote(db, body.model_dump(), customer_id=x_customer_id)
    except PortalError:
        raise
    except Exception:
        raise _unexpected("quote creation")
    return {"data": quote_to_dict(quote)}


@router.get("/quotes")
def my_quotes(
    email: Optional[str] = Query(None),
    x_customer_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    quotes = list_quotes(db, customer_id=x_customer_id, email=email)
    return {"data": [quote_to_dict(q) for q in quotes]}


@router.get("/quotes/{ref}")
def quote_detail(
    ref: str,
    email: Optional[str] = Query(None),
    x_customer_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return {"data": quote_to_dict(get_quote(db, ref, customer_id=x_customer_id, email=email))}


@router.get("/quotes/{ref}/document", response_class=HTMLResponse)
def quote_document(
    ref: str,
    email: Optional[str] = Query(None),
    x_customer_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> HTMLResponse:
    quote = get_quote(db, ref, customer_id=x_customer_id, email=email)
    if not quote.quote_document_html:
        raise NotFoundError("Quote document not available")
    return HTMLResponse(quote.quote_document_html)


# ============ Shipments ============


@router.post("/shipments", status_code=201)
def create_shipment_endpoint(
    body: ShipmentIn,
    customer: uuid.UUID = Depends(current_customer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    try:
        shipment = create_shipment(db, customer, body.model_dump())
    except PortalError:
        raise
    except Exception:
        raise _unexpected("shipment creation")
    return {"data": shipment_to_dict(shipment, include_items=True)}


@router.get("/shipments")
def my_shipments(
    customer: uuid.UUID = Depends(current_customer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return {"data": [shipment_to_dict(s) for s in list_shipments(db, customer)]}


@router.get("/shipments/{shipment_id}")
def shipment_detail(
    shipment_id: int,
    customer: uuid.UUID = Depends(current_customer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return {"data": shipment_to_dict(get_shipment(db, customer, shipment_id), include_items=True)}


@router.patch("/shipments/{shipment_id}/status")
def shipment_status(
    shipment_id: int,
    body: StatusUpdate,
    customer: uuid.UUID = Depends(current_customer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    shipment = update_shipment_status(
        db,
        shipment_id,
        body.status,
        customer_id=customer,
        location=body.location,
        notes=body.notes,
        customer_visible=body.customer_visible,
    )
    return {"data": shipment_to_dict(shipment, include_items=True)}
