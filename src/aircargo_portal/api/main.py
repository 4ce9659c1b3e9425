from __future__ import annotations

import os
import logging
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from .routes import StatusUpdate, router as v1_router
from ..db import SessionLocal, get_db, init_db
from ..errors import PortalError
from ..models import Booking, Destination, Shipment, ShippingQuote, Vehicle
from ..services.rate_sheet import export_rate_sheet, import_rate_sheet
from ..services.shipments import shipment_to_dict, update_shipment_status
from ..settings import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("aircargo-api")

API_VERSION = "1.0.0"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

app = FastAPI(
    title="Caribbean Air Cargo Portal",
    version=API_VERSION,
    description="Rates, pickup booking, quotes and shipment tracking for NJ to Caribbean air cargo",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    default_response_class=ORJSONResponse,
)

app.include_router(v1_router)

# Cross-origin access for the customer web app
allow_origins: List[str] = settings.origins
allow_all = allow_origins == ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # wildcard origins cannot carry credentials, so echo the origin instead
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)


# Errors render as {"error": {"code", "message"}}
@app.exception_handler(PortalError)
def _portal_error(request: Request, exc: PortalError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return ORJSONResponse(exc.to_payload(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
def _request_invalid(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg')}" if where else str(first.get("msg", "invalid request"))
    return ORJSONResponse({"error": {"code": "VALIDATION_ERROR", "message": message}}, status_code=400)


@app.exception_handler(HTTPException)
def _http_error(request: Request, exc: HTTPException) -> ORJSONResponse:
    code = "INTERNAL_ERROR" if exc.status_code >= 500 else "HTTP_ERROR"
    return ORJSONResponse({"error": {"code": code, "message": str(exc.detail)}}, status_code=exc.status_code)


@app.on_event("startup")
def _startup():
    """Create tables and load seed data into empty tables."""
    try:
        init_db()
        logger.info("Schema ready and seed tables checked")
    except Exception:
        logger.exception("Database initialisation failed; serving without seed data")
    if settings.capacity_service_url:
        logger.info("Booking windows served by remote capacity service")
    else:
        logger.info("Booking windows served from the local ledger")


@app.get("/health", tags=["System"])
def health() -> Dict[str, Any]:
    db_ok = True
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1")).scalar()
    except Exception:
        db_ok = False
    return {
        "ok": True,
        "version": API_VERSION,
        "db_ok": db_ok,
        "booking_provider": "remote" if settings.capacity_service_url else "ledger",
        "postal_lookup": settings.postal_lookup_enabled,
    }


@app.get("/api/stats", tags=["System"])
def stats(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        counts = {
            "destinations": db.scalar(
                select(func.count()).select_from(Destination).where(Destination.is_active.is_(True))
            ),
            "vehicles": db.scalar(select(func.count()).select_from(Vehicle).where(Vehicle.active.is_(True))),
            "bookings": db.scalar(select(func.count()).select_from(Booking)),
            "quotes": db.scalar(select(func.count()).select_from(ShippingQuote)),
            "shipments": db.scalar(select(func.count()).select_from(Shipment)),
        }
    except Exception:
        logger.exception("Failed to collect stats")
        raise HTTPException(status_code=500, detail="stats query failed")
    return {"data": counts}


@app.get("/admin/destinations/export", tags=["Admin"], response_class=Response)
def export_destinations(db: Session = Depends(get_db)) -> Response:
    content = export_rate_sheet(db)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="destinations.xlsx"'},
    )


@app.post("/admin/destinations/import", tags=["Admin"])
async def import_destinations(request: Request, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Upload the .xlsx workbook as the raw request body."""
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="request body must be an .xlsx workbook")
    report = import_rate_sheet(db, data)
    return {"data": report.to_dict()}


@app.patch("/admin/shipments/{shipment_id}/status", tags=["Admin"])
def admin_shipment_status(shipment_id: int, body: StatusUpdate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Warehouse staff status update; not scoped to a customer."""
    shipment = update_shipment_status(
        db,
        shipment_id,
        body.status,
        customer_id=None,
        location=body.location,
        notes=body.notes,
        customer_visible=body.customer_visible,
    )
    return {"data": shipment_to_dict(shipment, include_items=True)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("aircargo_portal.api.main:app", host="0.0.0.0", port=port, reload=True)
