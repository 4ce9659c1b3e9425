# src/aircargo_portal/clients/capacity_client.py
"""Client for an external booking-capacity service.

The service owns the vehicle ledger and conflict detection; this client only
speaks its calls:

  POST {base}/windows                 -> {"data": {"available_windows": [...], "reason"?, "message"?}}
  POST {base}/bookings                -> {"data": {"booking": {...}, "created": bool}}
  GET  {base}/bookings?customer_id=   -> {"data": {"bookings": [...]}}
  GET  {base}/bookings/{id}           -> {"data": {"booking": {...}}}
  POST {base}/bookings/{id}/cancel    -> {"data": {"booking": {...}}}

Errors come back as ``{"error": {"code", "message"}}`` and are mapped onto the
portal taxonomy: 404 -> NotFoundError, 409 -> ConflictError, other 4xx ->
ValidationError, 5xx/network -> TransientError.  Nothing is retried automatically.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ConflictError, NotFoundError, TransientError, ValidationError
from ..settings import settings

logger = logging.getLogger(__name__)

UA = "AirCargoPortal/1.0 (+capacity)"


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return f"HTTP {resp.status_code}"


class CapacityServiceClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": UA, "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=settings.request_timeout if timeout is None else timeout,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "CapacityServiceClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _call(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            resp = self._client.request(method, path, json=payload, params=params)
        except httpx.HTTPError as exc:
            logger.warning("Capacity service %s failed: %s", path, exc)
            raise TransientError("booking service is temporarily unavailable") from exc

        if resp.status_code == 404:
            raise NotFoundError(_error_message(resp))
        if resp.status_code == 409:
            raise ConflictError(_error_message(resp))
        if 400 <= resp.status_code < 500:
            raise ValidationError(_error_message(resp))
        if resp.status_code >= 500:
            logger.warning("Capacity service %s returned %s", path, resp.status_code)
            raise TransientError("booking service is temporarily unavailable")

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransientError("booking service returned an unreadable response") from exc
        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise TransientError("booking service returned an unexpected response")
        return body["data"]

    def list_windows(
        self,
        *,
        date: str,
        estimated_weight_lbs: Any,
        pickup_or_drop: str,
        service_type: str = "standard",
        zip_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._call(
            "POST",
            "/windows",
            {
                "date": date,
                "estimated_weight_lbs": str(estimated_weight_lbs),
                "pickup_or_drop": pickup_or_drop,
                "service_type": service_type,
                "zip_code": zip_code,
            },
        )

    def create_booking(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not payload.get("idempotency_key"):
            raise ValidationError("Idempotency key is required")
        return self._with_booking(self._call("POST", "/bookings", payload))

    def list_bookings(self, customer_id: str) -> List[Dict[str, Any]]:
        data = self._call("GET", "/bookings", params={"customer_id": customer_id})
        bookings = data.get("bookings")
        if not isinstance(bookings, list):
            raise TransientError("booking service response missing bookings")
        return bookings

    def get_booking(self, customer_id: str, booking_id: str) -> Dict[str, Any]:
        data = self._call("GET", f"/bookings/{booking_id}", params={"customer_id": customer_id})
        return self._with_booking(data)["booking"]

    def cancel_booking(self, customer_id: str, booking_id: str) -> Dict[str, Any]:
        data = self._call("POST", f"/bookings/{booking_id}/cancel", {"customer_id": customer_id})
        return self._with_booking(data)["booking"]

    @staticmethod
    def _with_booking(data: Dict[str, Any]) -> Dict[str, Any]:
        if "booking" not in data:
            raise TransientError("booking service response missing booking")
        return data
