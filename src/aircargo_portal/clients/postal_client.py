# src/aircargo_portal/clients/postal_client.py
"""
ZIP code geocoder backed by the public Zippopotam.us API.

Used only when a pickup ZIP is missing from the local ``postal_geos`` table.
Lookups are cached per process and shared by every client instance; an
unknown ZIP is cached as a miss too.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Tuple

import requests

from ..errors import TransientError
from ..settings import settings

logger = logging.getLogger(__name__)

_CACHE_TTL = 24 * 3600  # seconds
_CACHE: Dict[Tuple[str, str], Tuple[float, Optional["PostalLocation"]]] = {}
_ZIP_RE = re.compile(r"^\d{5}$")


@dataclass(frozen=True)
class PostalLocation:
    zip_code: str
    city: Optional[str]
    state: Optional[str]
    latitude: Decimal
    longitude: Decimal

    @property
    def label(self) -> str:
        if self.city and self.state:
            return f"{self.city}, {self.state}"
        return f"ZIP {self.zip_code}"


def _cache_get(key: Tuple[str, str]) -> Tuple[bool, Optional[PostalLocation]]:
    v = _CACHE.get(key)
    if not v:
        return False, None
    exp, data = v
    if exp <= time.time():
        _CACHE.pop(key, None)
        return False, None
    return True, data


def _cache_set(key: Tuple[str, str], value: Optional[PostalLocation]) -> None:
    _CACHE[key] = (time.time() + _CACHE_TTL, value)


class PostalClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: int | None = None,
        retries: int = 1,
        backoff_s: float = 0.5,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or settings.postal_api_url).rstrip("/")
        self.timeout = settings.request_timeout if timeout is None else timeout
        self.retries = max(0, retries)
        self.backoff_s = max(0.0, backoff_s)
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "AirCargoPortal/1.0 (+postal lookup)",
        })

    @staticmethod
    def normalise_zip(zip_code: str) -> Optional[str]:
        z = (zip_code or "").strip()[:5]
        return z if _ZIP_RE.match(z) else None

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "PostalClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @staticmethod
    def _parse(zip_code: str, payload: dict) -> Optional[PostalLocation]:
        places = payload.get("places") or []
        if not places:
            return None
        place = places[0]
        try:
            lat = Decimal(str(place["latitude"]))
            lng = Decimal(str(place["longitude"]))
        except (KeyError, ArithmeticError, ValueError):
            return None
        return PostalLocation(
            zip_code=zip_code,
            city=place.get("place name"),
            state=place.get("state abbreviation"),
            latitude=lat,
            longitude=lng,
        )

    def lookup(self, zip_code: str) -> Optional[PostalLocation]:
        """Geocode a US ZIP; ``None`` when the ZIP is unknown."""
        z = self.normalise_zip(zip_code)
        if not z:
            return None
        key = (self.base_url, z)
        hit, cached = _cache_get(key)
        if hit:
            return cached

        url = f"{self.base_url}/{z}"
        last_exc: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                resp = self.session.get(url, timeout=self.timeout)
                if resp.status_code == 404:
                    _cache_set(key, None)
                    return None
                resp.raise_for_status()
                location = self._parse(z, resp.json())
                _cache_set(key, location)
                return location
            except (requests.RequestException, ValueError) as exc:
                last_exc = exc
                logger.warning("Postal lookup failed zip=%s attempt=%d: %s", z, attempt + 1, exc)
                if attempt < self.retries and self.backoff_s:
                    time.sleep(self.backoff_s * (attempt + 1))
        raise TransientError(f"postal lookup unavailable for {z}") from last_exc
