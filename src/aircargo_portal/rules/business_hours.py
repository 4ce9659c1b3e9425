"""Facility opening hours for pickup/drop-off scheduling.

Resolution order for a calendar date:

  1. an explicit availability override (closure or special hours) wins;
  2. Saturdays and Sundays are closed;
  3. public holidays from the ``holidays`` package (US federal by default,
     optionally a state subdivision) are closed;
  4. otherwise the default opening hours apply.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time, timedelta
from functools import lru_cache
from typing import Dict, List, Optional

import holidays

__all__ = ["BusinessDay", "HoursOverride", "holiday_name", "resolve_business_day", "upcoming_closures"]


@dataclass(frozen=True)
class HoursOverride:
    is_closed: bool = False
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class BusinessDay:
    on: date
    open_time: time
    close_time: time
    is_closed: bool = False
    is_holiday: bool = False
    holiday_name: Optional[str] = None

    @property
    def day_name(self) -> str:
        return self.on.strftime("%A")

    @property
    def closure_message(self) -> str:
        if self.is_holiday:
            return f"Closed for {self.holiday_name or 'holiday'}"
        return f"Closed on {self.day_name}"


@lru_cache(maxsize=16)
def _calendar(country: str, subdivision: Optional[str]) -> holidays.HolidayBase:
    return holidays.country_holidays(country, subdiv=subdivision)


def holiday_name(on: date, *, country: str = "US", subdivision: Optional[str] = None) -> Optional[str]:
    return _calendar(country.upper(), subdivision.upper() if subdivision else None).get(on)


def resolve_business_day(
    on: date,
    *,
    default_open: time,
    default_close: time,
    override: Optional[HoursOverride] = None,
    country: str = "US",
    subdivision: Optional[str] = None,
) -> BusinessDay:
    if override is not None:
        return BusinessDay(
            on=on,
            open_time=override.open_time or default_open,
            close_time=override.close_time or default_close,
            is_closed=override.is_closed,
            is_holiday=override.is_closed and bool(override.reason),
            holiday_name=override.reason,
        )

    if on.weekday() >= 5:  # Sat=5, Sun=6
        return BusinessDay(on=on, open_time=default_open, close_time=default_close, is_closed=True)

    name = holiday_name(on, country=country, subdivision=subdivision)
    if name:
        return BusinessDay(
            on=on,
            open_time=default_open,
            close_time=default_close,
            is_closed=True,
            is_holiday=True,
            holiday_name=name,
        )

    return BusinessDay(on=on, open_time=default_open, close_time=default_close)


def upcoming_closures(
    start: date,
    *,
    days: int = 60,
    overrides: Optional[Dict[date, HoursOverride]] = None,
    country: str = "US",
    subdivision: Optional[str] = None,
    limit: int = 10,
) -> List[Dict[str, str]]:
    """Weekday closures (holidays and override closures) from ``start`` onward."""
    overrides = overrides or {}
    entries: List[Dict[str, str]] = []
    for offset in range(days):
        on = start + timedelta(days=offset)
        override = overrides.get(on)
        if override is not None:
            if override.is_closed:
                entries.append({"date": on.isoformat(), "name": override.reason or "Closed"})
        elif on.weekday() < 5:
            name = holiday_name(on, country=country, subdivision=subdivision)
            if name:
                entries.append({"date": on.isoformat(), "name": name})
        if len(entries) >= limit:
            break
    return entries
