# src/aircargo_portal/services/rate_sheet.py
"""
Destination rate sheet import/export (.xlsx).

Sheet layout: one header row, then one destination per row.  Headers are
matched case-insensitively; unknown columns are ignored.  Rows are upserted
by airport code, so re-importing an exported sheet is a no-op.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

import openpyxl
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import Destination

logger = logging.getLogger(__name__)

COLUMNS = [
    "country_name",
    "city_name",
    "airport_code",
    "rate_per_lb_1_50",
    "rate_per_lb_51_100",
    "rate_per_lb_101_200",
    "rate_per_lb_201_plus",
    "express_surcharge_percent",
    "transit_days_min",
    "transit_days_max",
    "is_active",
]
_RATE_COLUMNS = COLUMNS[3:7]
_REQUIRED = ("country_name", "city_name", "airport_code", *_RATE_COLUMNS, "transit_days_min", "transit_days_max")


@dataclass
class ImportReport:
    created: int = 0
    updated: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"created": self.created, "updated": self.updated}


def _header_key(h: Any) -> str:
    return str(h).strip().lower().replace(" ", "_") if h is not None else ""


def _as_bool(v: Any) -> bool:
    if v is None or v == "":
        return True
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "y", "active")


def _amount(raw: Any, line: int, col: str) -> Decimal:
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValidationError(f"Row {line}: {col} must be numeric") from None
    if not value.is_finite() or value < 0:
        raise ValidationError(f"Row {line}: {col} must be a non-negative amount")
    return value.quantize(Decimal("0.01"))


def _days(raw: Any, line: int) -> int:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError(f"Row {line}: transit days must be whole numbers") from None
    if not value.is_finite() or value != value.to_integral_value():
        raise ValidationError(f"Row {line}: transit days must be whole numbers")
    return int(value)


def _row_values(rec: Dict[str, Any], line: int) -> Dict[str, Any]:
    missing = [c for c in _REQUIRED if rec.get(c) in (None, "")]
    if missing:
        raise ValidationError(f"Row {line}: missing {', '.join(missing)}")

    out: Dict[str, Any] = {
        "country_name": str(rec["country_name"]).strip(),
        "city_name": str(rec["city_name"]).strip(),
        "airport_code": str(rec["airport_code"]).strip().upper(),
        "is_active": _as_bool(rec.get("is_active")),
    }
    for col in _RATE_COLUMNS:
        out[col] = _amount(rec[col], line, col)
    express = rec.get("express_surcharge_percent")
    out["express_surcharge_percent"] = (
        Decimal("25.00") if express in (None, "") else _amount(express, line, "express_surcharge_percent")
    )

    t_min, t_max = _days(rec["transit_days_min"], line), _days(rec["transit_days_max"], line)
    if t_min < 1 or t_max < t_min:
        raise ValidationError(f"Row {line}: transit window {t_min}-{t_max} is invalid")
    out["transit_days_min"], out["transit_days_max"] = t_min, t_max
    return out


def parse_rate_sheet(data: bytes) -> List[Dict[str, Any]]:
    """Parse and validate every row; raises one ``ValidationError`` listing all bad rows."""
    try:
        wb = openpyxl.load_workbook(io.BytesIO(data), data_only=True, read_only=True)
    except Exception as exc:
        raise ValidationError("Rate sheet is not a readable .xlsx workbook") from exc
    ws = wb.active

    rows = ws.iter_rows(values_only=True)
    header_row = next(rows, None)
    if header_row is None:
        raise ValidationError("Rate sheet is empty")
    headers = [_header_key(h) for h in header_row]
    absent = [c for c in _REQUIRED if c not in headers]
    if absent:
        raise ValidationError(f"Rate sheet is missing columns: {', '.join(absent)}")

    parsed: List[Dict[str, Any]] = []
    errors: List[str] = []
    seen: Dict[str, int] = {}
    for line, row in enumerate(rows, start=2):
        if all(v is None for v in row):
            continue
        rec = {h: v for h, v in zip(headers, row) if h}
        try:
            values = _row_values(rec, line)
        except ValidationError as exc:
            errors.append(exc.message)
            continue
        code = values["airport_code"]
        if code in seen:
            errors.append(f"Row {line}: airport code {code} already appears on row {seen[code]}")
            continue
        seen[code] = line
        parsed.append(values)
    wb.close()

    if errors:
        raise ValidationError("; ".join(errors))
    return parsed


def import_rate_sheet(db: Session, data: bytes) -> ImportReport:
    rows = parse_rate_sheet(data)
    report = ImportReport()
    for values in rows:
        existing = db.execute(
            select(Destination).where(Destination.airport_code == values["airport_code"])
        ).scalar_one_or_none()
        if existing is None:
            db.add(Destination(**values))
            report.created += 1
        else:
            for key, val in values.items():
                setattr(existing, key, val)
            report.updated += 1
    db.commit()
    logger.info("Rate sheet imported: %d created, %d updated", report.created, report.updated)
    return report


def _cell(v: Any) -> Any:
    if isinstance(v, Decimal):
        return float(v)
    return v


def export_rate_sheet(db: Session, *, include_inactive: bool = True) -> bytes:
    stmt = select(Destination).order_by(Destination.country_name, Destination.city_name)
    if not include_inactive:
        stmt = stmt.where(Destination.is_active.is_(True))
    destinations = db.execute(stmt).scalars().all()

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Destinations"
    ws.append(COLUMNS)
    for d in destinations:
        ws.append([_cell(getattr(d, col)) for col in COLUMNS])
    ws.freeze_panes = "A2"

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
