# src/aircargo_portal/documents/quote_document.py
"""HTML rendering of an issued shipping quote."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from lxml import html
from lxml.html import builder as E

from ..settings import Settings, settings as default_settings

DEFAULT_TERMS: List[str] = [
    "Liability limitations: the carrier is not responsible for indirect, incidental, or consequential "
    "damages beyond the declared insurance coverage.",
    "Insurance requirements: shipments valued over $2,500 require supplemental insurance documentation "
    "prior to tendering freight.",
    "Customs responsibilities: consignees are responsible for providing accurate documentation and paying "
    "any duties, taxes, or customs-related fees upon arrival.",
    "Payment terms: quotes are valid for the stated period and require payment in full prior to cargo "
    "departure unless otherwise agreed in writing.",
    "Cancellation policy: bookings cancelled within 24 hours of scheduled departure may incur up to 50% "
    "of quoted charges.",
    "Dispute resolution: disputes are handled under New Jersey state law and must be submitted in writing "
    "within 10 days of delivery notification.",
]

SERVICE_LABELS = {
    "standard": "Standard Air Freight",
    "express": "Express Priority",
}

_STYLES = """
body { font-family: Helvetica, Arial, sans-serif; color: #1f2937; background: #f8fafc; margin: 0; }
.wrapper { max-width: 720px; margin: 0 auto; padding: 32px; background: #fff; border: 1px solid #e2e8f0; }
.header { display: flex; justify-content: space-between; border-bottom: 1px solid #e2e8f0; margin-bottom: 24px; }
.brand-title { font-size: 24px; font-weight: 800; color: #6d28d9; }
.quote-meta { text-align: right; font-size: 12px; color: #64748b; }
.section-title { font-size: 16px; font-weight: 700; text-transform: uppercase; }
.info-card { background: #f8fafc; padding: 16px; border: 1px solid #e2e8f0; margin-bottom: 8px; }
table { width: 100%; border-collapse: collapse; }
th, td { padding: 12px; text-align: left; font-size: 14px; }
.total-row td { font-weight: 700; }
.terms li { margin-bottom: 8px; font-size: 13px; }
.footer { margin-top: 32px; font-size: 12px; color: #94a3b8; text-align: center; }
"""


def format_currency(value: Optional[Decimal]) -> str:
    return f"${Decimal(value or 0):,.2f}"


def format_weight(value: Optional[Decimal]) -> str:
    if value is None:
        return "N/A"
    return f"{Decimal(value):.2f} lbs"


@dataclass
class QuoteDocument:
    reference: str
    customer_name: str
    customer_email: str
    created_at: datetime
    expires_at: datetime
    destination_country: str
    service_type: str
    actual_weight: Decimal
    billable_weight: Decimal
    base_shipping_cost: Decimal
    total_cost: Decimal
    customer_phone: Optional[str] = None
    destination_city: Optional[str] = None
    airport_code: Optional[str] = None
    dimensional_weight: Optional[Decimal] = None
    dimensions: Optional[str] = None
    declared_value: Optional[Decimal] = None
    express_surcharge: Decimal = Decimal("0")
    consolidation_fee: Decimal = Decimal("0")
    handling_fee: Decimal = Decimal("0")
    insurance_cost: Decimal = Decimal("0")
    transit_label: Optional[str] = None
    transit_average_days: Optional[int] = None
    notes: Optional[str] = None
    terms: List[str] = field(default_factory=lambda: list(DEFAULT_TERMS))


def _card(title: str, *lines: Optional[str]):
    return E.DIV(E.CLASS("info-card"), E.H4(title), *[E.P(line) for line in lines if line])


def _charge_rows(doc: QuoteDocument, service_label: str) -> list:
    rows = [E.TR(E.TD(f"Base Air Cargo Transport ({service_label})"), E.TD(format_currency(doc.base_shipping_cost)))]
    optional = (
        ("Consolidation & Processing", doc.consolidation_fee),
        ("Handling & Security Screening", doc.handling_fee),
        ("Express Priority Surcharge", doc.express_surcharge),
        ("Insurance Coverage", doc.insurance_cost),
    )
    for label, amount in optional:
        if amount:
            rows.append(E.TR(E.TD(label), E.TD(format_currency(amount))))
    rows.append(E.TR(E.CLASS("total-row"), E.TD("Total"), E.TD(format_currency(doc.total_cost))))
    return rows


def render_quote_html(doc: QuoteDocument, config: Optional[Settings] = None) -> str:
    """Render ``doc`` to a standalone HTML page; all text is escaped by lxml."""
    cfg = config or default_settings
    service_label = SERVICE_LABELS.get(doc.service_type, doc.service_type)
    destination = f"{doc.destination_city}, {doc.destination_country}" if doc.destination_city else doc.destination_country
    declared = (
        format_currency(doc.declared_value)
        if doc.declared_value and doc.declared_value > 0
        else "Will be confirmed prior to departure"
    )

    sections = [
        E.DIV(
            E.CLASS("section"),
            E.H3(E.CLASS("section-title"), "Client Overview"),
            _card("Recipient", doc.customer_name, doc.customer_email, doc.customer_phone),
            _card("Origin Facility", cfg.company_name, cfg.company_address, cfg.company_phone, cfg.company_email),
            _card(
                "Destination",
                destination,
                f"Airport Code: {doc.airport_code}" if doc.airport_code else None,
                f"Estimated Transit: {doc.transit_label}" if doc.transit_label else None,
            ),
        ),
        E.DIV(
            E.CLASS("section"),
            E.H3(E.CLASS("section-title"), "Package & Service Details"),
            _card(
                "Service Level",
                service_label,
                f"Avg Transit: {doc.transit_average_days} days" if doc.transit_average_days else None,
            ),
            _card(
                "Weight Metrics",
                f"Actual Weight: {format_weight(doc.actual_weight)}",
                f"Billable Weight: {format_weight(doc.billable_weight)}",
                f"Dimensional Weight: {format_weight(doc.dimensional_weight)}" if doc.dimensional_weight else None,
            ),
            _card(
                "Dimensions & Value",
                f"Dimensions: {doc.dimensions or 'Provided upon booking'}",
                f"Declared Value: {declared}",
                f"Insurance: {format_currency(doc.insurance_cost)}",
            ),
        ),
        E.DIV(
            E.CLASS("section"),
            E.H3(E.CLASS("section-title"), "Charges"),
            E.TABLE(
                E.THEAD(E.TR(E.TH("Description"), E.TH("Amount (USD)"))),
                E.TBODY(*_charge_rows(doc, service_label)),
            ),
        ),
        E.DIV(
            E.CLASS("section"),
            E.H3(E.CLASS("section-title"), "Terms & Conditions"),
            E.DIV(E.CLASS("terms"), E.OL(*[E.LI(term) for term in doc.terms])),
        ),
    ]
    if doc.notes:
        sections.append(
            E.DIV(
                E.CLASS("section"),
                E.H3(E.CLASS("section-title"), "Special Instructions"),
                E.DIV(E.CLASS("info-card"), E.P(doc.notes)),
            )
        )

    page = E.HTML(
        E.HEAD(
            E.META(charset="utf-8"),
            E.TITLE(f"{cfg.company_name} Quotation {doc.reference}"),
            E.STYLE(_STYLES),
        ),
        E.BODY(
            E.DIV(
                E.CLASS("wrapper"),
                E.DIV(
                    E.CLASS("header"),
                    E.DIV(
                        E.DIV(E.CLASS("brand-title"), cfg.company_name),
                        E.DIV(E.CLASS("brand-tagline"), cfg.company_tagline),
                    ),
                    E.DIV(
                        E.CLASS("quote-meta"),
                        E.P(E.STRONG("Quote: "), doc.reference),
                        E.P(E.STRONG("Issued: "), doc.created_at.strftime("%b %d, %Y")),
                        E.P(E.STRONG("Valid Until: "), doc.expires_at.strftime("%b %d, %Y")),
                    ),
                ),
                *sections,
                E.DIV(
                    E.CLASS("footer"),
                    f"{cfg.company_name} | {cfg.company_address} | {cfg.company_phone} | {cfg.company_website}",
                ),
            )
        ),
        lang="en",
    )
    return html.tostring(page, doctype="<!DOCTYPE html>", encoding="unicode", pretty_print=True)
