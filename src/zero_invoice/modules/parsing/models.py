from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from zero_invoice.modules.catalog.models import InvoiceDraft
from zero_invoice.modules.matching.models import MatchDecision


@dataclass(frozen=True)
class ParsedAddress:
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None

    def is_empty(self) -> bool:
        return not any((self.street, self.city, self.state, self.zip_code, self.country))


@dataclass(frozen=True)
class ParsedLineItem:
    name: str
    description: str
    quantity: float
    unit_price: float


@dataclass(frozen=True)
class ParsedInvoiceData:
    """Best-effort structured guess at an invoice. Absent values are None, never defaulted."""

    invoice_number: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_address: ParsedAddress | None = None
    line_items: tuple[ParsedLineItem, ...] = ()
    subtotal: float | None = None
    tax: float | None = None
    tax_rate: float | None = None
    total: float | None = None
    notes: str | None = None

    def non_null_field_count(self) -> int:
        values = (
            self.invoice_number,
            self.issue_date,
            self.due_date,
            self.customer_name,
            self.customer_email,
            self.customer_address,
            self.line_items,
            self.subtotal,
            self.tax,
            self.tax_rate,
            self.total,
            self.notes,
        )
        return sum(1 for v in values if v is not None and v != "" and v != ())


@dataclass(frozen=True)
class ExtractedInvoice:
    raw_text: str
    parsed: ParsedInvoiceData
    invoice: InvoiceDraft
    confidence: float
    method: str
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    customer_match: MatchDecision = field(default_factory=MatchDecision.new)
    # Keyed by line-item position so duplicate item names keep separate decisions.
    item_matches: dict[int, MatchDecision] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors
