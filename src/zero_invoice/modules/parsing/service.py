from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

from zero_invoice.core.logging import get_logger, log_event, monotonic_ms
from zero_invoice.modules.ai.client import GeminiClient
from zero_invoice.modules.catalog.models import (
    Address,
    Customer,
    InvoiceDraft,
    Item,
    LineItem,
)
from zero_invoice.modules.matching.models import MatchDecision
from zero_invoice.modules.matching.service import match_customer, match_line_items
from zero_invoice.modules.parsing.ai import parse_with_ai
from zero_invoice.modules.parsing.models import (
    ExtractedInvoice,
    ParsedAddress,
    ParsedInvoiceData,
)
from zero_invoice.modules.parsing.patterns import PATTERN_CONFIDENCE, parse_with_patterns

logger = get_logger(__name__)

AI_FAILED_WARNING = "AI parsing failed. Using pattern matching fallback."
AI_UNAVAILABLE_WARNING = "AI parsing not available. Using pattern matching with lower accuracy."
MISSING_INVOICE_NUMBER = "Invoice number not found"
MISSING_CUSTOMER_NAME = "Customer name not found"
MISSING_TOTAL = "Total amount not found"
NO_LINE_ITEMS = "No line items found"

EDITABLE_FIELDS = frozenset(
    {
        "invoice_number",
        "issue_date",
        "due_date",
        "customer_name",
        "customer_email",
        "subtotal",
        "tax",
        "tax_rate",
        "total",
        "notes",
    }
)


async def parse_invoice(
    text: str,
    customers: Iterable[Customer],
    items: Iterable[Item],
    *,
    ai: GeminiClient | None = None,
    temperature: float = 0.3,
    max_output_tokens: int = 2048,
    max_chars: int = 12000,
) -> ExtractedInvoice:
    """
    Turn raw document text into a reviewable invoice.

    The AI backend is tried first when configured; any failure there falls
    back to deterministic pattern extraction with a warning. Parsing never
    raises for bad content: problems surface as `errors` and `warnings`.
    """
    start = time.monotonic()
    warnings: list[str] = []

    parsed: ParsedInvoiceData | None = None
    method = "patterns"
    confidence = PATTERN_CONFIDENCE
    if ai is not None and ai.is_configured():
        parsed, reason = await parse_with_ai(
            text,
            ai,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            max_chars=max_chars,
        )
        if parsed is not None:
            method = "ai"
            confidence = min(0.95, 0.5 + (parsed.non_null_field_count() / 10) * 0.5)
        else:
            log_event(logger, "parse.ai.fallback", level=logging.WARNING, reason=reason)
            warnings.append(AI_FAILED_WARNING)
    else:
        warnings.append(AI_UNAVAILABLE_WARNING)

    if parsed is None:
        parsed = parse_with_patterns(text)

    errors, validation_warnings = validate_parsed(parsed)
    warnings.extend(validation_warnings)

    items = list(items)
    customer_match = match_customer(parsed.customer_name, parsed.customer_email, customers)
    item_matches = match_line_items(parsed.line_items, items)

    result = ExtractedInvoice(
        raw_text=text,
        parsed=parsed,
        invoice=to_invoice_draft(parsed),
        confidence=confidence,
        method=method,
        errors=tuple(errors),
        warnings=tuple(warnings),
        customer_match=customer_match,
        item_matches=item_matches,
    )
    log_event(
        logger,
        "parse.finish",
        method=method,
        confidence=round(confidence, 3),
        errors=len(result.errors),
        warnings=len(result.warnings),
        line_items=len(parsed.line_items),
        duration_ms=monotonic_ms(start),
    )
    return result


def validate_parsed(parsed: ParsedInvoiceData) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    if parsed.invoice_number is None:
        errors.append(MISSING_INVOICE_NUMBER)
    if parsed.customer_name is None:
        errors.append(MISSING_CUSTOMER_NAME)
    if parsed.total is None:
        errors.append(MISSING_TOTAL)
    if not parsed.line_items:
        warnings.append(NO_LINE_ITEMS)
    return errors, warnings


def to_invoice_draft(parsed: ParsedInvoiceData) -> InvoiceDraft:
    line_items = [
        LineItem(
            name=li.name,
            description=li.description,
            quantity=li.quantity,
            unit_price=li.unit_price,
            total=li.quantity * li.unit_price,
        )
        for li in parsed.line_items
    ]
    subtotal = (
        parsed.subtotal
        if parsed.subtotal is not None
        else round(sum(li.total for li in line_items), 2)
    )
    tax = parsed.tax if parsed.tax is not None else 0.0
    total = parsed.total if parsed.total is not None else subtotal + tax
    if parsed.tax_rate is not None:
        tax_rate = parsed.tax_rate
    else:
        tax_rate = tax / subtotal if subtotal > 0 else 0.0

    return InvoiceDraft(
        invoice_number=parsed.invoice_number,
        issue_date=parsed.issue_date,
        due_date=parsed.due_date,
        customer_name=parsed.customer_name,
        customer_email=parsed.customer_email,
        customer_address=_to_address(parsed.customer_address),
        line_items=line_items,
        subtotal=subtotal,
        tax=tax,
        tax_rate=tax_rate,
        total=total,
        notes=parsed.notes,
    )


def apply_edits(
    extracted: ExtractedInvoice,
    changes: Mapping[str, Any],
    customers: Iterable[Customer],
) -> ExtractedInvoice:
    """Apply reviewer edits to a parsed invoice and re-run validation."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    normalized = {k: (None if v == "" else v) for k, v in changes.items()}
    parsed = dataclasses.replace(extracted.parsed, **normalized)
    # Amounts the reviewer did not set are derived again from the edited values.
    draft = to_invoice_draft(parsed).model_copy(
        update={"line_items": extracted.invoice.line_items}
    )

    errors, warnings = validate_parsed(parsed)
    kept_warnings = [
        w for w in extracted.warnings if w in (AI_FAILED_WARNING, AI_UNAVAILABLE_WARNING)
    ]

    customer_match: MatchDecision = extracted.customer_match
    if "customer_name" in normalized or "customer_email" in normalized:
        customer_match = match_customer(parsed.customer_name, parsed.customer_email, customers)

    return dataclasses.replace(
        extracted,
        parsed=parsed,
        invoice=draft,
        errors=tuple(errors),
        warnings=tuple(kept_warnings + warnings),
        customer_match=customer_match,
    )


def _to_address(address: ParsedAddress | None) -> Address | None:
    if address is None or address.is_empty():
        return None
    return Address(
        street=address.street or "",
        city=address.city or "",
        state=address.state or "",
        zip_code=address.zip_code or "",
        country=address.country or "",
    )
