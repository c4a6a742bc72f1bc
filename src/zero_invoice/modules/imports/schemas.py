from __future__ import annotations

from datetime import date

from pydantic import BaseModel

from zero_invoice.modules.catalog.models import InvoiceDraft
from zero_invoice.modules.imports.models import CommitResult, ImportEntry, ImportStatus
from zero_invoice.modules.matching.models import MatchDecision
from zero_invoice.modules.parsing.models import ExtractedInvoice


class MatchDecisionOut(BaseModel):
    existing_id: str | None
    is_new: bool
    match_confidence: float

    @classmethod
    def from_decision(cls, decision: MatchDecision) -> MatchDecisionOut:
        return cls(
            existing_id=decision.existing_id,
            is_new=decision.is_new,
            match_confidence=decision.match_confidence,
        )


class ExtractedInvoiceOut(BaseModel):
    method: str
    confidence: float
    errors: list[str]
    warnings: list[str]
    invoice: InvoiceDraft
    customer_match: MatchDecisionOut
    item_matches: dict[int, MatchDecisionOut]

    @classmethod
    def from_extracted(cls, extracted: ExtractedInvoice) -> ExtractedInvoiceOut:
        return cls(
            method=extracted.method,
            confidence=extracted.confidence,
            errors=list(extracted.errors),
            warnings=list(extracted.warnings),
            invoice=extracted.invoice,
            customer_match=MatchDecisionOut.from_decision(extracted.customer_match),
            item_matches={
                idx: MatchDecisionOut.from_decision(d) for idx, d in extracted.item_matches.items()
            },
        )


class ImportEntryOut(BaseModel):
    id: str
    filename: str
    size: int
    status: ImportStatus
    progress: int
    error: str | None
    selected: bool = False
    extracted: ExtractedInvoiceOut | None = None

    @classmethod
    def from_entry(cls, entry: ImportEntry, *, selected: bool = False) -> ImportEntryOut:
        return cls(
            id=entry.id,
            filename=entry.filename,
            size=entry.size,
            status=entry.status,
            progress=entry.progress,
            error=entry.error,
            selected=selected,
            extracted=(
                ExtractedInvoiceOut.from_extracted(entry.extracted) if entry.extracted else None
            ),
        )


class ImportStatsOut(BaseModel):
    total: int
    pending: int
    processing: int
    ready: int
    success: int
    failed: int


class ImportSessionOut(BaseModel):
    id: str
    entries: list[ImportEntryOut]
    stats: ImportStatsOut
    selected_ids: list[str]


class EntryUpdateIn(BaseModel):
    invoice_number: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    subtotal: float | None = None
    tax: float | None = None
    tax_rate: float | None = None
    total: float | None = None
    notes: str | None = None


class SelectionIn(BaseModel):
    entry_ids: list[str]


class CommitIn(BaseModel):
    entry_ids: list[str] | None = None


class CommitOut(BaseModel):
    succeeded: list[str]
    failed: dict[str, str]
    customers_created: int
    items_created: int
    invoices_created: int
    invoice_ids: list[str]

    @classmethod
    def from_result(cls, result: CommitResult) -> CommitOut:
        return cls(
            succeeded=list(result.succeeded),
            failed=dict(result.failed),
            customers_created=len(result.customers),
            items_created=len(result.items),
            invoices_created=len(result.invoices),
            invoice_ids=[inv.id for inv in result.invoices],
        )
