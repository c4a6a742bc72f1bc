from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from pydantic import ValidationError

from zero_invoice.core.config import Settings
from zero_invoice.core.logging import bound_import_session, get_logger, log_event, monotonic_ms
from zero_invoice.core.store import DomainStore
from zero_invoice.modules.ai.client import GeminiClient
from zero_invoice.modules.catalog.models import (
    Address,
    Customer,
    Invoice,
    Item,
    LineItem,
    new_id,
    utcnow,
)
from zero_invoice.modules.extraction import service as extraction_service
from zero_invoice.modules.extraction.models import RawDocument
from zero_invoice.modules.imports.models import (
    CommitResult,
    ImportEntry,
    ImportStats,
    ImportStatus,
)
from zero_invoice.modules.parsing.models import ExtractedInvoice
from zero_invoice.modules.parsing.service import apply_edits, parse_invoice

logger = get_logger(__name__)

DEFAULT_TEMPLATE_ID = "default"
INVALID_PDF_MESSAGE = "Invalid PDF file"


class ImportStateError(RuntimeError):
    pass


class ImportEntryNotFound(LookupError):
    pass


class CommitError(RuntimeError):
    pass


@dataclass(frozen=True)
class ImportContext:
    """Collaborators and limits for one import session."""

    store: DomainStore
    ai: GeminiClient | None = None
    max_concurrent: int = 3
    max_file_bytes: int = 10 * 1024 * 1024
    default_template_id: str | None = None
    ai_temperature: float = 0.3
    ai_max_output_tokens: int = 2048
    ai_max_chars: int = 12000

    @classmethod
    def from_settings(
        cls, settings: Settings, *, store: DomainStore, ai: GeminiClient | None = None
    ) -> ImportContext:
        return cls(
            store=store,
            ai=ai if ai is not None else GeminiClient.from_settings(settings),
            max_concurrent=max(1, int(settings.extract_max_concurrent)),
            max_file_bytes=int(settings.import_max_file_bytes),
            default_template_id=(settings.default_template_id or "").strip() or None,
            ai_temperature=float(settings.ai_temperature),
            ai_max_output_tokens=int(settings.ai_max_output_tokens),
            ai_max_chars=int(settings.ai_max_chars),
        )


class ImportSession:
    """
    Batch import of invoice PDFs: upload, extract, review, commit.

    All state lives on the session. The entry mapping and the selection are
    rebound, never mutated, so a reader holding `_entries` keeps a consistent
    snapshot while processing moves on.
    """

    def __init__(self, context: ImportContext, *, session_id: str | None = None):
        self.context = context
        self.id = session_id or new_id()
        self._entries: dict[str, ImportEntry] = {}
        self._selected: set[str] = set()

    @property
    def entries(self) -> list[ImportEntry]:
        return list(self._entries.values())

    def get(self, entry_id: str) -> ImportEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise ImportEntryNotFound(entry_id)
        return entry

    def stats(self) -> ImportStats:
        counts = {status: 0 for status in ImportStatus}
        for entry in self._entries.values():
            counts[entry.status] += 1
        return ImportStats(
            total=len(self._entries),
            pending=counts[ImportStatus.PENDING],
            processing=counts[ImportStatus.PROCESSING],
            ready=counts[ImportStatus.READY],
            success=counts[ImportStatus.SUCCESS],
            failed=counts[ImportStatus.FAILED],
        )

    def add_files(self, docs: Iterable[RawDocument]) -> list[ImportEntry]:
        added: list[ImportEntry] = []
        for doc in docs:
            entry = ImportEntry(id=new_id(), filename=doc.filename, size=doc.size, document=doc)
            added.append(entry)
            if doc.size > self.context.max_file_bytes:
                log_event(
                    logger,
                    "import.file.oversize",
                    level=logging.WARNING,
                    import_session_id=self.id,
                    entry_id=entry.id,
                    filename=doc.filename,
                    byte_size=doc.size,
                    max_bytes=self.context.max_file_bytes,
                )
        self._entries = {**self._entries, **{e.id: e for e in added}}
        log_event(logger, "import.files.added", import_session_id=self.id, count=len(added))
        return added

    def remove(self, entry_id: str) -> None:
        entry = self.get(entry_id)
        if entry.status == ImportStatus.PROCESSING:
            raise ImportStateError("Cannot remove an entry while it is processing")
        self._drop([entry_id])

    def remove_failed(self) -> int:
        failed = [e.id for e in self._entries.values() if e.status == ImportStatus.FAILED]
        self._drop(failed)
        return len(failed)

    def retry(self, entry_id: str) -> ImportEntry:
        entry = self.get(entry_id)
        if entry.status != ImportStatus.FAILED:
            raise ImportStateError("Only failed entries can be retried")
        if entry.document is None:
            raise ImportStateError("Uploaded document is no longer available")
        return self._replace(entry_id, status=ImportStatus.PENDING, progress=0, error=None)

    async def process_pending(self) -> list[ImportEntry]:
        """Process every pending entry, `max_concurrent` at a time."""
        start = time.monotonic()
        with bound_import_session(self.id):
            pending = [e.id for e in self._entries.values() if e.status == ImportStatus.PENDING]
            for batch in extraction_service.in_batches(pending, self.context.max_concurrent):
                await asyncio.gather(*(self._process_entry(entry_id) for entry_id in batch))
            stats = self.stats()
            log_event(
                logger,
                "import.process.finish",
                processed=len(pending),
                ready=stats.ready,
                failed=stats.failed,
                duration_ms=monotonic_ms(start),
            )
            entries = self._entries
            return [entries[i] for i in pending if i in entries]

    async def _process_entry(self, entry_id: str) -> None:
        # Claim synchronously: removed or already claimed entries are skipped.
        current = self._entries.get(entry_id)
        if current is None or current.status != ImportStatus.PENDING:
            return
        entry = self._replace(entry_id, status=ImportStatus.PROCESSING, progress=0)
        doc = entry.document
        try:
            if doc is None:
                raise ImportStateError("Uploaded document is no longer available")
            if not extraction_service.validate(doc):
                raise extraction_service.ExtractionError(INVALID_PDF_MESSAGE)

            result = await extraction_service.extract_text(
                doc, lambda p: self._advance(entry_id, round(p * 0.5))
            )
            self._advance(entry_id, 50)

            store = self.context.store
            extracted = await parse_invoice(
                result.text,
                store.customers(),
                store.items(),
                ai=self.context.ai,
                temperature=self.context.ai_temperature,
                max_output_tokens=self.context.ai_max_output_tokens,
                max_chars=self.context.ai_max_chars,
            )
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "import.entry.error",
                level=logging.WARNING,
                entry_id=entry_id,
                filename=entry.filename,
                error_type=type(e).__name__,
                error=str(e),
            )
            self._replace(
                entry_id, status=ImportStatus.FAILED, progress=0, error=str(e) or type(e).__name__
            )
            return

        self._replace(
            entry_id,
            status=ImportStatus.READY,
            progress=100,
            extracted=extracted,
            document=None,
        )

    def _advance(self, entry_id: str, progress: int) -> None:
        entry = self._entries.get(entry_id)
        if entry is None or entry.status != ImportStatus.PROCESSING:
            return
        if progress > entry.progress:
            self._replace(entry_id, progress=min(progress, 100))

    def _replace(self, entry_id: str, **changes: Any) -> ImportEntry:
        old = self._entries.get(entry_id)
        if old is None:
            raise ImportEntryNotFound(entry_id)
        new = dataclasses.replace(old, **changes)
        self._entries = {**self._entries, entry_id: new}
        if new.status != old.status:
            log_event(
                logger,
                "import.entry.status",
                import_session_id=self.id,
                entry_id=entry_id,
                filename=new.filename,
                from_status=old.status.value,
                to_status=new.status.value,
            )
        if new.status != ImportStatus.READY and entry_id in self._selected:
            self._selected = self._selected - {entry_id}
        return new

    def _drop(self, entry_ids: Iterable[str]) -> None:
        doomed = set(entry_ids)
        self._entries = {k: v for k, v in self._entries.items() if k not in doomed}
        self._selected = self._selected - doomed

    # Review

    @property
    def selected_ids(self) -> list[str]:
        return [
            e.id
            for e in self._entries.values()
            if e.id in self._selected and e.status == ImportStatus.READY
        ]

    def select(self, entry_ids: Iterable[str]) -> list[str]:
        entries = self._entries
        ready = {
            i for i in entry_ids if i in entries and entries[i].status == ImportStatus.READY
        }
        self._selected = self._selected | ready
        return self.selected_ids

    def deselect(self, entry_ids: Iterable[str]) -> list[str]:
        self._selected = self._selected - set(entry_ids)
        return self.selected_ids

    def toggle_all(self) -> list[str]:
        ready = [e.id for e in self._entries.values() if e.status == ImportStatus.READY]
        if ready and all(i in self._selected for i in ready):
            self._selected = set()
        else:
            self._selected = set(ready)
        return self.selected_ids

    def update_entry(self, entry_id: str, **changes: Any) -> ImportEntry:
        entry = self.get(entry_id)
        if entry.status != ImportStatus.READY or entry.extracted is None:
            raise ImportStateError("Only ready entries can be edited")
        extracted = apply_edits(entry.extracted, changes, self.context.store.customers())
        log_event(
            logger,
            "import.entry.edited",
            import_session_id=self.id,
            entry_id=entry_id,
            fields=sorted(changes),
            errors=len(extracted.errors),
        )
        return self._replace(entry_id, extracted=extracted)

    # Commit

    def commit(self, selected_ids: Sequence[str] | None = None) -> CommitResult:
        """
        Turn selected ready entries into customers, items and invoices.

        Each entry commits or fails on its own. New records are appended to
        the store in three batches once every entry has been handled.
        """
        start = time.monotonic()
        with bound_import_session(self.id):
            ids = list(selected_ids) if selected_ids is not None else self.selected_ids
            store = self.context.store
            template_ids = store.template_ids()
            today = utcnow().date()

            customers: list[Customer] = []
            items: list[Item] = []
            invoices: list[Invoice] = []
            succeeded: list[str] = []
            failed: dict[str, str] = {}

            for entry_id in ids:
                entry = self._entries.get(entry_id)
                if entry is None or entry.status != ImportStatus.READY or entry.extracted is None:
                    log_event(
                        logger,
                        "import.commit.skipped",
                        level=logging.WARNING,
                        entry_id=entry_id,
                        status=entry.status.value if entry else None,
                    )
                    continue
                try:
                    customer, is_new_customer, new_items, invoice = self._build_records(
                        entry.extracted, template_ids=template_ids, today=today
                    )
                except CommitError as e:
                    failed[entry_id] = str(e)
                    self._replace(entry_id, status=ImportStatus.FAILED, progress=0, error=str(e))
                    continue

                if is_new_customer:
                    customers.append(customer)
                items.extend(new_items)
                invoices.append(invoice)
                succeeded.append(entry_id)
                self._replace(entry_id, status=ImportStatus.SUCCESS)

            store.add_customers(customers)
            store.add_items(items)
            store.add_invoices(invoices)

            log_event(
                logger,
                "import.commit.finish",
                requested=len(ids),
                succeeded=len(succeeded),
                failed=len(failed),
                customers_created=len(customers),
                items_created=len(items),
                invoices_created=len(invoices),
                duration_ms=monotonic_ms(start),
            )
            return CommitResult(
                customers=tuple(customers),
                items=tuple(items),
                invoices=tuple(invoices),
                succeeded=tuple(succeeded),
                failed=failed,
            )

    def _build_records(
        self, extracted: ExtractedInvoice, *, template_ids: Sequence[str], today: date
    ) -> tuple[Customer, bool, list[Item], Invoice]:
        if not extracted.is_valid:
            raise CommitError("; ".join(extracted.errors))

        store = self.context.store
        draft = extracted.invoice
        template_id = self._resolve_template_id(template_ids)

        customer = None
        decision = extracted.customer_match
        if not decision.is_new and decision.existing_id:
            customer = store.get_customer(decision.existing_id)
        is_new_customer = customer is None
        if customer is None:
            try:
                customer = Customer(
                    name=draft.customer_name,
                    email=draft.customer_email or "",
                    billing_address=draft.customer_address or Address(),
                )
            except ValidationError as e:
                raise CommitError(f"Invalid customer data: {e.error_count()} error(s)") from e

        new_items: list[Item] = []
        line_items: list[LineItem] = []
        for idx, li in enumerate(draft.line_items):
            match = extracted.item_matches.get(idx)
            item = None
            if match is not None and not match.is_new and match.existing_id:
                item = store.get_item(match.existing_id)
            if item is None:
                item = Item(name=li.name, description=li.description, unit_price=li.unit_price)
                new_items.append(item)
            line_items.append(li.model_copy(update={"id": new_id(), "item_id": item.id}))

        total = draft.total if draft.total is not None else draft.subtotal + draft.tax
        try:
            invoice = Invoice(
                invoice_number=draft.invoice_number,
                customer_id=customer.id,
                customer_snapshot=customer,
                line_items=line_items,
                subtotal=draft.subtotal,
                tax=draft.tax,
                tax_rate=draft.tax_rate,
                total=total,
                template_id=template_id,
                issue_date=draft.issue_date or today,
                due_date=draft.due_date or today,
                notes=draft.notes,
            )
        except ValidationError as e:
            raise CommitError(f"Invalid invoice data: {e.error_count()} error(s)") from e
        return customer, is_new_customer, new_items, invoice

    def _resolve_template_id(self, template_ids: Sequence[str]) -> str:
        configured = self.context.default_template_id
        if configured:
            if template_ids and configured not in template_ids:
                raise CommitError(f"Template not found: {configured}")
            return configured
        return template_ids[0] if template_ids else DEFAULT_TEMPLATE_ID
