from __future__ import annotations

import asyncio

import pytest

_HEADER = b"%PDF-1.4\n"


def _doc(name: str, text: str = ""):
    from zero_invoice.modules.extraction.models import RawDocument

    return RawDocument(filename=name, body=_HEADER + text.encode(), content_type="application/pdf")


def _invoice_text(number: str, customer: str = "Acme Corp", total: str | None = "300.00") -> str:
    lines = [f"Invoice #{number}", customer, "Consulting 2 $150.00 $300.00"]
    if total is not None:
        lines.append(f"Total: ${total}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def fake_extract(monkeypatch):
    """Serve each document's embedded text instead of running a PDF parser."""
    from zero_invoice.modules.extraction import service as extraction_service
    from zero_invoice.modules.extraction.models import ExtractionResult

    calls: list[str] = []

    async def _extract(doc, on_progress=None):
        calls.append(doc.filename)
        for p in (50, 100):
            if on_progress:
                on_progress(p)
            await asyncio.sleep(0)
        return ExtractionResult(text=doc.body[len(_HEADER) :].decode(), page_count=1)

    monkeypatch.setattr(extraction_service, "extract_text", _extract)
    return calls


def _session(store, **kwargs):
    from zero_invoice.modules.imports.service import ImportContext, ImportSession

    return ImportSession(ImportContext(store=store, **kwargs))


def test_add_files_creates_pending_entries(store):
    from zero_invoice.modules.imports.models import ImportStatus

    session = _session(store)
    entries = session.add_files([_doc("a.pdf"), _doc("b.pdf")])

    assert [e.status for e in entries] == [ImportStatus.PENDING, ImportStatus.PENDING]
    assert all(e.progress == 0 for e in entries)
    assert session.stats().total == 2
    assert session.stats().pending == 2


def test_process_pending_moves_entries_to_ready(store, fake_extract):
    from zero_invoice.modules.imports.models import ImportStatus

    session = _session(store)
    (entry,) = session.add_files([_doc("a.pdf", _invoice_text("INV-1"))])
    asyncio.run(session.process_pending())

    ready = session.get(entry.id)
    assert ready.status == ImportStatus.READY
    assert ready.progress == 100
    assert ready.document is None
    assert ready.extracted is not None
    assert ready.extracted.invoice.invoice_number == "INV-1"
    assert session.stats().ready == 1


def test_progress_never_goes_backwards_while_processing(store, monkeypatch):
    from zero_invoice.modules.extraction import service as extraction_service
    from zero_invoice.modules.extraction.models import ExtractionResult

    session = _session(store)
    (entry,) = session.add_files([_doc("a.pdf")])
    seen: list[int] = []

    async def _extract(doc, on_progress=None):
        for p in (20, 10, 60, 100):
            on_progress(p)
            seen.append(session.get(entry.id).progress)
        return ExtractionResult(text="", page_count=1)

    monkeypatch.setattr(extraction_service, "extract_text", _extract)
    asyncio.run(session.process_pending())

    assert seen == [10, 10, 30, 50]
    assert session.get(entry.id).progress == 100


def test_invalid_pdf_fails_and_can_be_retried(store, fake_extract):
    from zero_invoice.modules.extraction.models import RawDocument
    from zero_invoice.modules.imports.models import ImportStatus
    from zero_invoice.modules.imports.service import ImportStateError

    session = _session(store)
    (entry,) = session.add_files([RawDocument(filename="fake.pdf", body=b"plain text")])
    asyncio.run(session.process_pending())

    failed = session.get(entry.id)
    assert failed.status == ImportStatus.FAILED
    assert failed.error == "Invalid PDF file"
    assert failed.progress == 0
    assert failed.document is not None
    assert fake_extract == []

    retried = session.retry(entry.id)
    assert retried.status == ImportStatus.PENDING
    assert retried.error is None

    with pytest.raises(ImportStateError):
        session.retry(entry.id)


def test_batch_failure_is_isolated_and_batches_run_in_order(store, monkeypatch):
    from zero_invoice.modules.extraction import service as extraction_service
    from zero_invoice.modules.extraction.models import ExtractionResult
    from zero_invoice.modules.imports.models import ImportStatus

    events: list[tuple[str, str]] = []

    async def _extract(doc, on_progress=None):
        events.append(("start", doc.filename))
        await asyncio.sleep(0)
        if doc.filename == "2.pdf":
            raise extraction_service.ExtractionError("Failed to extract text from PDF: bad xref")
        events.append(("end", doc.filename))
        return ExtractionResult(text=_invoice_text(doc.filename), page_count=1)

    monkeypatch.setattr(extraction_service, "extract_text", _extract)

    session = _session(store, max_concurrent=3)
    entries = session.add_files([_doc(f"{n}.pdf") for n in range(1, 6)])
    asyncio.run(session.process_pending())

    statuses = [session.get(e.id).status for e in entries]
    assert statuses == [
        ImportStatus.READY,
        ImportStatus.FAILED,
        ImportStatus.READY,
        ImportStatus.READY,
        ImportStatus.READY,
    ]
    assert session.get(entries[1].id).error == "Failed to extract text from PDF: bad xref"
    fourth_start = events.index(("start", "4.pdf"))
    assert events.index(("end", "1.pdf")) < fourth_start
    assert events.index(("end", "3.pdf")) < fourth_start

    assert session.remove_failed() == 1
    assert session.stats().total == 4


def test_remove_is_rejected_while_processing(store, monkeypatch):
    from zero_invoice.modules.extraction import service as extraction_service
    from zero_invoice.modules.extraction.models import ExtractionResult
    from zero_invoice.modules.imports.service import ImportStateError

    session = _session(store)
    (entry,) = session.add_files([_doc("a.pdf")])
    rejected: list[bool] = []

    async def _extract(doc, on_progress=None):
        try:
            session.remove(entry.id)
        except ImportStateError:
            rejected.append(True)
        return ExtractionResult(text="", page_count=1)

    monkeypatch.setattr(extraction_service, "extract_text", _extract)
    asyncio.run(session.process_pending())

    assert rejected == [True]
    session.remove(entry.id)
    assert session.entries == []


def test_pending_entry_removed_mid_run_is_skipped(store, monkeypatch):
    from zero_invoice.modules.extraction import service as extraction_service
    from zero_invoice.modules.extraction.models import ExtractionResult
    from zero_invoice.modules.imports.models import ImportStatus

    session = _session(store, max_concurrent=1)
    first, second, third = session.add_files([_doc(f"{n}.pdf") for n in range(3)])
    calls: list[str] = []

    async def _extract(doc, on_progress=None):
        calls.append(doc.filename)
        if doc.filename == "0.pdf":
            session.remove(second.id)
        return ExtractionResult(text=_invoice_text(doc.filename), page_count=1)

    monkeypatch.setattr(extraction_service, "extract_text", _extract)
    processed = asyncio.run(session.process_pending())

    assert calls == ["0.pdf", "2.pdf"]
    assert [e.id for e in processed] == [first.id, third.id]
    assert [e.status for e in session.entries] == [ImportStatus.READY, ImportStatus.READY]


def test_overlapping_runs_process_each_entry_once(store, fake_extract):
    from zero_invoice.modules.imports.models import ImportStatus

    session = _session(store, max_concurrent=1)
    entries = session.add_files([_doc(f"{n}.pdf", _invoice_text(f"INV-{n}")) for n in range(2)])

    async def _both():
        await asyncio.gather(session.process_pending(), session.process_pending())

    asyncio.run(_both())

    assert sorted(fake_extract) == ["0.pdf", "1.pdf"]
    assert all(session.get(e.id).status == ImportStatus.READY for e in entries)


def test_entry_snapshots_are_not_mutated_by_later_changes(store, fake_extract):
    from zero_invoice.modules.imports.models import ImportStatus

    session = _session(store)
    keep, drop = session.add_files([_doc("a.pdf", _invoice_text("INV-1")), _doc("b.pdf")])
    snapshot = session._entries

    session.remove(drop.id)
    asyncio.run(session.process_pending())

    assert [e.status for e in snapshot.values()] == [ImportStatus.PENDING, ImportStatus.PENDING]
    assert list(snapshot) == [keep.id, drop.id]
    assert session.get(keep.id).status == ImportStatus.READY


def test_unknown_entry_raises_not_found(store):
    from zero_invoice.modules.imports.service import ImportEntryNotFound

    session = _session(store)
    with pytest.raises(ImportEntryNotFound):
        session.get("missing")
    with pytest.raises(ImportEntryNotFound):
        session.remove("missing")


def test_only_ready_entries_are_selectable(store, fake_extract):
    from zero_invoice.modules.extraction.models import RawDocument

    session = _session(store)
    ready, bad = session.add_files(
        [_doc("a.pdf", _invoice_text("INV-1")), RawDocument(filename="b.pdf", body=b"nope")]
    )
    asyncio.run(session.process_pending())

    assert session.select([ready.id, bad.id]) == [ready.id]
    assert session.deselect([ready.id]) == []
    assert session.toggle_all() == [ready.id]
    assert session.toggle_all() == []


def test_update_entry_requires_ready_and_revalidates(store, fake_extract):
    from zero_invoice.modules.imports.service import ImportStateError

    session = _session(store)
    (entry,) = session.add_files([_doc("a.pdf", _invoice_text("INV-1", total=None))])

    with pytest.raises(ImportStateError):
        session.update_entry(entry.id, total=10.0)

    asyncio.run(session.process_pending())
    assert "Total amount not found" in session.get(entry.id).extracted.errors

    updated = session.update_entry(entry.id, total=300.0, customer_name="Globex Inc")
    assert updated.extracted.errors == ()
    assert updated.extracted.invoice.total == 300.0
    assert updated.extracted.customer_match.existing_id == "cust-2"


def test_commit_creates_separate_items_for_each_entry(fake_extract):
    from zero_invoice.core.store import InMemoryDomainStore
    from zero_invoice.modules.catalog.models import utcnow
    from zero_invoice.modules.imports.models import ImportStatus

    store = InMemoryDomainStore()
    session = _session(store)
    entries = session.add_files(
        [_doc("a.pdf", _invoice_text("INV-1")), _doc("b.pdf", _invoice_text("INV-2"))]
    )
    asyncio.run(session.process_pending())
    session.toggle_all()

    result = session.commit()

    assert result.succeeded == (entries[0].id, entries[1].id)
    assert result.failed == {}
    assert [i.name for i in result.items] == ["Consulting", "Consulting"]
    assert result.items[0].id != result.items[1].id
    assert len(store.items()) == 2
    assert len(store.customers()) == 2
    assert [inv.invoice_number for inv in store.invoices()] == ["INV-1", "INV-2"]

    invoice = store.invoices()[0]
    assert invoice.template_id == "default"
    assert invoice.status.value == "draft"
    assert invoice.issue_date == utcnow().date()
    assert invoice.line_items[0].item_id == result.items[0].id
    assert invoice.customer_snapshot.name == "Acme Corp"
    assert all(session.get(e.id).status == ImportStatus.SUCCESS for e in entries)
    assert session.selected_ids == []


def test_commit_reuses_matched_customer_and_item(store, fake_extract):
    session = _session(store)
    (entry,) = session.add_files([_doc("a.pdf", _invoice_text("INV-9", customer="Globex Inc"))])
    asyncio.run(session.process_pending())

    result = session.commit([entry.id])

    assert result.customers == ()
    assert result.items == ()
    (invoice,) = result.invoices
    assert invoice.customer_id == "cust-2"
    assert invoice.line_items[0].item_id == "item-1"
    assert invoice.template_id == "tpl-modern"
    assert len(store.customers()) == 2


def test_commit_failure_is_scoped_to_one_entry(store, fake_extract):
    from zero_invoice.modules.imports.models import ImportStatus

    session = _session(store)
    good, bad = session.add_files(
        [
            _doc("good.pdf", _invoice_text("INV-1")),
            _doc("bad.pdf", _invoice_text("INV-2", total=None)),
        ]
    )
    asyncio.run(session.process_pending())

    result = session.commit([good.id, bad.id])

    assert result.succeeded == (good.id,)
    assert "Total amount not found" in result.failed[bad.id]
    assert session.get(good.id).status == ImportStatus.SUCCESS
    failed = session.get(bad.id)
    assert failed.status == ImportStatus.FAILED
    assert failed.error == result.failed[bad.id]
    assert len(store.invoices()) == 1


def test_commit_fails_entry_when_configured_template_is_missing(store, fake_extract):
    session = _session(store, default_template_id="tpl-missing")
    (entry,) = session.add_files([_doc("a.pdf", _invoice_text("INV-1"))])
    asyncio.run(session.process_pending())

    result = session.commit([entry.id])

    assert result.succeeded == ()
    assert result.failed == {entry.id: "Template not found: tpl-missing"}
    assert store.invoices() == ()


def test_import_context_from_settings_uses_explicit_store():
    from zero_invoice.core.config import Settings
    from zero_invoice.core.store import InMemoryDomainStore
    from zero_invoice.modules.imports.service import ImportContext

    store = InMemoryDomainStore()
    ctx = ImportContext.from_settings(
        Settings(gemini_api_key="", extract_max_concurrent=0, default_template_id=" "),
        store=store,
    )

    assert ctx.store is store
    assert ctx.ai is not None and ctx.ai.is_configured() is False
    assert ctx.max_concurrent == 1
    assert ctx.default_template_id is None
