from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from zero_invoice.api.deps import ImportRegistry, get_import_session, get_registry
from zero_invoice.core.logging import get_logger, log_event
from zero_invoice.modules.extraction.models import RawDocument
from zero_invoice.modules.imports.schemas import (
    CommitIn,
    CommitOut,
    EntryUpdateIn,
    ImportEntryOut,
    ImportSessionOut,
    ImportStatsOut,
    SelectionIn,
)
from zero_invoice.modules.imports.service import (
    ImportEntryNotFound,
    ImportSession,
    ImportStateError,
)

# Handlers are async so session state is only touched from the event loop.
router = APIRouter(prefix="/imports", tags=["imports"])
logger = get_logger(__name__)

T = TypeVar("T")


def _session_out(session: ImportSession) -> ImportSessionOut:
    selected = set(session.selected_ids)
    stats = session.stats()
    return ImportSessionOut(
        id=session.id,
        entries=[ImportEntryOut.from_entry(e, selected=e.id in selected) for e in session.entries],
        stats=ImportStatsOut(
            total=stats.total,
            pending=stats.pending,
            processing=stats.processing,
            ready=stats.ready,
            success=stats.success,
            failed=stats.failed,
        ),
        selected_ids=session.selected_ids,
    )


def _entry_out(session: ImportSession, entry_id: str) -> ImportEntryOut:
    entry = _call(lambda: session.get(entry_id))
    return ImportEntryOut.from_entry(entry, selected=entry_id in session.selected_ids)


def _call(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except ImportEntryNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Import entry not found"
        ) from e
    except ImportStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


@router.post("", response_model=ImportSessionOut)
async def create_import_session(
    registry: ImportRegistry = Depends(get_registry),
) -> ImportSessionOut:
    return _session_out(registry.create())


@router.get("/{session_id}", response_model=ImportSessionOut)
async def get_import_session_state(
    session: ImportSession = Depends(get_import_session),
) -> ImportSessionOut:
    return _session_out(session)


@router.delete("/{session_id}")
async def delete_import_session(
    session_id: str, registry: ImportRegistry = Depends(get_registry)
) -> dict[str, str]:
    if not registry.drop(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Import session not found"
        )
    return {"status": "ok"}


@router.post("/{session_id}/files", response_model=list[ImportEntryOut])
async def upload_import_files(
    uploads: list[UploadFile] = File(...),
    session: ImportSession = Depends(get_import_session),
) -> list[ImportEntryOut]:
    docs: list[RawDocument] = []
    for upload in uploads:
        body = await upload.read()
        log_event(
            logger,
            "upload.received",
            import_session_id=session.id,
            filename=upload.filename or "upload.pdf",
            content_type=upload.content_type,
            byte_size=len(body),
        )
        docs.append(
            RawDocument(
                filename=upload.filename or "upload.pdf",
                body=body,
                content_type=upload.content_type,
            )
        )
    return [ImportEntryOut.from_entry(e) for e in session.add_files(docs)]


@router.post("/{session_id}/process", response_model=ImportSessionOut)
async def process_import_session(
    session: ImportSession = Depends(get_import_session),
) -> ImportSessionOut:
    await session.process_pending()
    return _session_out(session)


@router.get("/{session_id}/entries/{entry_id}", response_model=ImportEntryOut)
async def get_import_entry(
    entry_id: str, session: ImportSession = Depends(get_import_session)
) -> ImportEntryOut:
    return _entry_out(session, entry_id)


@router.patch("/{session_id}/entries/{entry_id}", response_model=ImportEntryOut)
async def update_import_entry(
    entry_id: str,
    payload: EntryUpdateIn,
    session: ImportSession = Depends(get_import_session),
) -> ImportEntryOut:
    changes = payload.model_dump(exclude_unset=True)
    _call(lambda: session.update_entry(entry_id, **changes))
    return _entry_out(session, entry_id)


@router.delete("/{session_id}/entries/{entry_id}", response_model=ImportSessionOut)
async def remove_import_entry(
    entry_id: str, session: ImportSession = Depends(get_import_session)
) -> ImportSessionOut:
    _call(lambda: session.remove(entry_id))
    return _session_out(session)


@router.post("/{session_id}/entries/{entry_id}/retry", response_model=ImportEntryOut)
async def retry_import_entry(
    entry_id: str, session: ImportSession = Depends(get_import_session)
) -> ImportEntryOut:
    _call(lambda: session.retry(entry_id))
    return _entry_out(session, entry_id)


@router.post("/{session_id}/remove-failed", response_model=ImportSessionOut)
async def remove_failed_entries(
    session: ImportSession = Depends(get_import_session),
) -> ImportSessionOut:
    session.remove_failed()
    return _session_out(session)


@router.post("/{session_id}/select", response_model=ImportSessionOut)
async def select_entries(
    payload: SelectionIn, session: ImportSession = Depends(get_import_session)
) -> ImportSessionOut:
    session.select(payload.entry_ids)
    return _session_out(session)


@router.post("/{session_id}/deselect", response_model=ImportSessionOut)
async def deselect_entries(
    payload: SelectionIn, session: ImportSession = Depends(get_import_session)
) -> ImportSessionOut:
    session.deselect(payload.entry_ids)
    return _session_out(session)


@router.post("/{session_id}/toggle-all", response_model=ImportSessionOut)
async def toggle_all_entries(
    session: ImportSession = Depends(get_import_session),
) -> ImportSessionOut:
    session.toggle_all()
    return _session_out(session)


@router.post("/{session_id}/commit", response_model=CommitOut)
async def commit_import_session(
    payload: CommitIn | None = None,
    session: ImportSession = Depends(get_import_session),
) -> CommitOut:
    entry_ids = payload.entry_ids if payload else None
    return CommitOut.from_result(session.commit(entry_ids))
