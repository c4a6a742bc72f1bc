from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from io import BytesIO
from typing import TypeVar

from pypdf import PdfReader

from zero_invoice.core.logging import get_logger, log_event, log_exception, monotonic_ms
from zero_invoice.modules.extraction.models import DocumentMetadata, ExtractionResult, RawDocument

logger = get_logger(__name__)

T = TypeVar("T")

PAGE_SEPARATOR = "\n\n"
PDF_MAGIC = b"%PDF-"

ProgressCallback = Callable[[int], None]
FileProgressCallback = Callable[[str, int], None]


class ExtractionError(RuntimeError):
    pass


def validate(doc: RawDocument) -> bool:
    ctype = (doc.content_type or "").lower().split(";")[0].strip()
    declared_pdf = ctype == "application/pdf" or doc.filename.lower().endswith(".pdf")
    if not declared_pdf:
        return False
    return doc.body[: len(PDF_MAGIC)] == PDF_MAGIC


def validate_many(docs: Iterable[RawDocument]) -> dict[str, bool]:
    return {doc.filename: validate(doc) for doc in docs}


async def extract_text(
    doc: RawDocument, on_progress: ProgressCallback | None = None
) -> ExtractionResult:
    start = time.monotonic()
    log_event(
        logger,
        "extraction.start",
        filename=doc.filename,
        content_type=doc.content_type,
        byte_size=doc.size,
    )
    try:
        reader = PdfReader(BytesIO(doc.body))
        page_count = len(reader.pages)
        metadata = _extract_metadata(reader, filename=doc.filename)

        parts: list[str] = []
        for page_no, page in enumerate(reader.pages, start=1):
            parts.append(_clean_page_text(page.extract_text() or ""))
            if on_progress:
                on_progress(_percent(page_no, page_count))
            # Yield between pages so sibling extractions and progress consumers run.
            await asyncio.sleep(0)
    except Exception as e:
        log_exception(
            logger,
            "extraction.error",
            filename=doc.filename,
            duration_ms=monotonic_ms(start),
        )
        raise ExtractionError(f"Failed to extract text from PDF: {e}") from e

    text = PAGE_SEPARATOR.join(parts) if any(p.strip() for p in parts) else ""
    log_event(
        logger,
        "extraction.finish",
        filename=doc.filename,
        page_count=page_count,
        text_chars=len(text),
        duration_ms=monotonic_ms(start),
    )
    return ExtractionResult(text=text, page_count=page_count, metadata=metadata)


async def extract_many(
    docs: Iterable[RawDocument],
    on_file_progress: FileProgressCallback | None = None,
    *,
    max_concurrent: int = 3,
) -> tuple[dict[str, ExtractionResult], dict[str, str]]:
    """
    Extract a list of documents in fixed-size batches.

    Every document of a batch runs concurrently and the whole batch settles
    before the next one starts. Failures are collected per filename and never
    abort sibling documents.
    """
    results: dict[str, ExtractionResult] = {}
    errors: dict[str, str] = {}

    for batch in in_batches(list(docs), max_concurrent):
        outcomes = await asyncio.gather(
            *(extract_text(doc, _file_progress(doc.filename, on_file_progress)) for doc in batch),
            return_exceptions=True,
        )
        for doc, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                errors[doc.filename] = str(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[doc.filename] = outcome

    if errors:
        log_event(
            logger,
            "extraction.batch.failures",
            level=logging.WARNING,
            failed_count=len(errors),
            failed_files=sorted(errors),
        )
    return results, errors


def in_batches(seq: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for i in range(0, len(seq), size):
        yield seq[i : i + size]


def _file_progress(
    filename: str, on_file_progress: FileProgressCallback | None
) -> ProgressCallback | None:
    if on_file_progress is None:
        return None

    def _report(progress: int) -> None:
        on_file_progress(filename, progress)

    return _report


def _extract_metadata(reader: PdfReader, *, filename: str) -> DocumentMetadata:
    try:
        info = reader.metadata
        if info is None:
            return DocumentMetadata()
        return DocumentMetadata(
            title=_clean_meta(info.title),
            author=_clean_meta(info.author),
            subject=_clean_meta(info.subject),
            creator=_clean_meta(info.creator),
            producer=_clean_meta(info.producer),
            creation_date=info.creation_date,
        )
    except Exception:  # noqa: BLE001
        log_exception(logger, "extraction.metadata.error", filename=filename)
        return DocumentMetadata()


def _clean_meta(value: object) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _clean_page_text(text: str) -> str:
    return text.replace("\u202f", " ").replace("\xa0", " ")


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return int(done * 100 / total + 0.5)
