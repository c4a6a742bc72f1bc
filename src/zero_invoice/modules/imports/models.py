from __future__ import annotations

import enum
from dataclasses import dataclass, field

from zero_invoice.modules.catalog.models import Customer, Invoice, Item
from zero_invoice.modules.extraction.models import RawDocument
from zero_invoice.modules.parsing.models import ExtractedInvoice


class ImportStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportEntry:
    """
    One uploaded file moving through the import pipeline.

    Entries are replaced on every transition, never mutated. `document` holds
    the raw upload until the entry is ready, and stays on failed entries so
    they can be retried.
    """

    id: str
    filename: str
    size: int
    status: ImportStatus = ImportStatus.PENDING
    progress: int = 0
    extracted: ExtractedInvoice | None = None
    error: str | None = None
    document: RawDocument | None = field(default=None, repr=False)


@dataclass(frozen=True)
class ImportStats:
    total: int = 0
    pending: int = 0
    processing: int = 0
    ready: int = 0
    success: int = 0
    failed: int = 0


@dataclass(frozen=True)
class CommitResult:
    customers: tuple[Customer, ...] = ()
    items: tuple[Item, ...] = ()
    invoices: tuple[Invoice, ...] = ()
    succeeded: tuple[str, ...] = ()
    failed: dict[str, str] = field(default_factory=dict)
