from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RawDocument:
    filename: str
    body: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class DocumentMetadata:
    title: str | None = None
    author: str | None = None
    subject: str | None = None
    creator: str | None = None
    producer: str | None = None
    creation_date: datetime | None = None


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    page_count: int
    metadata: DocumentMetadata = DocumentMetadata()
