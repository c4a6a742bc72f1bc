from __future__ import annotations

import io
import os

import pytest

# Set env before any zero_invoice imports (settings are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def blank_pdf_bytes():
    def _make(pages: int = 1) -> bytes:
        from pypdf import PdfWriter

        writer = PdfWriter()
        for _ in range(pages):
            writer.add_blank_page(width=612, height=792)
        buf = io.BytesIO()
        writer.write(buf)
        return buf.getvalue()

    return _make


@pytest.fixture
def store():
    from zero_invoice.core.store import InMemoryDomainStore
    from zero_invoice.modules.catalog.models import Customer, Item

    return InMemoryDomainStore(
        customers=[
            Customer(id="cust-1", name="Acme Corporation", email="billing@acme.com"),
            Customer(id="cust-2", name="Globex Inc", email="ap@globex.com"),
        ],
        items=[
            Item(id="item-1", name="Consulting", unit_price=150.0),
            Item(id="item-2", name="Hosting", unit_price=20.0),
        ],
        template_ids=["tpl-modern", "tpl-classic"],
    )


@pytest.fixture
def scenario_a_text() -> str:
    return (
        "Invoice #INV-1001\n"
        "Date: 01/15/2024\n"
        "Due Date: 02/14/2024\n"
        "Acme Corp\n"
        "billing@acme.com\n"
        "Consulting 10 $100.00 $1,000.00\n"
        "Hosting 1 $250.00 $250.00\n"
        "Total: $1,250.00\n"
    )
