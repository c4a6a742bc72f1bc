from __future__ import annotations

import enum
import uuid
from datetime import UTC, date, datetime

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class Address(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""


class Customer(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: str = ""
    phone: str | None = None
    billing_address: Address = Field(default_factory=Address)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Item(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    unit_price: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LineItem(BaseModel):
    id: str = Field(default_factory=new_id)
    item_id: str | None = None
    name: str
    description: str = ""
    quantity: float
    unit_price: float
    total: float


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


class Invoice(BaseModel):
    id: str = Field(default_factory=new_id)
    invoice_number: str
    customer_id: str
    customer_snapshot: Customer
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: float
    tax: float
    tax_rate: float
    total: float
    status: InvoiceStatus = InvoiceStatus.DRAFT
    template_id: str
    issue_date: date
    due_date: date
    notes: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class InvoiceDraft(BaseModel):
    """
    Partial invoice assembled from a parsed document.

    Fields the document did not yield stay None; nothing here is invented.
    Customer fields carry what was read off the page so a new customer can be
    materialized at commit time.
    """

    invoice_number: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_address: Address | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax: float = 0.0
    tax_rate: float = 0.0
    total: float | None = None
    notes: str | None = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
