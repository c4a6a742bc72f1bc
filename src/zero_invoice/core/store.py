from __future__ import annotations

from collections.abc import Iterable

from zero_invoice.core.logging import get_logger, log_event
from zero_invoice.modules.catalog.models import Customer, Invoice, Item

logger = get_logger(__name__)


class DomainStore:
    """
    Read/append view of the application's customers, items and invoices.

    The import pipeline never updates or deletes records; it reads the
    catalog for matching and appends the records materialized by a commit.
    """

    def customers(self) -> tuple[Customer, ...]:  # pragma: no cover
        raise NotImplementedError

    def items(self) -> tuple[Item, ...]:  # pragma: no cover
        raise NotImplementedError

    def invoices(self) -> tuple[Invoice, ...]:  # pragma: no cover
        raise NotImplementedError

    def template_ids(self) -> tuple[str, ...]:  # pragma: no cover
        raise NotImplementedError

    def add_customers(self, customers: Iterable[Customer]) -> None:  # pragma: no cover
        raise NotImplementedError

    def add_items(self, items: Iterable[Item]) -> None:  # pragma: no cover
        raise NotImplementedError

    def add_invoices(self, invoices: Iterable[Invoice]) -> None:  # pragma: no cover
        raise NotImplementedError

    def get_customer(self, customer_id: str) -> Customer | None:
        return next((c for c in self.customers() if c.id == customer_id), None)

    def get_item(self, item_id: str) -> Item | None:
        return next((i for i in self.items() if i.id == item_id), None)


class InMemoryDomainStore(DomainStore):
    def __init__(
        self,
        *,
        customers: Iterable[Customer] = (),
        items: Iterable[Item] = (),
        invoices: Iterable[Invoice] = (),
        template_ids: Iterable[str] = (),
    ):
        self._customers = tuple(customers)
        self._items = tuple(items)
        self._invoices = tuple(invoices)
        self._template_ids = tuple(template_ids)

    def customers(self) -> tuple[Customer, ...]:
        return self._customers

    def items(self) -> tuple[Item, ...]:
        return self._items

    def invoices(self) -> tuple[Invoice, ...]:
        return self._invoices

    def template_ids(self) -> tuple[str, ...]:
        return self._template_ids

    def add_customers(self, customers: Iterable[Customer]) -> None:
        added = tuple(customers)
        if not added:
            return
        self._customers = self._customers + added
        log_event(logger, "store.customers.append", count=len(added), total=len(self._customers))

    def add_items(self, items: Iterable[Item]) -> None:
        added = tuple(items)
        if not added:
            return
        self._items = self._items + added
        log_event(logger, "store.items.append", count=len(added), total=len(self._items))

    def add_invoices(self, invoices: Iterable[Invoice]) -> None:
        added = tuple(invoices)
        if not added:
            return
        self._invoices = self._invoices + added
        log_event(logger, "store.invoices.append", count=len(added), total=len(self._invoices))
