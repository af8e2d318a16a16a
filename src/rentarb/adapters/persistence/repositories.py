# src/rentarb/adapters/persistence/repositories.py
"""
Ledger Repositories - Typed Access to Ledger Collections

Each repository maps one collection of the document store to a domain
model and turns store failures into typed ledger errors, so callers never
see a raw backend exception.

Files that USE this module:
- rentarb.application.reconciler (IncomeRepository for linked incomes)
- rentarb.application.booking_service (BookingRepository, IncomeRepository)
- rentarb.application.finance_service (income, expense and projected expense repositories)
- rentarb.app (wires repositories to the JSON document store)

Files that this module USES:
- rentarb.adapters.persistence.document_store (DocumentStore, DELETE_FIELD)
- rentarb.domain.models (Booking, Income, Expense, ProjectedExpense)
- rentarb.domain.errors (LedgerReadError, LedgerWriteError, NotFoundError)
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from rentarb.adapters.persistence.document_store import DELETE_FIELD, DocumentStore
from rentarb.domain.errors import LedgerReadError, LedgerWriteError, NotFoundError
from rentarb.domain.models import Booking, Expense, Income, IncomeCategory, ProjectedExpense

logger = logging.getLogger(__name__)

BOOKINGS = "bookings"
INCOME = "income"
EXPENSES = "expenses"
PROJECTED_EXPENSES = "projectedExpenses"

T = TypeVar("T")


class LedgerRepository(Generic[T]):
    """Typed CRUD over one collection."""

    collection: str = ""
    model: Type[Any] = object

    def __init__(self, store: DocumentStore):
        self.store = store

    def _to_model(self, doc_id: str, data: Dict[str, Any]) -> T:
        return self.model.from_document(doc_id, data)

    async def add(self, entity: T) -> T:
        """
        Store a new entity.

        Returns:
            A copy of the entity carrying its new id

        Raises:
            LedgerWriteError: If the store rejects the write
        """
        try:
            doc_id = await self.store.create(self.collection, entity.to_document())
        except Exception as e:
            logger.error("Failed to create %s document: %s", self.collection, e)
            raise LedgerWriteError("create", self.collection) from e
        logger.debug("Created %s/%s", self.collection, doc_id)
        return replace(entity, id=doc_id)

    async def update(self, doc_id: str, fields: Dict[str, Any]) -> None:
        """
        Merge document fields (ledger field names) into an existing entity.

        Raises:
            NotFoundError: If the entity does not exist
            LedgerWriteError: If the store rejects the write
        """
        try:
            await self.store.update(self.collection, doc_id, fields)
        except NotFoundError:
            raise
        except Exception as e:
            logger.error("Failed to update %s/%s: %s", self.collection, doc_id, e)
            raise LedgerWriteError("update", self.collection, doc_id) from e

    async def save(self, entity: T) -> None:
        """Write every field of an existing entity; fields now None are removed."""
        fields = {k: (DELETE_FIELD if v is None else v) for k, v in entity.to_document().items()}
        await self.update(entity.id, fields)

    async def delete(self, doc_id: str) -> None:
        """
        Delete an entity unconditionally.

        Raises:
            LedgerWriteError: If the store rejects the delete
        """
        try:
            await self.store.delete(self.collection, doc_id)
        except Exception as e:
            logger.error("Failed to delete %s/%s: %s", self.collection, doc_id, e)
            raise LedgerWriteError("delete", self.collection, doc_id) from e
        logger.debug("Deleted %s/%s", self.collection, doc_id)

    async def get(self, doc_id: str) -> Optional[T]:
        try:
            data = await self.store.get(self.collection, doc_id)
        except Exception as e:
            logger.error("Failed to read %s/%s: %s", self.collection, doc_id, e)
            raise LedgerReadError(self.collection) from e
        return self._to_model(doc_id, data) if data is not None else None

    async def require(self, doc_id: str) -> T:
        entity = await self.get(doc_id)
        if entity is None:
            raise NotFoundError(self.collection, doc_id)
        return entity

    async def find(self, **equals: Any) -> List[T]:
        """Entities whose document fields equal every given value."""
        try:
            rows = await self.store.query(self.collection, **equals)
        except Exception as e:
            logger.error("Failed to query %s %s: %s", self.collection, equals, e)
            raise LedgerReadError(self.collection) from e
        return [self._to_model(doc_id, data) for doc_id, data in rows]

    async def all(self) -> List[T]:
        return await self.find()

    async def watch(self) -> AsyncIterator[Tuple[str, str, Optional[T]]]:
        """Live (kind, id, entity) changes; entity is None for removals."""
        async for event in self.store.watch(self.collection):
            entity = self._to_model(event.doc_id, event.data) if event.data is not None else None
            yield event.kind, event.doc_id, entity


class BookingRepository(LedgerRepository[Booking]):
    collection = BOOKINGS
    model = Booking


class IncomeRepository(LedgerRepository[Income]):
    collection = INCOME
    model = Income

    async def for_booking(self, booking_id: str, category: Optional[IncomeCategory] = None) -> List[Income]:
        """Incomes linked to a booking, optionally of one category."""
        if category is None:
            return await self.find(bookingId=booking_id)
        return await self.find(bookingId=booking_id, category=category.value)


class ExpenseRepository(LedgerRepository[Expense]):
    collection = EXPENSES
    model = Expense


class ProjectedExpenseRepository(LedgerRepository[ProjectedExpense]):
    collection = PROJECTED_EXPENSES
    model = ProjectedExpense
