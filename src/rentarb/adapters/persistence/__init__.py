# src/rentarb/adapters/persistence/__init__.py
"""
Persistence Adapters - Ledger Storage

This package contains adapters for persisting the ledger:
- Document stores (in-memory and JSON file)
- Typed repositories per collection
"""

from rentarb.adapters.persistence.document_store import (
    DELETE_FIELD,
    ChangeEvent,
    DocumentStore,
    JsonFileDocumentStore,
    MemoryDocumentStore,
)
from rentarb.adapters.persistence.repositories import (
    BookingRepository,
    ExpenseRepository,
    IncomeRepository,
    LedgerRepository,
    ProjectedExpenseRepository,
)

__all__ = [
    "DELETE_FIELD",
    "ChangeEvent",
    "DocumentStore",
    "JsonFileDocumentStore",
    "MemoryDocumentStore",
    "BookingRepository",
    "ExpenseRepository",
    "IncomeRepository",
    "LedgerRepository",
    "ProjectedExpenseRepository",
]
