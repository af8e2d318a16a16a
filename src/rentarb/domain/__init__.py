# src/rentarb/domain/__init__.py
"""
Domain Layer - Pure Business Objects

This package contains domain models and business rules.
No dependencies on infrastructure or external systems.
"""

from rentarb.domain.models import (
    Booking,
    BookingStatus,
    DerivedRates,
    Expense,
    ExpenseCategory,
    Income,
    IncomeCategory,
    Instrument,
    Platform,
    PriceSnapshot,
    ProjectedExpense,
    ProjectedExpenseStatus,
    RateChange,
    RatesUpdate,
    RentalType,
    Tick,
)
from rentarb.domain.errors import (
    DomainError,
    InvalidBookingError,
    InvalidRateError,
    InvalidTransitionError,
    LedgerReadError,
    LedgerWriteError,
    NotFoundError,
    ProviderUnavailableError,
    ReconciliationError,
)

__all__ = [
    "Booking",
    "BookingStatus",
    "DerivedRates",
    "Expense",
    "ExpenseCategory",
    "Income",
    "IncomeCategory",
    "Instrument",
    "Platform",
    "PriceSnapshot",
    "ProjectedExpense",
    "ProjectedExpenseStatus",
    "RateChange",
    "RatesUpdate",
    "RentalType",
    "Tick",
    "DomainError",
    "InvalidBookingError",
    "InvalidRateError",
    "InvalidTransitionError",
    "LedgerReadError",
    "LedgerWriteError",
    "NotFoundError",
    "ProviderUnavailableError",
    "ReconciliationError",
]
