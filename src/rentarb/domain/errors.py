# src/rentarb/domain/errors.py
"""
Domain Errors - Business Logic Exceptions

This module defines domain-specific exceptions that represent
business rule violations and ledger failures.

"No rates yet" and "disconnected" are not errors: the rate engine reports
them as state. Everything below is raised to the caller.
"""

from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """Base exception for domain errors."""
    pass


class InvalidRateError(DomainError):
    """Raised when a conversion rate (TC) is missing, zero or negative."""
    pass


class ProviderUnavailableError(DomainError):
    """Raised when a price provider is unavailable or returns unusable data."""
    pass


class NotFoundError(DomainError):
    """Raised when a ledger document does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class InvalidBookingError(DomainError):
    """Raised when booking input cannot be priced or saved."""
    pass


class InvalidTransitionError(DomainError):
    """Raised when a booking status change is outside the valid transitions."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid booking transition: {from_status} -> {to_status}")


class LedgerReadError(DomainError):
    """Raised when a read or query against the ledger store fails."""

    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(f"Ledger read failed on {collection}")


class LedgerWriteError(DomainError):
    """Raised when a create/update/delete against the ledger store fails."""

    def __init__(self, operation: str, collection: str, doc_id: Optional[str] = None):
        self.operation = operation
        self.collection = collection
        self.doc_id = doc_id
        target = f"{collection}/{doc_id}" if doc_id else collection
        super().__init__(f"Ledger {operation} failed on {target}")


class ReconciliationError(DomainError):
    """
    Raised when a booking and its incomes could not be kept in step.

    needs_manual_reconciliation is True when the compensating writes also
    failed, so the ledger may disagree with the booking status.
    """

    def __init__(self, booking_id: Optional[str], message: str, needs_manual_reconciliation: bool = False):
        self.booking_id = booking_id
        self.needs_manual_reconciliation = needs_manual_reconciliation
        super().__init__(message)
