# src/rentarb/application/__init__.py
"""
Application Layer - Use Cases and Services

This package contains application services that orchestrate domain logic.
Ledger and market access go through adapters passed in by the caller.
"""

from rentarb.application.booking_service import BookingService
from rentarb.application.finance_service import FinanceService, MonthlySummary
from rentarb.application.health import HealthChecker, HealthStatus
from rentarb.application.rate_engine import RateEngine, UpdateStream, compute_changes, derive_rates
from rentarb.application.reconciler import (
    VALID_TRANSITIONS,
    BookingReconciler,
    ReconcileResult,
    validate_transition,
)

__all__ = [
    "BookingService",
    "FinanceService",
    "MonthlySummary",
    "HealthChecker",
    "HealthStatus",
    "RateEngine",
    "UpdateStream",
    "compute_changes",
    "derive_rates",
    "VALID_TRANSITIONS",
    "BookingReconciler",
    "ReconcileResult",
    "validate_transition",
]
