# src/rentarb/application/reconciler.py
"""
Booking Reconciler - Keeps Booking-Linked Incomes in Step with Booking Status

A booking's money shows up in the income ledger as two entries:
- Deposit ("Seña", 30%), dated when the booking is confirmed
- Remaining ("Restante reserva", 70%, category rental), dated at check-in

Side effects per booking event:

    create confirmed          -> deposit
    create completed          -> deposit, remaining
    pending   -> confirmed    -> deposit            (only if no linked incomes yet)
    pending   -> completed    -> deposit, remaining (only if no linked incomes yet)
    confirmed -> completed    -> remaining          (only if no linked rental income yet)
    pending/confirmed -> cancelled -> delete linked rental incomes (deposit is kept)
    booking deleted           -> delete every linked income

Calls for the same booking are serialized, so a retried or duplicated
transition never writes the same income twice. Callers that also write the
booking take locked() themselves and call the apply_* variants inside it.
If a write fails halfway,
the writes already made by that call are undone before ReconciliationError
is raised.

Files that USE this module:
- rentarb.application.booking_service (runs reconciliation around booking writes)
- tests.test_reconciler (unit tests)

Files that this module USES:
- rentarb.adapters.persistence.repositories (IncomeRepository)
- rentarb.domain.models (Booking, BookingStatus, Income, IncomeCategory)
- rentarb.domain.errors (InvalidTransitionError, LedgerWriteError, ReconciliationError)
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, time, timezone
from typing import AsyncIterator, Dict, List, Optional

from rentarb.adapters.persistence.repositories import IncomeRepository
from rentarb.domain.errors import InvalidTransitionError, LedgerWriteError, ReconciliationError
from rentarb.domain.models import Booking, BookingStatus, Income, IncomeCategory, utc_now

log = logging.getLogger(__name__)

VALID_TRANSITIONS = frozenset({
    (BookingStatus.PENDING, BookingStatus.CONFIRMED),
    (BookingStatus.PENDING, BookingStatus.COMPLETED),
    (BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
})


def validate_transition(old: BookingStatus, new: BookingStatus) -> bool:
    """
    Check a status change.

    Returns:
        True for a valid transition, False for a same-state no-op

    Raises:
        InvalidTransitionError: If the change is not allowed
    """
    old, new = BookingStatus(old), BookingStatus(new)
    if old == new:
        return False
    if (old, new) not in VALID_TRANSITIONS:
        raise InvalidTransitionError(old.value, new.value)
    return True


def deposit_income(booking: Booking, now: Optional[datetime] = None) -> Income:
    now = now or utc_now()
    return Income(
        booking_id=booking.id,
        date=now,
        amount_brl=booking.deposit_amount,
        category=IncomeCategory.DEPOSIT,
        description=f"Seña - {booking.label}",
        is_confirmed=True,
        created_at=now,
    )


def remaining_income(booking: Booking, now: Optional[datetime] = None) -> Income:
    return Income(
        booking_id=booking.id,
        date=datetime.combine(booking.check_in, time(), tzinfo=timezone.utc),
        amount_brl=booking.remaining_amount,
        category=IncomeCategory.RENTAL,
        description=f"Restante reserva - {booking.label}",
        is_confirmed=True,
        created_at=now or utc_now(),
    )


@dataclass
class ReconcileResult:
    """Incomes written and removed by one reconciliation call."""
    created: List[Income] = field(default_factory=list)
    deleted: List[Income] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.deleted)


@dataclass
class _BookingLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0  # tasks holding or waiting on the lock


class BookingReconciler:
    """Applies the income side effects of booking creation, status changes and deletion."""

    def __init__(self, incomes: IncomeRepository):
        self.incomes = incomes
        self._locks: Dict[str, _BookingLock] = {}

    @asynccontextmanager
    async def locked(self, booking_id: str) -> AsyncIterator[None]:
        """
        Serialize work on one booking.

        Callers that read the booking before reconciling (e.g. to learn its
        current status) hold this across the read, the apply_* call and their
        own booking write. The entry is dropped once nobody holds or waits on it.
        """
        entry = self._locks.get(booking_id)
        if entry is None:
            entry = self._locks[booking_id] = _BookingLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[booking_id]

    @staticmethod
    def _require_id(booking: Booking) -> str:
        if not booking.id:
            raise ValueError("booking must be saved (have an id) before reconciling")
        return booking.id

    async def on_created(self, booking: Booking) -> ReconcileResult:
        """Create the incomes a booking saved as confirmed or completed already owes."""
        booking_id = self._require_id(booking)
        if booking.status == BookingStatus.CONFIRMED:
            planned = [deposit_income(booking)]
        elif booking.status == BookingStatus.COMPLETED:
            planned = [deposit_income(booking), remaining_income(booking)]
        else:
            return ReconcileResult()

        async with self.locked(booking_id):
            if await self.incomes.for_booking(booking_id):
                log.info("Booking %s already has linked incomes, nothing to create", booking_id)
                return ReconcileResult()
            return await self._create(booking_id, planned)

    async def on_transition(self, booking: Booking, old: BookingStatus, new: BookingStatus) -> ReconcileResult:
        """
        Apply the income effects of a status change.

        Raises:
            InvalidTransitionError: If the change is not allowed
            ReconciliationError: If a ledger write failed (already compensated when possible)
        """
        booking_id = self._require_id(booking)
        async with self.locked(booking_id):
            return await self.apply_transition(booking, old, new)

    async def apply_transition(self, booking: Booking, old: BookingStatus, new: BookingStatus) -> ReconcileResult:
        """on_transition() for a caller already holding locked(booking.id)."""
        booking_id = self._require_id(booking)
        if not validate_transition(old, new):
            return ReconcileResult()
        old, new = BookingStatus(old), BookingStatus(new)

        if new == BookingStatus.CANCELLED:
            return await self._delete(booking_id, IncomeCategory.RENTAL)

        if new == BookingStatus.COMPLETED and old == BookingStatus.CONFIRMED:
            if await self.incomes.for_booking(booking_id, IncomeCategory.RENTAL):
                log.info("Booking %s already has its remaining income", booking_id)
                return ReconcileResult()
            return await self._create(booking_id, [remaining_income(booking)])

        if await self.incomes.for_booking(booking_id):
            log.info("Booking %s already has linked incomes, nothing to create", booking_id)
            return ReconcileResult()
        planned = [deposit_income(booking)]
        if new == BookingStatus.COMPLETED:
            planned.append(remaining_income(booking))
        return await self._create(booking_id, planned)

    async def on_deleted(self, booking_id: str) -> ReconcileResult:
        """Delete every income linked to a booking."""
        async with self.locked(booking_id):
            return await self.apply_deleted(booking_id)

    async def apply_deleted(self, booking_id: str) -> ReconcileResult:
        """on_deleted() for a caller already holding locked(booking_id)."""
        return await self._delete(booking_id)

    async def _create(self, booking_id: str, planned: List[Income]) -> ReconcileResult:
        result = ReconcileResult()
        # Deposit before remaining: planned lists are already in ledger order
        for income in planned:
            try:
                result.created.append(await self.incomes.add(income))
            except LedgerWriteError as e:
                await self._abort(booking_id, result, e)
        if result.created:
            log.info(
                "Booking %s: created %s",
                booking_id,
                ", ".join(f"{i.category.value} {i.amount_brl:.2f}" for i in result.created),
            )
        return result

    async def _delete(self, booking_id: str, category: Optional[IncomeCategory] = None) -> ReconcileResult:
        result = ReconcileResult()
        for income in await self.incomes.for_booking(booking_id, category):
            try:
                await self.incomes.delete(income.id)
            except LedgerWriteError as e:
                await self._abort(booking_id, result, e)
            result.deleted.append(income)
        if result.deleted:
            log.info("Booking %s: deleted %d linked income(s)", booking_id, len(result.deleted))
        return result

    async def _abort(self, booking_id: str, result: ReconcileResult, error: Exception) -> None:
        log.error("Reconciliation of booking %s failed: %s", booking_id, error)
        undone = await self.compensate(result)
        raise ReconciliationError(
            booking_id,
            f"Income update for booking {booking_id} failed: {error}",
            needs_manual_reconciliation=not undone,
        ) from error

    async def compensate(self, result: ReconcileResult) -> bool:
        """
        Undo a reconciliation: delete the incomes it created, re-create the ones it deleted.

        Returns:
            True if every undo write succeeded
        """
        ok = True
        for income in reversed(result.created):
            try:
                await self.incomes.delete(income.id)
            except LedgerWriteError as e:
                ok = False
                log.error("Could not remove income %s, needs manual reconciliation: %s", income.id, e)
        for income in result.deleted:
            try:
                await self.incomes.add(replace(income, id=None))
            except LedgerWriteError as e:
                ok = False
                log.error("Could not restore income %s, needs manual reconciliation: %s", income.id, e)
        return ok
