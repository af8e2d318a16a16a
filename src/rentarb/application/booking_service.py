# src/rentarb/application/booking_service.py
"""
Booking Service - Booking CRUD with Income Reconciliation

This module owns every write to a booking. Each write that also changes the
income ledger runs as a small saga: the income side effects and the booking
write are applied as a pair, and if the second half fails the first half is
undone before the error reaches the caller.

    create_booking  -> write booking, then create owed incomes   (booking removed on failure)
    change_status   -> apply income effects, then write status   (income effects undone on failure)
    delete_booking  -> delete linked incomes, then the booking   (incomes restored on failure)

Amounts are priced once when the booking is written. Editing a booking
re-prices the booking itself but never rewrites incomes already recorded.

Files that USE this module:
- rentarb.app (service wiring)
- tests.test_booking_service (unit tests)

Files that this module USES:
- rentarb.adapters.persistence.repositories (BookingRepository)
- rentarb.application.reconciler (BookingReconciler, validate_transition)
- rentarb.shared.money (price_booking)
- rentarb.shared.validators (sanitize_text)
"""
from __future__ import annotations

import calendar
import logging
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Optional

from rentarb.adapters.persistence.repositories import BookingRepository
from rentarb.application.reconciler import BookingReconciler, ReconcileResult, validate_transition
from rentarb.domain.errors import (
    InvalidBookingError,
    LedgerReadError,
    LedgerWriteError,
    NotFoundError,
    ReconciliationError,
)
from rentarb.domain.models import Booking, BookingStatus, Platform, RentalType, utc_now
from rentarb.shared.money import price_booking
from rentarb.shared.validators import sanitize_text

log = logging.getLogger(__name__)

CREATABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
PAID_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)

_PRICING_FIELDS = {"check_in", "check_out", "rental_type", "rate"}
_EDITABLE_FIELDS = _PRICING_FIELDS | {"guest_name", "notes", "platform"}


def _priced(booking: Booking, rental_type: RentalType, rate: float, check_in: date, check_out: date) -> Booking:
    pricing = price_booking(rental_type, rate, check_in, check_out)
    daily = rental_type == RentalType.DAILY
    return replace(
        booking,
        check_in=check_in,
        check_out=check_out,
        rental_type=rental_type,
        daily_rate=rate if daily else None,
        monthly_rate=None if daily else rate,
        nights=pricing.units if daily else None,
        months=None if daily else pricing.units,
        total_amount=pricing.total,
        deposit_amount=pricing.deposit,
        remaining_amount=pricing.remaining,
    )


class BookingService:
    """High-level booking operations that keep the income ledger consistent."""

    def __init__(self, bookings: BookingRepository, reconciler: BookingReconciler):
        self.bookings = bookings
        self.reconciler = reconciler

    async def create_booking(
        self,
        check_in: date,
        check_out: date,
        rental_type: RentalType,
        rate: float,
        platform: Platform = Platform.DIRECT,
        status: BookingStatus = BookingStatus.PENDING,
        guest_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Price and save a new booking, creating the incomes its status already owes.

        Args:
            check_in: First night
            check_out: Departure day (exclusive)
            rental_type: daily (rate per night) or monthly (rate per month)
            rate: BRL per night or per month
            platform: Where the booking came from
            status: pending, confirmed or completed
            guest_name: Optional guest name (used in income descriptions)
            notes: Optional free text

        Returns:
            The saved booking with its id

        Raises:
            InvalidBookingError: If the booking cannot be priced or the status is not allowed
            LedgerWriteError: If the booking could not be written
            ReconciliationError: If its incomes could not be created
        """
        status = BookingStatus(status)
        if status not in CREATABLE_STATUSES:
            raise InvalidBookingError(f"a booking cannot be created as {status.value}")
        now = utc_now()
        draft = Booking(
            check_in=check_in,
            check_out=check_out,
            rental_type=RentalType(rental_type),
            total_amount=0.0,
            deposit_amount=0.0,
            remaining_amount=0.0,
            platform=Platform(platform),
            status=status,
            guest_name=sanitize_text(guest_name, max_length=100),
            notes=sanitize_text(notes),
            deposit_paid=status in PAID_STATUSES,
            created_at=now,
            updated_at=now,
        )
        booking = await self.bookings.add(_priced(draft, draft.rental_type, rate, check_in, check_out))
        log.info(
            "Created booking %s (%s, %s..%s, total %.2f)",
            booking.id, status.value, booking.check_in, booking.check_out, booking.total_amount,
        )

        try:
            await self.reconciler.on_created(booking)
        except (ReconciliationError, LedgerReadError) as e:
            try:
                await self.bookings.delete(booking.id)
            except LedgerWriteError as e2:
                log.error("Could not remove booking %s after income failure, needs manual reconciliation: %s",
                          booking.id, e2)
                raise ReconciliationError(
                    booking.id,
                    f"Booking {booking.id} saved without its incomes: {e}",
                    needs_manual_reconciliation=True,
                ) from e
            log.warning("Booking %s removed again: incomes could not be created", booking.id)
            raise
        return booking

    async def update_booking(self, booking_id: str, **changes: Any) -> Booking:
        """
        Edit a booking's details.

        Accepted fields: check_in, check_out, rental_type, rate, guest_name,
        notes, platform. Pricing fields re-price the booking; linked incomes
        keep the amounts they were recorded with. Status changes go through
        change_status().

        Raises:
            InvalidBookingError: For unknown fields or input that cannot be priced
            NotFoundError: If the booking does not exist
            LedgerWriteError: If the booking could not be written
        """
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise InvalidBookingError(f"cannot edit booking field(s): {', '.join(sorted(unknown))}")

        # The whole document is rewritten, so a concurrent status change must not interleave
        async with self.reconciler.locked(booking_id):
            return await self._apply_update(booking_id, changes)

    async def _apply_update(self, booking_id: str, changes: Dict[str, Any]) -> Booking:
        booking = await self.bookings.require(booking_id)
        updated = booking
        if "guest_name" in changes:
            updated = replace(updated, guest_name=sanitize_text(changes["guest_name"], max_length=100))
        if "notes" in changes:
            updated = replace(updated, notes=sanitize_text(changes["notes"]))
        if "platform" in changes:
            updated = replace(updated, platform=Platform(changes["platform"]))

        if _PRICING_FIELDS & set(changes):
            rental_type = RentalType(changes.get("rental_type", booking.rental_type))
            rate = changes.get("rate")
            if rate is None:
                rate = booking.daily_rate if rental_type == RentalType.DAILY else booking.monthly_rate
            if rate is None:
                raise InvalidBookingError(f"a {rental_type.value} booking needs a rate")
            updated = _priced(
                updated,
                rental_type,
                rate,
                changes.get("check_in", booking.check_in),
                changes.get("check_out", booking.check_out),
            )

        updated = replace(updated, updated_at=utc_now())
        await self.bookings.save(updated)
        log.info("Updated booking %s (%s)", booking_id, ", ".join(sorted(changes)) or "no fields")
        return updated

    async def change_status(self, booking_id: str, new_status: BookingStatus) -> Booking:
        """
        Move a booking to a new status together with its income effects.

        Same-state calls change nothing.

        Raises:
            NotFoundError: If the booking does not exist
            InvalidTransitionError: If the change is not allowed
            ReconciliationError: If incomes or the status could not be written
        """
        new_status = BookingStatus(new_status)
        # Status read, income effects and status write form one step per booking
        async with self.reconciler.locked(booking_id):
            booking = await self.bookings.require(booking_id)
            old_status = booking.status
            if not validate_transition(old_status, new_status):
                log.debug("Booking %s already %s", booking_id, new_status.value)
                return booking

            result = await self.reconciler.apply_transition(booking, old_status, new_status)

            now = utc_now()
            deposit_paid = booking.deposit_paid or new_status in PAID_STATUSES
            try:
                await self.bookings.update(booking_id, {
                    "status": new_status.value,
                    "depositPaid": deposit_paid,
                    "updatedAt": now.isoformat(),
                })
            except (LedgerWriteError, NotFoundError) as e:
                log.error("Status write for booking %s failed, undoing income changes: %s", booking_id, e)
                undone = await self.reconciler.compensate(result)
                raise ReconciliationError(
                    booking_id,
                    f"Booking {booking_id} status not changed to {new_status.value}: {e}",
                    needs_manual_reconciliation=not undone,
                ) from e

        log.info("Booking %s: %s -> %s", booking_id, old_status.value, new_status.value)
        return replace(booking, status=new_status, deposit_paid=deposit_paid, updated_at=now)

    async def delete_booking(self, booking_id: str) -> ReconcileResult:
        """
        Delete a booking and every income linked to it.

        Returns:
            The incomes that were removed

        Raises:
            ReconciliationError: If incomes or the booking could not be deleted
        """
        async with self.reconciler.locked(booking_id):
            result = await self.reconciler.apply_deleted(booking_id)
            try:
                await self.bookings.delete(booking_id)
            except LedgerWriteError as e:
                log.error("Delete of booking %s failed, restoring its incomes: %s", booking_id, e)
                undone = await self.reconciler.compensate(result)
                raise ReconciliationError(
                    booking_id,
                    f"Booking {booking_id} not deleted: {e}",
                    needs_manual_reconciliation=not undone,
                ) from e
        log.info("Deleted booking %s and %d linked income(s)", booking_id, len(result.deleted))
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return await self.bookings.get(booking_id)

    async def list_bookings(self, status: Optional[BookingStatus] = None) -> List[Booking]:
        """All bookings (optionally of one status), latest check-in first."""
        if status is None:
            bookings = await self.bookings.all()
        else:
            bookings = await self.bookings.find(status=BookingStatus(status).value)
        return sorted(bookings, key=lambda b: b.check_in, reverse=True)

    async def bookings_for_month(self, year: int, month: int) -> List[Booking]:
        """Bookings whose stay touches the given month (1-12)."""
        first = date(year, month, 1)
        last = date(year, month, calendar.monthrange(year, month)[1])
        return [
            b for b in await self.list_bookings()
            if b.check_in <= last and b.check_out >= first
        ]

    async def status_counts(self) -> Dict[BookingStatus, int]:
        counts = {status: 0 for status in BookingStatus}
        for booking in await self.bookings.all():
            counts[booking.status] += 1
        return counts
