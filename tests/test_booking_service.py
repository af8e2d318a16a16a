# tests/test_booking_service.py
"""
Booking Service Tests - Booking Writes and Their Income Side Effects

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- rentarb.application.booking_service (BookingService for testing)
- rentarb.application.reconciler (BookingReconciler wired to the same store)
- tests.conftest (store fixtures, FlakyStore, YieldingStore)
"""
import asyncio
from datetime import date

import pytest

from rentarb.adapters.persistence import BookingRepository, IncomeRepository
from rentarb.application.booking_service import BookingService
from rentarb.application.reconciler import BookingReconciler
from rentarb.domain.errors import (
    InvalidBookingError,
    InvalidTransitionError,
    NotFoundError,
    ReconciliationError,
)
from rentarb.domain.models import BookingStatus, IncomeCategory, Platform, RentalType


def build_service(store) -> BookingService:
    return BookingService(BookingRepository(store), BookingReconciler(IncomeRepository(store)))


def categories(incomes):
    return sorted(i.category.value for i in incomes)


@pytest.fixture
def service(store):
    return build_service(store)


class TestCreateBooking:
    async def test_pending_booking_is_priced(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, guest_name="  Ana  ")

        assert booking.id
        assert booking.nights == 5
        assert booking.total_amount == 1000.0
        assert booking.deposit_amount == 300.0
        assert booking.remaining_amount == 700.0
        assert booking.guest_name == "Ana"
        assert booking.platform == Platform.DIRECT
        assert booking.deposit_paid is False
        assert await incomes.all() == []

    async def test_confirmed_creates_deposit(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.CONFIRMED)

        assert booking.deposit_paid is True
        linked = await incomes.for_booking(booking.id)
        assert [(i.category, i.amount_brl) for i in linked] == [(IncomeCategory.DEPOSIT, 300.0)]

    async def test_completed_creates_both_incomes(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.COMPLETED)
        assert categories(await incomes.for_booking(booking.id)) == ["deposit", "rental"]

    async def test_cannot_create_cancelled(self, service, bookings, stay):
        with pytest.raises(InvalidBookingError):
            await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.CANCELLED)
        assert await bookings.all() == []

    @pytest.mark.parametrize("check_in,check_out,rate", [
        (date(2024, 1, 15), date(2024, 1, 10), 200.0),
        (date(2024, 1, 10), date(2024, 1, 10), 200.0),
        (date(2024, 1, 10), date(2024, 1, 15), 0.0),
        (date(2024, 1, 10), date(2024, 1, 15), -50.0),
    ])
    async def test_invalid_input(self, service, bookings, check_in, check_out, rate):
        with pytest.raises(InvalidBookingError):
            await service.create_booking(check_in, check_out, RentalType.DAILY, rate)
        assert await bookings.all() == []

    async def test_monthly_booking(self, service):
        booking = await service.create_booking(
            date(2024, 1, 15), date(2024, 4, 14), RentalType.MONTHLY, 3000.0, platform=Platform.AIRBNB,
        )
        assert booking.months == 3
        assert booking.total_amount == 9000.0
        assert booking.deposit_amount == 2700.0
        assert booking.remaining_amount == 6300.0
        assert booking.nights is None
        assert booking.daily_rate is None

    async def test_income_failure_removes_booking(self, flaky_store, stay):
        service = build_service(flaky_store)
        flaky_store.fail("create", "income")

        with pytest.raises(ReconciliationError) as excinfo:
            await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.CONFIRMED)

        assert excinfo.value.needs_manual_reconciliation is False
        assert await service.list_bookings() == []

    async def test_booking_left_behind_is_flagged(self, flaky_store, stay):
        service = build_service(flaky_store)
        flaky_store.fail("create", "income")
        flaky_store.fail("delete", "bookings")

        with pytest.raises(ReconciliationError) as excinfo:
            await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.CONFIRMED)

        assert excinfo.value.needs_manual_reconciliation is True
        assert len(await service.list_bookings()) == 1


class TestChangeStatus:
    async def test_pending_to_confirmed(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, guest_name="Ana")

        updated = await service.change_status(booking.id, BookingStatus.CONFIRMED)

        assert updated.status == BookingStatus.CONFIRMED
        assert updated.deposit_paid is True
        stored = await service.get_booking(booking.id)
        assert stored.status == BookingStatus.CONFIRMED
        assert stored.deposit_paid is True
        linked = await incomes.for_booking(booking.id)
        assert [i.description for i in linked] == ["Seña - Ana"]

    async def test_full_lifecycle(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)
        await service.change_status(booking.id, BookingStatus.CONFIRMED)
        await service.change_status(booking.id, BookingStatus.COMPLETED)

        linked = await incomes.for_booking(booking.id)
        assert categories(linked) == ["deposit", "rental"]
        assert sum(i.amount_brl for i in linked) == 1000.0

    async def test_same_status_is_noop(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.CONFIRMED)
        again = await service.change_status(booking.id, BookingStatus.CONFIRMED)
        assert again.status == BookingStatus.CONFIRMED
        assert len(await incomes.for_booking(booking.id)) == 1

    async def test_invalid_transition(self, service, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            await service.change_status(booking.id, BookingStatus.CANCELLED)
        assert (await service.get_booking(booking.id)).status == BookingStatus.COMPLETED

    async def test_cancel_keeps_deposit(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.CONFIRMED)
        cancelled = await service.change_status(booking.id, BookingStatus.CANCELLED)

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.deposit_paid is True
        assert categories(await incomes.for_booking(booking.id)) == ["deposit"]

    async def test_missing_booking(self, service):
        with pytest.raises(NotFoundError):
            await service.change_status("nope", BookingStatus.CONFIRMED)

    async def test_status_write_failure_undoes_incomes(self, flaky_store, stay):
        service = build_service(flaky_store)
        incomes = IncomeRepository(flaky_store)
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)
        flaky_store.fail("update", "bookings")

        with pytest.raises(ReconciliationError) as excinfo:
            await service.change_status(booking.id, BookingStatus.COMPLETED)

        assert excinfo.value.needs_manual_reconciliation is False
        assert await incomes.for_booking(booking.id) == []
        assert (await service.get_booking(booking.id)).status == BookingStatus.PENDING

        flaky_store.heal()
        await service.change_status(booking.id, BookingStatus.COMPLETED)
        assert categories(await incomes.for_booking(booking.id)) == ["deposit", "rental"]


class TestConcurrentChanges:
    async def test_confirm_and_complete_race_keeps_ledger_whole(self, yielding_store, stay):
        service = build_service(yielding_store)
        incomes = IncomeRepository(yielding_store)
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)

        results = await asyncio.gather(
            service.change_status(booking.id, BookingStatus.CONFIRMED),
            service.change_status(booking.id, BookingStatus.COMPLETED),
            return_exceptions=True,
        )

        # Whichever call runs second sees the status the first one wrote
        errors = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(e, InvalidTransitionError) for e in errors)
        assert (await service.get_booking(booking.id)).status == BookingStatus.COMPLETED
        assert categories(await incomes.for_booking(booking.id)) == ["deposit", "rental"]
        assert service.reconciler._locks == {}

    async def test_duplicate_confirms_write_one_deposit(self, yielding_store, stay):
        service = build_service(yielding_store)
        incomes = IncomeRepository(yielding_store)
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)

        await asyncio.gather(*[service.change_status(booking.id, BookingStatus.CONFIRMED) for _ in range(3)])

        assert categories(await incomes.for_booking(booking.id)) == ["deposit"]

    async def test_edit_does_not_overwrite_concurrent_status(self, yielding_store, stay):
        service = build_service(yielding_store)
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)

        await asyncio.gather(
            service.change_status(booking.id, BookingStatus.CONFIRMED),
            service.update_booking(booking.id, notes="late arrival"),
        )

        stored = await service.get_booking(booking.id)
        assert stored.status == BookingStatus.CONFIRMED
        assert stored.notes == "late arrival"

    async def test_delete_waits_for_status_change(self, yielding_store, stay):
        service = build_service(yielding_store)
        incomes = IncomeRepository(yielding_store)
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)

        await asyncio.gather(
            service.change_status(booking.id, BookingStatus.COMPLETED),
            service.delete_booking(booking.id),
        )

        assert await service.get_booking(booking.id) is None
        assert await incomes.for_booking(booking.id) == []


class TestDeleteBooking:
    async def test_delete_cascades_to_incomes(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.COMPLETED)
        other = await service.create_booking(*stay, RentalType.DAILY, 150.0, status=BookingStatus.CONFIRMED)

        result = await service.delete_booking(booking.id)

        assert len(result.deleted) == 2
        assert await service.get_booking(booking.id) is None
        assert await incomes.for_booking(booking.id) == []
        assert len(await incomes.for_booking(other.id)) == 1

    async def test_failed_delete_restores_incomes(self, flaky_store, stay):
        service = build_service(flaky_store)
        incomes = IncomeRepository(flaky_store)
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.COMPLETED)
        flaky_store.fail("delete", "bookings")

        with pytest.raises(ReconciliationError) as excinfo:
            await service.delete_booking(booking.id)

        assert excinfo.value.needs_manual_reconciliation is False
        assert await service.get_booking(booking.id) is not None
        restored = await incomes.for_booking(booking.id)
        assert sorted(i.amount_brl for i in restored) == [300.0, 700.0]


class TestUpdateBooking:
    async def test_reprice_leaves_incomes_untouched(self, service, incomes, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0, status=BookingStatus.CONFIRMED)

        updated = await service.update_booking(booking.id, check_out=date(2024, 1, 20))

        assert updated.nights == 10
        assert updated.total_amount == 2000.0
        assert updated.deposit_amount == 600.0
        assert (await service.get_booking(booking.id)).total_amount == 2000.0
        linked = await incomes.for_booking(booking.id)
        assert [i.amount_brl for i in linked] == [300.0]

    async def test_details_only(self, service, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)
        updated = await service.update_booking(booking.id, guest_name="Bruno", notes="late arrival")
        assert updated.guest_name == "Bruno"
        assert updated.notes == "late arrival"
        assert updated.total_amount == 1000.0

    async def test_switch_to_monthly_clears_daily_fields(self, service, store, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)

        await service.update_booking(
            booking.id,
            rental_type=RentalType.MONTHLY,
            rate=3000.0,
            check_in=date(2024, 1, 15),
            check_out=date(2024, 3, 15),
        )

        doc = await store.get("bookings", booking.id)
        assert "dailyRate" not in doc
        assert "nights" not in doc
        assert doc["months"] == 2
        assert doc["totalAmount"] == 6000.0

    async def test_monthly_without_rate_rejected(self, service, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)
        with pytest.raises(InvalidBookingError, match="needs a rate"):
            await service.update_booking(booking.id, rental_type=RentalType.MONTHLY)

    async def test_status_not_editable(self, service, stay):
        booking = await service.create_booking(*stay, RentalType.DAILY, 200.0)
        with pytest.raises(InvalidBookingError, match="status"):
            await service.update_booking(booking.id, status=BookingStatus.CONFIRMED)

    async def test_missing_booking(self, service):
        with pytest.raises(NotFoundError):
            await service.update_booking("nope", notes="x")


class TestQueries:
    async def test_list_and_counts(self, service):
        await service.create_booking(date(2024, 1, 10), date(2024, 1, 15), RentalType.DAILY, 200.0)
        await service.create_booking(
            date(2024, 2, 1), date(2024, 2, 5), RentalType.DAILY, 200.0, status=BookingStatus.CONFIRMED,
        )
        await service.create_booking(
            date(2023, 12, 28), date(2024, 1, 2), RentalType.DAILY, 200.0, status=BookingStatus.COMPLETED,
        )

        listed = await service.list_bookings()
        assert [b.check_in for b in listed] == [date(2024, 2, 1), date(2024, 1, 10), date(2023, 12, 28)]
        confirmed = await service.list_bookings(BookingStatus.CONFIRMED)
        assert [b.check_in for b in confirmed] == [date(2024, 2, 1)]

        counts = await service.status_counts()
        assert counts[BookingStatus.PENDING] == 1
        assert counts[BookingStatus.CONFIRMED] == 1
        assert counts[BookingStatus.COMPLETED] == 1
        assert counts[BookingStatus.CANCELLED] == 0

    async def test_bookings_for_month(self, service):
        await service.create_booking(date(2024, 1, 10), date(2024, 1, 15), RentalType.DAILY, 200.0)
        await service.create_booking(date(2023, 12, 28), date(2024, 1, 2), RentalType.DAILY, 200.0)
        await service.create_booking(date(2024, 2, 1), date(2024, 2, 5), RentalType.DAILY, 200.0)

        january = await service.bookings_for_month(2024, 1)
        assert sorted(b.check_in for b in january) == [date(2023, 12, 28), date(2024, 1, 10)]
        assert len(await service.bookings_for_month(2024, 2)) == 1
        assert await service.bookings_for_month(2024, 3) == []
