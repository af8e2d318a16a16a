# src/rentarb/application/finance_service.py
"""
Finance Service - Income, Expense and Projected Expense Ledgers

This module provides the ledger operations behind the finance views:
manual incomes, property expenses, planned purchases and monthly totals.

Converted amounts are frozen at entry time: an income's USDT/ARS amounts
come from the TC recorded on that income, an expense's USDT amount from its
TC at payment. Later changes to market rates never touch stored entries;
editing an entry re-converts only from the entry's own TC fields.

Files that USE this module:
- rentarb.app (service wiring)
- tests.test_finance_service (unit tests)

Files that this module USES:
- rentarb.adapters.persistence.repositories (Income/Expense/ProjectedExpense repositories)
- rentarb.domain.models (Income, Expense, ProjectedExpense and their enums)
- rentarb.shared.money (convert_amount, round2)
- rentarb.shared.validators (validate_amount, sanitize_text)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Iterable, List, Optional

from rentarb.adapters.persistence.repositories import (
    ExpenseRepository,
    IncomeRepository,
    ProjectedExpenseRepository,
)
from rentarb.domain.models import (
    Expense,
    ExpenseCategory,
    Income,
    IncomeCategory,
    ProjectedExpense,
    ProjectedExpenseStatus,
    utc_now,
)
from rentarb.shared.money import convert_amount, round2
from rentarb.shared.validators import sanitize_text, validate_amount

log = logging.getLogger(__name__)

_INCOME_FIELDS = {"date", "amount_brl", "category", "description", "tc_used", "brl_ars", "is_confirmed"}
_EXPENSE_FIELDS = {
    "date", "amount_brl", "category", "description", "is_paid",
    "due_date", "is_recurring", "recurring_day", "tc_at_payment",
}
_PROJECTED_FIELDS = {"description", "estimated_amount_usdt", "category"}


@dataclass(frozen=True)
class MonthlySummary:
    """BRL totals for one calendar month."""
    year: int
    month: int
    income_brl: float
    expense_brl: float
    net_brl: float
    income_count: int
    expense_count: int


def _require_amount(value: Any, name: str) -> float:
    if not validate_amount(value):
        raise ValueError(f"{name} must be a positive number, got {value!r}")
    return float(value)


def _check_fields(given: Iterable[str], allowed: set, kind: str) -> None:
    unknown = set(given) - allowed
    if unknown:
        raise ValueError(f"cannot edit {kind} field(s): {', '.join(sorted(unknown))}")


def _in_month(value: Optional[date], year: int, month: int) -> bool:
    return value is not None and value.year == year and value.month == month


def _income_conversions(amount_brl: float, tc_used: Optional[float], brl_ars: Optional[float]):
    amount_usdt = convert_amount(amount_brl, tc_used) if tc_used is not None else None
    # brl_ars is ARS per BRL, so ARS = BRL x rate
    amount_ars = round2(amount_brl * _require_amount(brl_ars, "brl_ars")) if brl_ars is not None else None
    return amount_usdt, amount_ars


class FinanceService:
    """Ledger operations for incomes, expenses and projected expenses."""

    def __init__(
        self,
        incomes: IncomeRepository,
        expenses: ExpenseRepository,
        projected: ProjectedExpenseRepository,
    ):
        self.incomes = incomes
        self.expenses = expenses
        self.projected = projected

    # ------------------------------------------------------------------
    # Income
    # ------------------------------------------------------------------

    async def add_income(
        self,
        amount_brl: float,
        description: str,
        category: IncomeCategory = IncomeCategory.OTHER,
        date: Optional[datetime] = None,
        tc_used: Optional[float] = None,
        brl_ars: Optional[float] = None,
        booking_id: Optional[str] = None,
        is_confirmed: bool = True,
    ) -> Income:
        """
        Record an income.

        Args:
            amount_brl: Amount received in BRL
            description: Free text
            category: rental, deposit or other
            date: When it was received (defaults to now)
            tc_used: BRL per USDT at entry; freezes amount_usdt
            brl_ars: ARS per BRL at entry; freezes amount_ars
            booking_id: Booking this income belongs to, if any
            is_confirmed: False for entries awaiting validation

        Raises:
            ValueError: If the amount is not positive
            InvalidRateError: If tc_used is not positive
            LedgerWriteError: If the income could not be written
        """
        amount_brl = _require_amount(amount_brl, "amount_brl")
        amount_usdt, amount_ars = _income_conversions(amount_brl, tc_used, brl_ars)
        now = utc_now()
        income = Income(
            date=date or now,
            amount_brl=amount_brl,
            category=IncomeCategory(category),
            description=sanitize_text(description) or "",
            booking_id=booking_id,
            amount_usdt=amount_usdt,
            amount_ars=amount_ars,
            tc_used=tc_used,
            is_confirmed=is_confirmed,
            created_at=now,
        )
        income = await self.incomes.add(income)
        log.info("Added income %s: %.2f BRL (%s)", income.id, amount_brl, income.category.value)
        return income

    async def update_income(self, income_id: str, **changes: Any) -> Income:
        """
        Edit an income. Converted amounts follow the income's own TC fields.

        Raises:
            ValueError: For unknown fields or a non-positive amount
            NotFoundError: If the income does not exist
        """
        _check_fields(changes, _INCOME_FIELDS, "income")
        income = await self.incomes.require(income_id)
        brl_ars = changes.pop("brl_ars", None)
        if "amount_brl" in changes:
            changes["amount_brl"] = _require_amount(changes["amount_brl"], "amount_brl")
        if "category" in changes:
            changes["category"] = IncomeCategory(changes["category"])
        if "description" in changes:
            changes["description"] = sanitize_text(changes["description"]) or ""
        updated = replace(income, **changes)

        if "amount_brl" in changes or "tc_used" in changes:
            updated = replace(
                updated,
                amount_usdt=convert_amount(updated.amount_brl, updated.tc_used) if updated.tc_used is not None else None,
            )
        if brl_ars is not None:
            updated = replace(updated, amount_ars=_income_conversions(updated.amount_brl, None, brl_ars)[1])
        elif "amount_brl" in changes and income.amount_ars is not None:
            # Keep the ARS rate the income was recorded with
            updated = replace(updated, amount_ars=round2(income.amount_ars / income.amount_brl * updated.amount_brl))

        await self.incomes.save(updated)
        log.info("Updated income %s (%s)", income_id, ", ".join(sorted(changes)) or "no fields")
        return updated

    async def delete_income(self, income_id: str) -> None:
        await self.incomes.delete(income_id)
        log.info("Deleted income %s", income_id)

    async def confirm_income(self, income_id: str) -> None:
        """Mark an income awaiting validation as confirmed."""
        await self.incomes.update(income_id, {"isConfirmed": True})
        log.info("Confirmed income %s", income_id)

    async def unconfirmed_incomes(self) -> List[Income]:
        return await self.incomes.find(isConfirmed=False)

    async def incomes_for_booking(self, booking_id: str) -> List[Income]:
        return await self.incomes.for_booking(booking_id)

    async def incomes_by_month(self, year: int, month: int) -> List[Income]:
        """Incomes dated in the given month (1-12), newest first."""
        incomes = [i for i in await self.incomes.all() if _in_month(i.date, year, month)]
        return sorted(incomes, key=lambda i: i.date, reverse=True)

    async def total_income_by_month(self, year: int, month: int) -> float:
        return round2(sum(i.amount_brl for i in await self.incomes_by_month(year, month)))

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    async def add_expense(
        self,
        amount_brl: float,
        category: ExpenseCategory,
        description: str,
        date: Optional[datetime] = None,
        is_paid: bool = False,
        due_date: Optional[date] = None,
        is_recurring: bool = False,
        recurring_day: Optional[int] = None,
        tc_at_payment: Optional[float] = None,
    ) -> Expense:
        """
        Record an expense; a TC at payment freezes its USDT amount.

        Raises:
            ValueError: If the amount is not positive or recurring_day is outside 1-31
            InvalidRateError: If tc_at_payment is not positive
        """
        amount_brl = _require_amount(amount_brl, "amount_brl")
        if recurring_day is not None and not 1 <= int(recurring_day) <= 31:
            raise ValueError(f"recurring_day must be 1-31, got {recurring_day!r}")
        now = utc_now()
        expense = Expense(
            date=date or now,
            amount_brl=amount_brl,
            category=ExpenseCategory(category),
            description=sanitize_text(description) or "",
            is_paid=is_paid,
            due_date=due_date,
            is_recurring=is_recurring,
            recurring_day=recurring_day,
            tc_at_payment=tc_at_payment,
            amount_usdt=convert_amount(amount_brl, tc_at_payment) if tc_at_payment is not None else None,
            created_at=now,
        )
        expense = await self.expenses.add(expense)
        log.info("Added expense %s: %.2f BRL (%s)", expense.id, amount_brl, expense.category.value)
        return expense

    async def update_expense(self, expense_id: str, **changes: Any) -> Expense:
        """Edit an expense; amount_usdt is re-converted only from the expense's own TC."""
        _check_fields(changes, _EXPENSE_FIELDS, "expense")
        expense = await self.expenses.require(expense_id)
        if "amount_brl" in changes:
            changes["amount_brl"] = _require_amount(changes["amount_brl"], "amount_brl")
        if "category" in changes:
            changes["category"] = ExpenseCategory(changes["category"])
        if "description" in changes:
            changes["description"] = sanitize_text(changes["description"]) or ""
        updated = replace(expense, **changes)
        if "amount_brl" in changes or "tc_at_payment" in changes:
            tc = updated.tc_at_payment
            updated = replace(updated, amount_usdt=convert_amount(updated.amount_brl, tc) if tc is not None else None)
        await self.expenses.save(updated)
        log.info("Updated expense %s (%s)", expense_id, ", ".join(sorted(changes)) or "no fields")
        return updated

    async def delete_expense(self, expense_id: str) -> None:
        await self.expenses.delete(expense_id)
        log.info("Deleted expense %s", expense_id)

    async def mark_expense_paid(self, expense_id: str, tc_at_payment: Optional[float] = None) -> Expense:
        """Mark an expense paid, freezing its USDT amount when a TC is given."""
        expense = await self.expenses.require(expense_id)
        updated = replace(expense, is_paid=True)
        if tc_at_payment is not None:
            updated = replace(
                updated,
                tc_at_payment=tc_at_payment,
                amount_usdt=convert_amount(expense.amount_brl, tc_at_payment),
            )
        await self.expenses.save(updated)
        log.info("Expense %s paid", expense_id)
        return updated

    async def pending_expenses(self) -> List[Expense]:
        return await self.expenses.find(isPaid=False)

    async def expenses_by_month(self, year: int, month: int) -> List[Expense]:
        expenses = [e for e in await self.expenses.all() if _in_month(e.date, year, month)]
        return sorted(expenses, key=lambda e: e.date, reverse=True)

    async def total_expenses_by_month(self, year: int, month: int) -> float:
        return round2(sum(e.amount_brl for e in await self.expenses_by_month(year, month)))

    # ------------------------------------------------------------------
    # Projected expenses
    # ------------------------------------------------------------------

    async def add_projected_expense(
        self,
        description: str,
        estimated_amount_usdt: float,
        category: str = "otros",
    ) -> ProjectedExpense:
        item = ProjectedExpense(
            description=sanitize_text(description) or "",
            estimated_amount_usdt=_require_amount(estimated_amount_usdt, "estimated_amount_usdt"),
            category=sanitize_text(category, max_length=50) or "otros",
            created_at=utc_now(),
        )
        item = await self.projected.add(item)
        log.info("Added projected expense %s: %.2f USDT", item.id, item.estimated_amount_usdt)
        return item

    async def update_projected_expense(self, item_id: str, **changes: Any) -> ProjectedExpense:
        _check_fields(changes, _PROJECTED_FIELDS, "projected expense")
        item = await self.projected.require(item_id)
        if "estimated_amount_usdt" in changes:
            changes["estimated_amount_usdt"] = _require_amount(
                changes["estimated_amount_usdt"], "estimated_amount_usdt"
            )
        updated = replace(item, **changes)
        await self.projected.save(updated)
        return updated

    async def delete_projected_expense(self, item_id: str) -> None:
        await self.projected.delete(item_id)
        log.info("Deleted projected expense %s", item_id)

    async def mark_purchased(
        self,
        item_id: str,
        amount_brl: Optional[float] = None,
        tc_at_payment: Optional[float] = None,
    ) -> ProjectedExpense:
        """
        Mark a planned purchase as bought.

        When both the BRL amount paid and the TC are given, the actual USDT
        amount is frozen from them.
        """
        item = await self.projected.require(item_id)
        updated = replace(item, status=ProjectedExpenseStatus.PURCHASED, purchased_at=utc_now())
        if amount_brl is not None:
            updated = replace(updated, amount_brl=_require_amount(amount_brl, "amount_brl"))
        if tc_at_payment is not None:
            updated = replace(updated, tc_at_payment=tc_at_payment)
        if updated.amount_brl is not None and updated.tc_at_payment is not None:
            updated = replace(updated, amount_usdt=convert_amount(updated.amount_brl, updated.tc_at_payment))
        await self.projected.save(updated)
        log.info("Projected expense %s purchased", item_id)
        return updated

    async def pending_projected_expenses(self) -> List[ProjectedExpense]:
        return await self.projected.find(status=ProjectedExpenseStatus.PENDING.value)

    async def total_pending_usdt(self) -> float:
        return round2(sum(p.estimated_amount_usdt for p in await self.pending_projected_expenses()))

    async def projected_by_category(self, category: str) -> List[ProjectedExpense]:
        return await self.projected.find(category=category)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    async def monthly_summary(self, year: int, month: int) -> MonthlySummary:
        incomes = await self.incomes_by_month(year, month)
        expenses = await self.expenses_by_month(year, month)
        income_total = round2(sum(i.amount_brl for i in incomes))
        expense_total = round2(sum(e.amount_brl for e in expenses))
        return MonthlySummary(
            year=year,
            month=month,
            income_brl=income_total,
            expense_brl=expense_total,
            net_brl=round2(income_total - expense_total),
            income_count=len(incomes),
            expense_count=len(expenses),
        )
