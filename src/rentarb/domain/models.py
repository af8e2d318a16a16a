# src/rentarb/domain/models.py
"""
Domain Models - Pure Business Objects

This module contains domain models representing core business concepts:
- Market ticks and price snapshots
- Derived cross-rates and their percentage changes
- Bookings, incomes, expenses and projected expenses

Ledger entities convert to and from the loose JSON documents kept by the
ledger store (camelCase field names, ISO-8601 dates).

Files that USE this module:
- rentarb.application.* (all services use domain models)
- rentarb.adapters.* (adapters create and use domain models)
- tests.* (tests use domain models for test data)

Files that this module USES:
- None (pure domain layer, no external dependencies)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations

from dataclasses import dataclass  # Data classes for immutable and mutable records
from datetime import date, datetime, timezone  # Date/time utilities for stays and timestamps
from enum import Enum  # Closed sets of statuses and categories
from typing import Any, Dict, Optional  # Type hints for documents and optional values


class Instrument(str, Enum):
    """Trading pairs the rate engine tracks (Binance symbols)."""
    BTC_USDT = "BTCUSDT"
    BTC_ARS = "BTCARS"
    USDT_BRL = "USDTBRL"
    USDT_ARS = "USDTARS"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RentalType(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


class Platform(str, Enum):
    AIRBNB = "airbnb"
    BOOKING = "booking"
    DIRECT = "direct"
    OTHER = "other"


class IncomeCategory(str, Enum):
    RENTAL = "rental"  # remaining 70%, paid at check-in
    DEPOSIT = "deposit"  # 30% seña, paid at confirmation
    OTHER = "other"


class ExpenseCategory(str, Enum):
    IPTU = "iptu"
    AMBIENTAL = "ambiental"
    CONDOMINIO = "condominio"
    INTERNET = "internet"
    CELESC = "celesc"
    REPARACION = "reparacion"
    LIMPIEZA = "limpieza"
    COMISION = "comision"
    OTHER = "other"


class ProjectedExpenseStatus(str, Enum):
    PENDING = "pendiente"
    PURCHASED = "comprado"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_datetime(raw: Any) -> Optional[datetime]:
    """
    Parse an ISO timestamp from a ledger document.

    Accepts both "...Z" and "+00:00" suffixes; naive values are taken as UTC.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        dt = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_date(raw: Any) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def _opt_float(raw: Any) -> Optional[float]:
    return float(raw) if raw is not None else None


@dataclass(frozen=True)
class Tick:
    """One trade price for one instrument, as reported by the tick source."""
    instrument: Instrument
    price: float
    timestamp: datetime


@dataclass(frozen=True)
class PriceSnapshot:
    """
    Last known raw prices at one instant.

    Attributes:
        btc_usdt: BTC price in USDT, None until a tick arrives
        btc_ars: BTC price in ARS, None until a tick arrives
        usdt_brl: USDT price in BRL, None until a tick arrives
        usdt_ars_direct: Direct USDT/ARS quote, None when not tracked or not seen
        ts: Timestamp of the newest tick contributing to this snapshot
    """
    btc_usdt: Optional[float] = None
    btc_ars: Optional[float] = None
    usdt_brl: Optional[float] = None
    usdt_ars_direct: Optional[float] = None
    ts: Optional[datetime] = None


@dataclass(frozen=True)
class DerivedRates:
    """
    Cross-rates computed from a complete PriceSnapshot.

    Attributes:
        usdt_ars_derived: btc_ars / btc_usdt (crypto dollar)
        usdt_brl: USDT price in BRL (passed through)
        brl_ars: usdt_ars_derived / usdt_brl
        spread: % gap between the direct and derived USDT/ARS (0 without a direct quote)
        usdt_ars_direct: Direct USDT/ARS quote, if any
        btc_usdt: Source BTC/USDT price
        btc_ars: Source BTC/ARS price
        ts: Timestamp of the snapshot these rates were derived from
    """
    usdt_ars_derived: float
    usdt_brl: float
    brl_ars: float
    spread: float
    btc_usdt: float
    btc_ars: float
    usdt_ars_direct: Optional[float] = None
    ts: Optional[datetime] = None


@dataclass(frozen=True)
class RateChange:
    """Percentage change per tracked rate versus the previous publish."""
    usdt_ars: float = 0.0
    usdt_brl: float = 0.0
    brl_ars: float = 0.0
    usdt_ars_direct: Optional[float] = None


@dataclass(frozen=True)
class RatesUpdate:
    """One publish of the rate engine, as delivered to subscribers."""
    rates: DerivedRates
    previous: Optional[DerivedRates]
    changes: RateChange
    published_at: datetime


@dataclass
class Booking:
    """
    A reservation of the property.

    Amounts are priced once when the booking is saved and stored as-is;
    incomes generated from them are never rewritten by later edits.
    """
    check_in: date
    check_out: date
    rental_type: RentalType
    total_amount: float
    deposit_amount: float
    remaining_amount: float
    platform: Platform = Platform.DIRECT
    status: BookingStatus = BookingStatus.PENDING
    daily_rate: Optional[float] = None
    monthly_rate: Optional[float] = None
    nights: Optional[int] = None
    months: Optional[int] = None
    guest_name: Optional[str] = None
    notes: Optional[str] = None
    deposit_paid: bool = False
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        """Short human label: guest name, or check-in as dd/mm."""
        return self.guest_name or self.check_in.strftime("%d/%m")

    def to_document(self) -> Dict[str, Any]:
        return {
            "guestName": self.guest_name,
            "checkIn": _iso(self.check_in),
            "checkOut": _iso(self.check_out),
            "rentalType": self.rental_type.value,
            "dailyRate": self.daily_rate,
            "monthlyRate": self.monthly_rate,
            "nights": self.nights,
            "months": self.months,
            "totalAmount": self.total_amount,
            "depositAmount": self.deposit_amount,
            "depositPaid": self.deposit_paid,
            "remainingAmount": self.remaining_amount,
            "platform": self.platform.value,
            "status": self.status.value,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> Booking:
        return cls(
            id=doc_id,
            guest_name=data.get("guestName"),
            check_in=parse_date(data["checkIn"]),
            check_out=parse_date(data["checkOut"]),
            rental_type=RentalType(data.get("rentalType", RentalType.DAILY.value)),
            daily_rate=_opt_float(data.get("dailyRate")),
            monthly_rate=_opt_float(data.get("monthlyRate")),
            nights=data.get("nights"),
            months=data.get("months"),
            total_amount=float(data.get("totalAmount", 0.0)),
            deposit_amount=float(data.get("depositAmount", 0.0)),
            deposit_paid=bool(data.get("depositPaid", False)),
            remaining_amount=float(data.get("remainingAmount", 0.0)),
            platform=Platform(data.get("platform", Platform.OTHER.value)),
            status=BookingStatus(data.get("status", BookingStatus.PENDING.value)),
            notes=data.get("notes"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
        )


@dataclass
class Income:
    """
    A ledger entry of money received, in BRL.

    amount_usdt / amount_ars are converted once from tc_used at entry time.
    """
    date: datetime
    amount_brl: float
    category: IncomeCategory
    description: str
    booking_id: Optional[str] = None
    amount_usdt: Optional[float] = None
    amount_ars: Optional[float] = None
    tc_used: Optional[float] = None
    is_confirmed: bool = True
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "bookingId": self.booking_id,
            "date": _iso(self.date),
            "amountBRL": self.amount_brl,
            "amountUSDT": self.amount_usdt,
            "amountARS": self.amount_ars,
            "tcUsed": self.tc_used,
            "category": self.category.value,
            "description": self.description,
            "isConfirmed": self.is_confirmed,
            "createdAt": _iso(self.created_at),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> Income:
        return cls(
            id=doc_id,
            booking_id=data.get("bookingId"),
            date=parse_datetime(data["date"]),
            amount_brl=float(data.get("amountBRL", 0.0)),
            amount_usdt=_opt_float(data.get("amountUSDT")),
            amount_ars=_opt_float(data.get("amountARS")),
            tc_used=_opt_float(data.get("tcUsed")),
            category=IncomeCategory(data.get("category", IncomeCategory.OTHER.value)),
            description=data.get("description", ""),
            # Entries written before the confirmation flag existed count as confirmed
            is_confirmed=bool(data.get("isConfirmed", True)),
            created_at=parse_datetime(data.get("createdAt")),
        )


@dataclass
class Expense:
    """A property expense in BRL, with the USDT amount frozen at payment."""
    date: datetime
    amount_brl: float
    category: ExpenseCategory
    description: str
    is_paid: bool = False
    due_date: Optional[date] = None
    is_recurring: bool = False
    recurring_day: Optional[int] = None
    tc_at_payment: Optional[float] = None
    amount_usdt: Optional[float] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "date": _iso(self.date),
            "amountBRL": self.amount_brl,
            "category": self.category.value,
            "description": self.description,
            "isPaid": self.is_paid,
            "dueDate": _iso(self.due_date),
            "isRecurring": self.is_recurring,
            "recurringDay": self.recurring_day,
            "tcAtPayment": self.tc_at_payment,
            "amountUSDT": self.amount_usdt,
            "createdAt": _iso(self.created_at),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> Expense:
        return cls(
            id=doc_id,
            date=parse_datetime(data["date"]),
            amount_brl=float(data.get("amountBRL", 0.0)),
            category=ExpenseCategory(data.get("category", ExpenseCategory.OTHER.value)),
            description=data.get("description", ""),
            is_paid=bool(data.get("isPaid", False)),
            due_date=parse_date(data.get("dueDate")),
            is_recurring=bool(data.get("isRecurring", False)),
            recurring_day=data.get("recurringDay"),
            tc_at_payment=_opt_float(data.get("tcAtPayment")),
            amount_usdt=_opt_float(data.get("amountUSDT")),
            created_at=parse_datetime(data.get("createdAt")),
        )


@dataclass
class ProjectedExpense:
    """A planned purchase estimated in USDT; actual BRL/TC recorded when bought."""
    description: str
    estimated_amount_usdt: float
    category: str = "otros"
    status: ProjectedExpenseStatus = ProjectedExpenseStatus.PENDING
    amount_brl: Optional[float] = None
    tc_at_payment: Optional[float] = None
    amount_usdt: Optional[float] = None
    purchased_at: Optional[datetime] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "estimatedAmountUSDT": self.estimated_amount_usdt,
            "category": self.category,
            "status": self.status.value,
            "amountBRL": self.amount_brl,
            "tcAtPayment": self.tc_at_payment,
            "amountUSDT": self.amount_usdt,
            "purchasedAt": _iso(self.purchased_at),
            "createdAt": _iso(self.created_at),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> ProjectedExpense:
        return cls(
            id=doc_id,
            description=data.get("description", ""),
            estimated_amount_usdt=float(data.get("estimatedAmountUSDT", 0.0)),
            category=data.get("category", "otros"),
            status=ProjectedExpenseStatus(data.get("status", ProjectedExpenseStatus.PENDING.value)),
            amount_brl=_opt_float(data.get("amountBRL")),
            tc_at_payment=_opt_float(data.get("tcAtPayment")),
            amount_usdt=_opt_float(data.get("amountUSDT")),
            purchased_at=parse_datetime(data.get("purchasedAt")),
            created_at=parse_datetime(data.get("createdAt")),
        )
