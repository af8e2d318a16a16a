# tests/conftest.py
"""
Shared Test Fixtures

In-memory ledger stores (plain, with injectable write failures, and one that
yields to the event loop on every call), a scripted
tick source for the rate engine, and small helpers for async tests.

Files that USE this module:
- pytest (fixture discovery for every test module)

Files that this module USES:
- rentarb.adapters.persistence (MemoryDocumentStore and repositories)
- rentarb.adapters.binance.base (TickSource base class)
"""
import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from rentarb.adapters.binance.base import TickSource
from rentarb.adapters.persistence import (
    BookingRepository,
    ExpenseRepository,
    IncomeRepository,
    MemoryDocumentStore,
    ProjectedExpenseRepository,
)
from rentarb.domain.models import Instrument, Tick

T0 = datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


def make_tick(instrument: Instrument, price, seconds: float = 0.0) -> Tick:
    return Tick(instrument=instrument, price=price, timestamp=T0 + timedelta(seconds=seconds))


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll predicate() until it is true or fail the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FlakyStore(MemoryDocumentStore):
    """MemoryDocumentStore whose writes can be told to fail."""

    def __init__(self):
        super().__init__()
        # (operation, collection) -> [successes left before failing, failures left (None = forever)]
        self._rules: Dict[Tuple[str, str], List[Optional[int]]] = {}

    def fail(self, operation: str, collection: str, after: int = 0, times: Optional[int] = None) -> None:
        self._rules[(operation, collection)] = [after, times]

    def heal(self) -> None:
        self._rules.clear()

    def _maybe_fail(self, operation: str, collection: str) -> None:
        rule = self._rules.get((operation, collection))
        if rule is None:
            return
        if rule[0] > 0:
            rule[0] -= 1
            return
        if rule[1] is None or rule[1] > 0:
            if rule[1] is not None:
                rule[1] -= 1
            raise OSError(f"injected {operation} failure on {collection}")

    async def create(self, collection, data):
        self._maybe_fail("create", collection)
        return await super().create(collection, data)

    async def update(self, collection, doc_id, fields):
        self._maybe_fail("update", collection)
        return await super().update(collection, doc_id, fields)

    async def delete(self, collection, doc_id):
        self._maybe_fail("delete", collection)
        return await super().delete(collection, doc_id)


class YieldingStore(MemoryDocumentStore):
    """MemoryDocumentStore that hands control back to the event loop on every call."""

    async def get(self, collection, doc_id):
        await asyncio.sleep(0)
        return await super().get(collection, doc_id)

    async def query(self, collection, **equals):
        await asyncio.sleep(0)
        return await super().query(collection, **equals)

    async def create(self, collection, data):
        await asyncio.sleep(0)
        return await super().create(collection, data)

    async def update(self, collection, doc_id, fields):
        await asyncio.sleep(0)
        return await super().update(collection, doc_id, fields)

    async def delete(self, collection, doc_id):
        await asyncio.sleep(0)
        return await super().delete(collection, doc_id)


class FakeTickSource(TickSource):
    """Tick source fed by the test through push(); end() finishes the current ticks() run."""

    def __init__(self, ticks=()):
        super().__init__()
        self.queue: asyncio.Queue = asyncio.Queue()
        for tick in ticks:
            self.queue.put_nowait(tick)
        self.connected = False
        self.connecting = False
        self.closed = False
        self.starts = 0
        self.subscribed: List[Instrument] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def is_connecting(self) -> bool:
        return self.connecting

    def set_connected(self, connected: bool) -> None:
        self.connected = connected
        self._notify_status(connected)

    def push(self, tick) -> None:
        self.queue.put_nowait(tick)

    def end(self) -> None:
        self.queue.put_nowait(None)

    async def ticks(self):
        self.starts += 1
        self.set_connected(True)
        try:
            while True:
                item = await self.queue.get()
                if item is None:
                    return
                yield item
        finally:
            self.set_connected(False)

    async def subscribe(self, instrument):
        self.subscribed.append(instrument)

    async def unsubscribe(self, instrument):
        self.subscribed.remove(instrument)

    async def close(self):
        self.closed = True
        self.end()


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest.fixture
def yielding_store():
    return YieldingStore()


@pytest.fixture
def incomes(store):
    return IncomeRepository(store)


@pytest.fixture
def bookings(store):
    return BookingRepository(store)


@pytest.fixture
def expenses(store):
    return ExpenseRepository(store)


@pytest.fixture
def projected(store):
    return ProjectedExpenseRepository(store)


@pytest.fixture
def tick_source():
    return FakeTickSource()


@pytest.fixture
def stay():
    """The 5-night January stay used across booking tests."""
    return date(2024, 1, 10), date(2024, 1, 15)
