# src/rentarb/application/rate_engine.py
"""
Rate Engine - Cross-Rates from Live Binance Ticks

This module keeps the last known price of each tracked instrument and, on a
fixed cadence, derives the BRL/ARS/USDT cross-rates from them:

    usdt_ars_derived = btc_ars / btc_usdt
    brl_ars          = usdt_ars_derived / usdt_brl
    spread           = (usdt_ars_direct - usdt_ars_derived) / usdt_ars_derived * 100   (0 without a direct quote)

Ticks only update the price record; derivation happens in publish(), which
runs every publish_interval seconds so a burst of trades turns into at most
one update per interval. Nothing is published until BTC/USDT, BTC/ARS and
USDT/BRL are all known.

Bad ticks and transport failures never raise to consumers: they are logged
and reflected in state (is_connected, seconds_since_update).

Files that USE this module:
- rentarb.app (runs the engine and logs its updates)
- rentarb.application.health (engine liveness checks)
- tests.test_rate_engine (unit tests)

Files that this module USES:
- rentarb.adapters.binance.base (TickSource interface)
- rentarb.config (publish interval and update buffer size)
- rentarb.domain.models (Tick, PriceSnapshot, DerivedRates, RateChange, RatesUpdate)
- rentarb.shared.money (percent_change)
"""
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from rentarb.adapters.binance.base import TickSource
from rentarb.config import settings
from rentarb.domain.models import (
    DerivedRates,
    Instrument,
    PriceSnapshot,
    RateChange,
    RatesUpdate,
    Tick,
    parse_datetime,
    utc_now,
)
from rentarb.shared.money import percent_change
from rentarb.shared.validators import validate_price

log = logging.getLogger(__name__)


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def derive_rates(snapshot: PriceSnapshot) -> Optional[DerivedRates]:
    """
    Derive cross-rates from raw prices.

    Args:
        snapshot: Last known prices

    Returns:
        DerivedRates, or None when any required price is missing or not positive
    """
    if not (_positive(snapshot.btc_usdt) and _positive(snapshot.btc_ars) and _positive(snapshot.usdt_brl)):
        return None

    usdt_ars = snapshot.btc_ars / snapshot.btc_usdt
    brl_ars = usdt_ars / snapshot.usdt_brl
    direct = snapshot.usdt_ars_direct if _positive(snapshot.usdt_ars_direct) else None
    spread = (direct - usdt_ars) / usdt_ars * 100 if direct is not None else 0.0

    return DerivedRates(
        usdt_ars_derived=usdt_ars,
        usdt_brl=snapshot.usdt_brl,
        brl_ars=brl_ars,
        spread=spread,
        btc_usdt=snapshot.btc_usdt,
        btc_ars=snapshot.btc_ars,
        usdt_ars_direct=direct,
        ts=snapshot.ts,
    )


def compute_changes(current: DerivedRates, previous: Optional[DerivedRates]) -> RateChange:
    """
    Percentage change per rate; 0 on the first publish or when the prior value is 0.

    usdt_ars_direct is None when the current rates carry no direct quote.
    """
    prev = previous or current
    first = previous is None
    direct_change = None
    if current.usdt_ars_direct is not None:
        direct_change = 0.0 if first else percent_change(current.usdt_ars_direct, prev.usdt_ars_direct)
    return RateChange(
        usdt_ars=0.0 if first else percent_change(current.usdt_ars_derived, prev.usdt_ars_derived),
        usdt_brl=0.0 if first else percent_change(current.usdt_brl, prev.usdt_brl),
        brl_ars=0.0 if first else percent_change(current.brl_ars, prev.brl_ars),
        usdt_ars_direct=direct_change,
    )


class UpdateStream:
    """
    One subscriber's view of published updates.

    Holds at most maxsize pending updates; when the consumer falls behind
    the oldest pending update is dropped, so the newest rates always arrive.
    """

    _CLOSED = object()

    def __init__(self, engine: RateEngine, maxsize: int):
        self._engine = engine
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self._closed = False
        self.dropped = 0

    def _offer(self, item) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._maxsize:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def close(self) -> None:
        """End iteration for this subscriber; pending updates are still delivered."""
        if self._closed:
            return
        # The extra queue slot guarantees room for the end marker
        self._queue.put_nowait(self._CLOSED)
        self._closed = True
        self._engine._unsubscribe(self)

    def __aiter__(self) -> UpdateStream:
        return self

    async def __anext__(self) -> RatesUpdate:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class RateEngine:
    """
    Live cross-rate engine over a TickSource.

    Usage:
        async with RateEngine(BinanceTradeStream()) as engine:
            async for update in engine.updates():
                print(update.rates.brl_ars)
    """

    def __init__(
        self,
        source: TickSource,
        publish_interval: Optional[float] = None,
        queue_size: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            source: Live tick source; the engine owns its lifecycle once started
            publish_interval: Seconds between publishes (defaults to settings)
            queue_size: Pending updates buffered per subscriber (defaults to settings)
        """
        self.source = source
        self.publish_interval = publish_interval if publish_interval is not None else settings.publish_interval_seconds
        self.queue_size = queue_size if queue_size is not None else settings.update_queue_size

        # Ticks may be ingested from other threads (e.g. a REST prime in an executor)
        self._lock = threading.Lock()
        self._prices: Dict[Instrument, Tick] = {}
        self._dirty = False

        self._rates: Optional[DerivedRates] = None
        self._previous: Optional[DerivedRates] = None
        self._changes = RateChange()
        self._last_update: Optional[RatesUpdate] = None
        self._connected = False

        self._streams: List[UpdateStream] = []
        self._consumer_task: Optional[asyncio.Task] = None
        self._publisher_task: Optional[asyncio.Task] = None
        self._reconnect_lock = asyncio.Lock()

        source.set_status_callback(self._on_status)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def rates(self) -> Optional[DerivedRates]:
        return self._rates

    @property
    def previous_rates(self) -> Optional[DerivedRates]:
        return self._previous

    @property
    def changes(self) -> RateChange:
        return self._changes

    @property
    def has_rates(self) -> bool:
        return self._rates is not None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def last_updated(self) -> Optional[datetime]:
        return self._last_update.published_at if self._last_update is not None else None

    def seconds_since_update(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds since the last publish, or None before the first one."""
        last = self.last_updated
        if last is None:
            return None
        return ((now or utc_now()) - last).total_seconds()

    def is_stale(self, max_age_seconds: Optional[float] = None, now: Optional[datetime] = None) -> bool:
        max_age = max_age_seconds if max_age_seconds is not None else settings.stale_after_seconds
        age = self.seconds_since_update(now)
        return age is None or age > max_age

    def snapshot(self) -> PriceSnapshot:
        """Current last-known prices."""
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> PriceSnapshot:
        def price(instrument: Instrument) -> Optional[float]:
            tick = self._prices.get(instrument)
            return tick.price if tick is not None else None

        ts = max((t.timestamp for t in self._prices.values()), default=None)
        return PriceSnapshot(
            btc_usdt=price(Instrument.BTC_USDT),
            btc_ars=price(Instrument.BTC_ARS),
            usdt_brl=price(Instrument.USDT_BRL),
            usdt_ars_direct=price(Instrument.USDT_ARS),
            ts=ts,
        )

    # ------------------------------------------------------------------
    # Ingest / publish
    # ------------------------------------------------------------------

    def ingest(self, tick: Tick) -> bool:
        """
        Record one tick as the last known price of its instrument.

        Malformed ticks, non-positive prices and ticks older than the stored
        one are dropped (logged, never raised).

        Returns:
            True if the price record changed
        """
        try:
            instrument = Instrument(tick.instrument)
        except (AttributeError, ValueError):
            log.debug("Dropping tick for unknown instrument: %r", tick)
            return False

        price = validate_price(getattr(tick, "price", None))
        if price is None:
            log.debug("Dropping %s tick with invalid price %r", instrument.value, getattr(tick, "price", None))
            return False

        timestamp = getattr(tick, "timestamp", None)
        if isinstance(timestamp, datetime):
            # Naive timestamps are taken as UTC so they compare with aware ones
            timestamp = parse_datetime(timestamp)
        else:
            timestamp = utc_now()

        with self._lock:
            current = self._prices.get(instrument)
            if current is not None and timestamp < current.timestamp:
                log.debug("Dropping out-of-order %s tick (%s < %s)", instrument.value, timestamp, current.timestamp)
                return False
            self._prices[instrument] = Tick(instrument=instrument, price=price, timestamp=timestamp)
            self._dirty = True
        return True

    def prime(self, ticks: Iterable[Tick]) -> int:
        """Seed last-known prices (e.g. from a REST snapshot). Returns ticks accepted."""
        accepted = sum(1 for tick in ticks if self.ingest(tick))
        log.info("Rate engine primed with %d prices", accepted)
        return accepted

    def publish(self) -> Optional[RatesUpdate]:
        """
        Derive and publish rates from the current prices.

        Returns:
            The published update, or None when nothing changed since the last
            publish or the required prices are not all known yet
        """
        with self._lock:
            if not self._dirty:
                return None
            snapshot = self._snapshot_locked()
            self._dirty = False

        rates = derive_rates(snapshot)
        if rates is None:
            log.debug("Insufficient data for cross-rates: %s", snapshot)
            return None

        previous = self._rates
        changes = compute_changes(rates, previous)
        update = RatesUpdate(rates=rates, previous=previous, changes=changes, published_at=utc_now())

        self._previous = previous
        self._rates = rates
        self._changes = changes
        self._last_update = update

        for stream in list(self._streams):
            stream._offer(update)
        return update

    def updates(self) -> UpdateStream:
        """
        Subscribe to published updates.

        The latest update, if any, is delivered first. Iteration ends when the
        engine stops or the stream is closed.
        """
        stream = UpdateStream(self, self.queue_size)
        if self._last_update is not None:
            stream._offer(self._last_update)
        self._streams.append(stream)
        return stream

    def _unsubscribe(self, stream: UpdateStream) -> None:
        if stream in self._streams:
            self._streams.remove(stream)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _on_status(self, connected: bool) -> None:
        if connected != self._connected:
            log.info("Tick source %s", "connected" if connected else "disconnected")
        self._connected = connected

    async def _consume(self) -> None:
        ticks = self.source.ticks()
        try:
            async for tick in ticks:
                self.ingest(tick)
            log.warning("Tick source stopped; call reconnect() to restart it")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Tick source failed: %s", e, exc_info=True)
        finally:
            await ticks.aclose()
            self._connected = False

    async def _publish_loop(self) -> None:
        while True:
            await asyncio.sleep(self.publish_interval)
            try:
                self.publish()
            except Exception as e:
                log.error("Rate publish failed: %s", e, exc_info=True)

    async def start(self) -> None:
        """Start consuming ticks and publishing. Starting twice is a no-op."""
        if self._publisher_task is not None:
            return
        log.info("Starting rate engine (publish every %.3fs)", self.publish_interval)
        self._consumer_task = asyncio.create_task(self._consume(), name="rate-engine-consumer")
        self._publisher_task = asyncio.create_task(self._publish_loop(), name="rate-engine-publisher")

    async def stop(self) -> None:
        """Stop the engine, close the source and end every update stream."""
        await self.source.close()
        tasks = [t for t in (self._consumer_task, self._publisher_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._consumer_task = None
        self._publisher_task = None
        self._connected = False
        for stream in list(self._streams):
            stream.close()
        log.info("Rate engine stopped")

    async def reconnect(self) -> bool:
        """
        Restart the tick source.

        Safe to call at any time: while the source is connected or a
        connection attempt is in flight nothing happens.

        Returns:
            True if a restart was performed
        """
        async with self._reconnect_lock:
            if self.source.is_connected or self.source.is_connecting:
                log.info("Reconnect skipped: tick source already %s",
                         "connected" if self.source.is_connected else "connecting")
                return False
            if self._publisher_task is None:
                await self.start()
                return True

            task = self._consumer_task
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            log.info("Restarting tick source")
            self._consumer_task = asyncio.create_task(self._consume(), name="rate-engine-consumer")
            return True

    async def __aenter__(self) -> RateEngine:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
