# src/rentarb/adapters/binance/stream.py
"""
Binance Trade Stream - Live Ticks over WebSocket

This module connects to Binance's public trade streams (no API key needed)
for the instruments the rate engine tracks and turns every trade frame into
a Tick. Disconnects are retried with exponential backoff up to a fixed
number of attempts; after that the tick iterator ends and the consumer
decides whether to start it again.

Frame format (raw stream):     {"e": "trade", "s": "BTCUSDT", "p": "60000.01", "T": 1700000000000, ...}
Frame format (combined stream): {"stream": "btcusdt@trade", "data": {...same as above...}}

Files that USE this module:
- rentarb.app (creates the stream for the rate engine)
- tests.test_binance_stream (unit tests)

Files that this module USES:
- rentarb.adapters.binance.base (TickSource base class)
- rentarb.config (settings for URL and reconnect policy)
- rentarb.domain.models (Instrument, Tick)
- rentarb.shared.validators (validate_price)
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from rentarb.adapters.binance.base import TickSource
from rentarb.config import settings
from rentarb.domain.models import Instrument, Tick, utc_now
from rentarb.shared.validators import validate_price

logger = logging.getLogger(__name__)

_WS_CLOSE_TIMEOUT = 5.0

BASE_INSTRUMENTS = (Instrument.BTC_USDT, Instrument.BTC_ARS, Instrument.USDT_BRL)


def default_instruments(track_direct_usdt_ars: bool) -> List[Instrument]:
    instruments = list(BASE_INSTRUMENTS)
    if track_direct_usdt_ars:
        instruments.append(Instrument.USDT_ARS)
    return instruments


def parse_trade_message(raw: Union[str, bytes]) -> Optional[Tick]:
    """
    Parse one websocket frame into a Tick.

    Args:
        raw: Frame payload as received

    Returns:
        Tick, or None for control frames, untracked symbols and malformed data
    """
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("Dropping unparseable stream frame: %s", e)
        return None
    if not isinstance(msg, dict):
        return None
    if isinstance(msg.get("data"), dict):
        msg = msg["data"]

    symbol = msg.get("s")
    raw_price = msg.get("p")
    if not symbol or raw_price is None:
        # Subscription acks ({"result": null, "id": 1}) and other control frames
        return None

    try:
        instrument = Instrument(str(symbol).upper())
    except ValueError:
        logger.debug("Ignoring trade for untracked symbol %s", symbol)
        return None

    price = validate_price(raw_price)
    if price is None:
        logger.warning("Dropping %s trade with invalid price %r", instrument.value, raw_price)
        return None

    ts_ms = msg.get("T") or msg.get("E")
    try:
        timestamp = datetime.fromtimestamp(int(ts_ms) / 1000, tz=timezone.utc) if ts_ms else utc_now()
    except (TypeError, ValueError, OverflowError, OSError):
        timestamp = utc_now()
    return Tick(instrument=instrument, price=price, timestamp=timestamp)


def reconnect_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Backoff before reconnect attempt N (1-based): base * 2^(N-1), capped."""
    return min(max_delay, base_delay * (2 ** max(0, attempt - 1)))


class BinanceTradeStream(TickSource):
    """
    Binance public trade stream for a set of instruments.

    Usage:
        stream = BinanceTradeStream()
        async for tick in stream.ticks():
            ...
        await stream.close()  # from another task
    """

    def __init__(
        self,
        instruments: Optional[Iterable[Instrument]] = None,
        url: Optional[str] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        ping_interval: Optional[float] = None,
    ):
        """
        Initialize the trade stream.

        Args:
            instruments: Instruments to stream (defaults to the engine's set from settings)
            url: Websocket base URL (defaults to settings.binance_ws_url)
            base_delay: First reconnect delay in seconds
            max_delay: Reconnect delay cap in seconds
            max_attempts: Consecutive failed attempts before giving up
            ping_interval: Websocket keepalive interval in seconds
        """
        super().__init__()
        if instruments is None:
            instruments = default_instruments(settings.track_direct_usdt_ars)
        self._instruments: List[Instrument] = list(dict.fromkeys(instruments))
        self.url = (url or settings.binance_ws_url).rstrip("/")
        self.base_delay = base_delay if base_delay is not None else settings.reconnect_base_delay_seconds
        self.max_delay = max_delay if max_delay is not None else settings.reconnect_max_delay_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.max_reconnect_attempts
        self.ping_interval = ping_interval if ping_interval is not None else settings.ws_ping_interval_seconds

        self._ws = None
        self._connecting = False
        self._closed = False
        self._request_id = 0

    @property
    def instruments(self) -> tuple:
        return tuple(self._instruments)

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    def stream_url(self) -> str:
        streams = "/".join(f"{i.value.lower()}@trade" for i in self._instruments)
        return f"{self.url}/{streams}"

    async def subscribe(self, instrument: Instrument) -> None:
        """Add an instrument; sent live when connected, else used on next connect."""
        if instrument in self._instruments:
            return
        self._instruments.append(instrument)
        if self._ws is not None:
            await self._send("SUBSCRIBE", instrument)

    async def unsubscribe(self, instrument: Instrument) -> None:
        if instrument not in self._instruments:
            return
        self._instruments.remove(instrument)
        if self._ws is not None:
            await self._send("UNSUBSCRIBE", instrument)

    async def _send(self, method: str, instrument: Instrument) -> None:
        self._request_id += 1
        payload = {
            "method": method,
            "params": [f"{instrument.value.lower()}@trade"],
            "id": self._request_id,
        }
        try:
            await self._ws.send(json.dumps(payload))
            logger.info("%s %s sent (id=%d)", method, instrument.value, self._request_id)
        except (ConnectionClosed, OSError) as e:
            # The next connection is built from the updated instrument list
            logger.warning("Could not send %s for %s: %s", method, instrument.value, e)

    async def ticks(self) -> AsyncIterator[Tick]:
        """
        Yield trades as ticks, reconnecting with backoff on failure.

        Ends when close() is called or after max_attempts consecutive failures.
        """
        if not self._instruments:
            raise ValueError("BinanceTradeStream has no instruments to stream")

        self._closed = False
        attempts = 0
        while not self._closed:
            self._connecting = True
            url = self.stream_url()
            try:
                logger.info("Connecting to Binance trade stream: %s", url)
                async with websockets.connect(
                    url,
                    ping_interval=self.ping_interval,
                    close_timeout=_WS_CLOSE_TIMEOUT,
                ) as ws:
                    self._ws = ws
                    self._connecting = False
                    attempts = 0
                    logger.info("Binance trade stream connected (%d instruments)", len(self._instruments))
                    self._notify_status(True)
                    async for raw in ws:
                        tick = parse_trade_message(raw)
                        if tick is not None and tick.instrument in self._instruments:
                            yield tick
                logger.info("Binance trade stream closed")
            except ConnectionClosed as e:
                logger.warning("Binance trade stream disconnected: %s", e)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("Binance trade stream connection failed: %s", e)
            finally:
                was_connected = self._ws is not None
                self._ws = None
                self._connecting = False
                if was_connected:
                    self._notify_status(False)

            if self._closed:
                break
            attempts += 1
            if attempts > self.max_attempts:
                logger.error("Max reconnection attempts reached (%d), stream stopped", self.max_attempts)
                self._notify_status(False)
                break
            delay = reconnect_delay(attempts, self.base_delay, self.max_delay)
            logger.info("Reconnecting in %.1fs (attempt %d/%d)", delay, attempts, self.max_attempts)
            await asyncio.sleep(delay)

    async def close(self) -> None:
        """Stop streaming; the tick iterator ends after the current frame."""
        self._closed = True
        ws = self._ws
        if ws is not None:
            await ws.close()
