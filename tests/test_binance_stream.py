# tests/test_binance_stream.py
"""
Binance Trade Stream Tests - Frame Parsing, Backoff and Reconnect Loop

websockets.connect is patched with an in-memory connection so no network
is touched.

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- rentarb.adapters.binance.stream (BinanceTradeStream, parse_trade_message, reconnect_delay)
- unittest.mock (patch, AsyncMock)
"""
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from rentarb.adapters.binance.stream import (
    BinanceTradeStream,
    default_instruments,
    parse_trade_message,
    reconnect_delay,
)
from rentarb.domain.models import Instrument

CONNECT = "rentarb.adapters.binance.stream.websockets.connect"


def trade(symbol: str, price: str, trade_time: int = 1_704_888_000_000) -> str:
    return json.dumps({"e": "trade", "E": trade_time + 5, "s": symbol, "t": 1, "p": price, "q": "0.01", "T": trade_time})


class FakeConnection:
    """Async-context-manager connection that replays frames, then closes normally."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            if self.closed:
                return
            yield frame

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True


class TestParseTradeMessage:
    def test_raw_trade_frame(self):
        tick = parse_trade_message(trade("BTCUSDT", "60000.50"))
        assert tick.instrument == Instrument.BTC_USDT
        assert tick.price == 60000.50
        assert tick.timestamp == datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)

    def test_combined_stream_frame(self):
        raw = json.dumps({"stream": "usdtbrl@trade", "data": json.loads(trade("USDTBRL", "5.40"))})
        tick = parse_trade_message(raw)
        assert tick.instrument == Instrument.USDT_BRL
        assert tick.price == 5.40

    def test_bytes_frame(self):
        assert parse_trade_message(trade("BTCARS", "54000000").encode()).instrument == Instrument.BTC_ARS

    @pytest.mark.parametrize("raw", [
        '{"result": null, "id": 1}',
        "not json",
        "[1, 2, 3]",
        trade("ETHUSDT", "3000"),
        trade("BTCUSDT", "0"),
        trade("BTCUSDT", "-1"),
        trade("BTCUSDT", "abc"),
    ])
    def test_unusable_frames_are_dropped(self, raw):
        assert parse_trade_message(raw) is None

    def test_missing_trade_time_uses_now(self):
        raw = json.dumps({"s": "BTCUSDT", "p": "60000"})
        before = datetime.now(timezone.utc)
        tick = parse_trade_message(raw)
        assert tick.timestamp >= before


class TestReconnectDelay:
    def test_exponential(self):
        assert [reconnect_delay(n, 1.0, 60.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        assert reconnect_delay(10, 1.0, 60.0) == 60.0


class TestBinanceTradeStream:
    def test_defaults(self):
        stream = BinanceTradeStream()
        assert stream.url == "wss://stream.binance.com:9443/ws"
        assert stream.max_attempts == 10
        assert stream.base_delay == 1.0
        assert not stream.is_connected
        assert not stream.is_connecting

    def test_default_instruments(self):
        assert default_instruments(False) == [Instrument.BTC_USDT, Instrument.BTC_ARS, Instrument.USDT_BRL]
        assert Instrument.USDT_ARS in default_instruments(True)

    def test_stream_url(self):
        stream = BinanceTradeStream([Instrument.BTC_USDT, Instrument.USDT_BRL], url="wss://example.test/ws/")
        assert stream.stream_url() == "wss://example.test/ws/btcusdt@trade/usdtbrl@trade"

    async def test_subscribe_while_disconnected_only_updates_set(self):
        stream = BinanceTradeStream([Instrument.BTC_USDT])
        await stream.subscribe(Instrument.BTC_ARS)
        await stream.subscribe(Instrument.BTC_ARS)
        assert stream.instruments == (Instrument.BTC_USDT, Instrument.BTC_ARS)

    async def test_subscribe_and_unsubscribe_while_connected(self):
        stream = BinanceTradeStream([Instrument.BTC_USDT])
        stream._ws = AsyncMock()
        await stream.subscribe(Instrument.USDT_ARS)
        await stream.unsubscribe(Instrument.BTC_USDT)

        sent = [json.loads(call.args[0]) for call in stream._ws.send.call_args_list]
        assert sent[0] == {"method": "SUBSCRIBE", "params": ["usdtars@trade"], "id": 1}
        assert sent[1] == {"method": "UNSUBSCRIBE", "params": ["btcusdt@trade"], "id": 2}
        assert stream.instruments == (Instrument.USDT_ARS,)

    async def test_ticks_from_connection(self):
        conn = FakeConnection([
            trade("BTCUSDT", "60000"),
            '{"result": null, "id": 1}',
            trade("USDTBRL", "5.40"),
        ])
        statuses = []
        stream = BinanceTradeStream([Instrument.BTC_USDT, Instrument.USDT_BRL], max_attempts=0)
        stream.set_status_callback(statuses.append)

        with patch(CONNECT, return_value=conn) as mock_connect:
            ticks = [t async for t in stream.ticks()]

        assert [(t.instrument, t.price) for t in ticks] == [
            (Instrument.BTC_USDT, 60000.0),
            (Instrument.USDT_BRL, 5.40),
        ]
        mock_connect.assert_called_once()
        assert mock_connect.call_args.args[0].endswith("/btcusdt@trade/usdtbrl@trade")
        assert statuses[0] is True
        assert statuses[-1] is False
        assert not stream.is_connected

    async def test_untracked_instrument_filtered(self):
        conn = FakeConnection([trade("BTCARS", "54000000"), trade("BTCUSDT", "60000")])
        stream = BinanceTradeStream([Instrument.BTC_USDT], max_attempts=0)
        with patch(CONNECT, return_value=conn):
            ticks = [t async for t in stream.ticks()]
        assert [t.instrument for t in ticks] == [Instrument.BTC_USDT]

    async def test_retries_with_backoff_then_gives_up(self):
        conn = FakeConnection([trade("BTCUSDT", "60000")])
        failures = [OSError("connection refused")] * 3
        stream = BinanceTradeStream([Instrument.BTC_USDT], base_delay=0, max_delay=0, max_attempts=3)

        with patch(CONNECT, side_effect=[OSError("connection refused"), conn, *failures]) as mock_connect:
            with patch("rentarb.adapters.binance.stream.asyncio.sleep", new=AsyncMock()) as mock_sleep:
                ticks = [t async for t in stream.ticks()]

        assert len(ticks) == 1
        # 1 failure, 1 connection, then 3 failures after the connection closed
        assert mock_connect.call_count == 5
        assert mock_sleep.await_count == 4

    async def test_close_stops_without_reconnecting(self):
        conn = FakeConnection([trade("BTCUSDT", "60000"), trade("BTCUSDT", "60001")])
        stream = BinanceTradeStream([Instrument.BTC_USDT], max_attempts=5)
        ticks = []
        with patch(CONNECT, return_value=conn) as mock_connect:
            async for tick in stream.ticks():
                ticks.append(tick)
                await stream.close()
        assert len(ticks) == 1
        assert conn.closed
        mock_connect.assert_called_once()

    async def test_no_instruments(self):
        stream = BinanceTradeStream([])
        with pytest.raises(ValueError, match="no instruments"):
            async for _ in stream.ticks():
                pass
