# tests/test_binance_rest.py
"""
Binance REST Provider Tests - Ticker Fetching, Caching and Errors

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- rentarb.adapters.binance.rest (BinanceTickerProvider for testing)
- unittest.mock (Mock for API mocking)
"""
import json
from unittest.mock import Mock, patch

import pytest
import requests

from rentarb.adapters.binance.rest import BinanceTickerProvider
from rentarb.domain.errors import ProviderUnavailableError
from rentarb.domain.models import Instrument

GET = "rentarb.adapters.binance.rest.requests.get"
BASE = [Instrument.BTC_USDT, Instrument.BTC_ARS, Instrument.USDT_BRL]


def ok_response(body):
    mock_response = Mock()
    mock_response.json.return_value = body
    mock_response.raise_for_status.return_value = None
    return mock_response


TICKERS = [
    {"symbol": "BTCUSDT", "price": "60000.00000000"},
    {"symbol": "BTCARS", "price": "54000000.00000000"},
    {"symbol": "USDTBRL", "price": "5.40000000"},
]


class TestBinanceTickerProvider:
    def test_init_with_defaults(self):
        provider = BinanceTickerProvider()
        assert provider.timeout == 10
        assert "api.binance.com" in provider.url
        assert provider.ttl.total_seconds() == 5

    @patch(GET)
    def test_get_prices_success(self, mock_get):
        mock_get.return_value = ok_response(TICKERS)

        prices = BinanceTickerProvider().get_prices(BASE)

        assert prices == {
            Instrument.BTC_USDT: 60000.0,
            Instrument.BTC_ARS: 54_000_000.0,
            Instrument.USDT_BRL: 5.40,
        }
        params = mock_get.call_args.kwargs["params"]
        assert json.loads(params["symbols"]) == ["BTCARS", "BTCUSDT", "USDTBRL"]
        assert mock_get.call_args.kwargs["timeout"] == 10

    @patch(GET)
    def test_cache_prevents_second_request(self, mock_get):
        mock_get.return_value = ok_response(TICKERS)
        provider = BinanceTickerProvider()
        provider.get_prices(BASE)
        provider.get_prices(list(reversed(BASE)))
        mock_get.assert_called_once()

    @patch(GET)
    def test_zero_ttl_always_fetches(self, mock_get):
        mock_get.return_value = ok_response(TICKERS)
        provider = BinanceTickerProvider(cache_seconds=0)
        provider.get_prices(BASE)
        provider.get_prices(BASE)
        assert mock_get.call_count == 2

    @patch(GET)
    def test_invalid_rows_are_skipped(self, mock_get):
        mock_get.return_value = ok_response([
            {"symbol": "BTCUSDT", "price": "0"},
            {"symbol": "ETHUSDT", "price": "3000"},
            "junk",
            {"symbol": "USDTBRL", "price": "5.4"},
        ])
        prices = BinanceTickerProvider().get_prices(BASE)
        assert prices == {Instrument.USDT_BRL: 5.4}

    @patch(GET)
    def test_get_ticks(self, mock_get):
        mock_get.return_value = ok_response(TICKERS)
        ticks = BinanceTickerProvider().get_ticks(BASE)
        assert {t.instrument for t in ticks} == set(BASE)
        assert len({t.timestamp for t in ticks}) == 1

    @patch(GET)
    def test_timeout(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout()
        with pytest.raises(ProviderUnavailableError, match="timeout"):
            BinanceTickerProvider().get_prices(BASE)

    @patch(GET)
    def test_request_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.RequestException("API Error")
        with pytest.raises(ProviderUnavailableError, match="request failed"):
            BinanceTickerProvider().get_prices(BASE)

    @patch(GET)
    def test_invalid_json(self, mock_get):
        mock_response = ok_response(None)
        mock_response.json.side_effect = ValueError("Invalid JSON")
        mock_get.return_value = mock_response
        with pytest.raises(ProviderUnavailableError, match="invalid JSON"):
            BinanceTickerProvider().get_prices(BASE)

    @patch(GET)
    def test_error_payload(self, mock_get):
        mock_get.return_value = ok_response({"code": -1121, "msg": "Invalid symbol."})
        with pytest.raises(ProviderUnavailableError, match="non-list"):
            BinanceTickerProvider().get_prices(BASE)

    @patch(GET)
    def test_no_instruments_no_request(self, mock_get):
        assert BinanceTickerProvider().get_prices([]) == {}
        mock_get.assert_not_called()
