# src/rentarb/adapters/binance/rest.py
"""
Binance REST Ticker Provider - One-Shot Price Snapshot

This module fetches the latest prices for the tracked instruments from
Binance's public ticker endpoint. The rate engine uses it to seed its
last-known prices at startup, before the trade stream delivers the first
trades, and the health checker uses it as a reachability check.

Endpoint: GET /api/v3/ticker/price?symbols=["BTCUSDT","BTCARS",...]
Response: [{"symbol": "BTCUSDT", "price": "60000.00000000"}, ...]

Files that USE this module:
- rentarb.app (primes the rate engine)
- rentarb.application.health (optional REST check)
- tests.test_binance_rest (unit tests)

Files that this module USES:
- rentarb.config (settings for URL, timeout and cache TTL)
- rentarb.domain.models (Instrument, Tick)
- rentarb.domain.errors (ProviderUnavailableError)
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from rentarb.config import settings
from rentarb.domain.errors import ProviderUnavailableError
from rentarb.domain.models import Instrument, Tick
from rentarb.shared.validators import validate_price

log = logging.getLogger(__name__)


class BinanceTickerProvider:
    """
    Binance REST provider for current instrument prices.

    Responses are cached per requested symbol set for settings.rest_cache_seconds.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        cache_seconds: Optional[int] = None,
    ):
        """
        Initialize Binance REST provider.

        Args:
            base_url: Optional custom ticker URL (defaults to settings.binance_rest_url)
            timeout: Optional HTTP timeout in seconds (defaults to settings.http_timeout_seconds)
            cache_seconds: Optional cache TTL (defaults to settings.rest_cache_seconds)
        """
        self.url = base_url or settings.binance_rest_url
        self.timeout = timeout or settings.http_timeout_seconds
        ttl = cache_seconds if cache_seconds is not None else settings.rest_cache_seconds
        self.ttl = timedelta(seconds=ttl)
        self._cache: Dict[Tuple[str, ...], Tuple[datetime, List[Dict[str, Any]]]] = {}

    def _cached(self, key: Tuple[str, ...]) -> Optional[List[Dict[str, Any]]]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        ts, data = entry
        if datetime.now(timezone.utc) - ts >= self.ttl:
            return None
        return data

    def get_latest_raw(self, instruments: Iterable[Instrument]) -> List[Dict[str, Any]]:
        """
        Get the raw ticker list for some instruments (with TTL cache).

        Returns:
            List of {"symbol": ..., "price": ...} dictionaries

        Raises:
            ProviderUnavailableError: If the request fails or the response has an unexpected shape
        """
        key = tuple(sorted(i.value for i in instruments))
        if not key:
            return []
        cached = self._cached(key)
        if cached is not None:
            log.debug("Using cached Binance ticker data")
            return cached

        try:
            log.info("Fetching Binance ticker prices for %s", ",".join(key))
            resp = requests.get(
                self.url,
                params={"symbols": json.dumps(list(key), separators=(",", ":"))},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.Timeout:
            log.error("Binance ticker timeout after %d seconds", self.timeout)
            raise ProviderUnavailableError(f"Binance ticker timeout after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            log.error("Binance ticker request failed: %s", e)
            raise ProviderUnavailableError(f"Binance ticker request failed: {e}")
        except ValueError as e:
            log.error("Binance ticker returned invalid JSON: %s", e)
            raise ProviderUnavailableError(f"Binance ticker returned invalid JSON: {e}")

        if not isinstance(data, list):
            log.error("Binance ticker unexpected response type: %r", type(data))
            raise ProviderUnavailableError("Binance ticker returned non-list JSON")

        self._cache[key] = (datetime.now(timezone.utc), data)
        return data

    def get_prices(self, instruments: Iterable[Instrument]) -> Dict[Instrument, float]:
        """
        Get current prices keyed by instrument.

        Entries with a missing or non-positive price are left out.

        Raises:
            ProviderUnavailableError: If the request fails
        """
        prices: Dict[Instrument, float] = {}
        for row in self.get_latest_raw(instruments):
            if not isinstance(row, dict):
                continue
            try:
                instrument = Instrument(str(row.get("symbol", "")).upper())
            except ValueError:
                log.debug("Ignoring ticker row for %r", row.get("symbol"))
                continue
            price = validate_price(row.get("price"))
            if price is None:
                log.warning("Binance ticker: invalid price for %s: %r", instrument.value, row.get("price"))
                continue
            prices[instrument] = price
        log.info("Binance ticker: %s", ", ".join(f"{i.value}={p}" for i, p in prices.items()) or "no prices")
        return prices

    def get_ticks(self, instruments: Iterable[Instrument]) -> List[Tick]:
        """Current prices as ticks stamped with the fetch time."""
        now = datetime.now(timezone.utc)
        return [
            Tick(instrument=instrument, price=price, timestamp=now)
            for instrument, price in self.get_prices(instruments).items()
        ]
