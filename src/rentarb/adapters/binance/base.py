# src/rentarb/adapters/binance/base.py
"""
Base Tick Source Interface

This module defines the abstract base class for live price sources feeding
the rate engine. A source yields ticks as an async iterator, reconnects on
its own, and reports connection changes through a status callback.

Files that USE this module:
- rentarb.adapters.binance.stream (BinanceTradeStream implements TickSource)
- rentarb.application.rate_engine (RateEngine consumes a TickSource)
- tests.conftest (FakeTickSource for engine tests)

Files that this module USES:
- rentarb.domain.models (Instrument, Tick)
"""
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Optional

from rentarb.domain.models import Instrument, Tick

StatusCallback = Callable[[bool], None]


class TickSource(ABC):
    def __init__(self) -> None:
        self._status_callback: Optional[StatusCallback] = None

    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        """Register the function called with True/False on connect/disconnect."""
        self._status_callback = callback

    def _notify_status(self, connected: bool) -> None:
        if self._status_callback is not None:
            self._status_callback(connected)

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @property
    @abstractmethod
    def is_connecting(self) -> bool:
        """True while a connection attempt is in flight."""
        raise NotImplementedError

    @abstractmethod
    def ticks(self) -> AsyncIterator[Tick]:
        """Yield ticks until closed or until the source gives up reconnecting."""
        raise NotImplementedError

    @abstractmethod
    async def subscribe(self, instrument: Instrument) -> None:
        raise NotImplementedError

    @abstractmethod
    async def unsubscribe(self, instrument: Instrument) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError
