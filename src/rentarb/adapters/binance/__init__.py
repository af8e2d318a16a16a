"""
Binance Adapters - Market Data Clients

This package contains adapters for Binance public market data.
Live sources implement the TickSource interface.
"""

from rentarb.adapters.binance.base import TickSource
from rentarb.adapters.binance.rest import BinanceTickerProvider
from rentarb.adapters.binance.stream import (
    BinanceTradeStream,
    default_instruments,
    parse_trade_message,
    reconnect_delay,
)

__all__ = [
    "TickSource",
    "BinanceTickerProvider",
    "BinanceTradeStream",
    "default_instruments",
    "parse_trade_message",
    "reconnect_delay",
]
