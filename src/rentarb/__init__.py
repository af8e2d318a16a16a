# src/rentarb/__init__.py
"""
RentArb - Rental Ledger and BRL/ARS/USDT Rate Monitor

Derives BRL/ARS/USDT cross-rates from live Binance trades and keeps the
rental income ledger consistent with the booking lifecycle.
"""

__version__ = "0.3.0"
