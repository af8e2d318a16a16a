# src/rentarb/adapters/__init__.py
"""
Adapters Layer - External Interfaces

This package contains all adapters for external systems:
- Binance (trade stream and REST ticker)
- Persistence (ledger document store)
"""

__all__ = []
