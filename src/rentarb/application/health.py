# src/rentarb/application/health.py
"""
Health Checker - Component Monitoring and Diagnostics

This module checks the components the dashboard depends on: the live rate
engine (connected, has rates, not stale), the ledger store, and optionally
the Binance REST ticker.

Files that USE this module:
- rentarb.app (periodic health log line)
- tests.test_health (unit tests)

Files that this module USES:
- rentarb.application.rate_engine (RateEngine state)
- rentarb.adapters.persistence.repositories (collection names for the ledger check)
- rentarb.adapters.binance.rest (optional REST check)
- rentarb.config (staleness threshold)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rentarb.adapters.binance.rest import BinanceTickerProvider
from rentarb.adapters.binance.stream import BASE_INSTRUMENTS
from rentarb.adapters.persistence.document_store import DocumentStore
from rentarb.adapters.persistence.repositories import BOOKINGS, EXPENSES, INCOME, PROJECTED_EXPENSES
from rentarb.application.rate_engine import RateEngine
from rentarb.config import settings

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """Represents the health status of a component."""
    is_healthy: bool
    message: str
    last_check: datetime
    details: Optional[Dict[str, Any]] = None


class HealthChecker:
    """Health checks for the rate engine, the ledger and the REST ticker."""

    def __init__(
        self,
        engine: RateEngine,
        store: DocumentStore,
        provider: Optional[BinanceTickerProvider] = None,
        stale_after_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.store = store
        self.provider = provider
        self.stale_after_seconds = (
            stale_after_seconds if stale_after_seconds is not None else settings.stale_after_seconds
        )

    def check_rate_engine(self, now: Optional[datetime] = None) -> HealthStatus:
        """Connected, has published rates, and the last publish is recent."""
        now = now or datetime.now(timezone.utc)
        age = self.engine.seconds_since_update(now)
        details = {
            "connected": self.engine.is_connected,
            "has_rates": self.engine.has_rates,
            "seconds_since_update": age,
        }
        if not self.engine.is_connected:
            message = "Tick source disconnected"
        elif not self.engine.has_rates:
            message = "Connected, waiting for rates"
        elif self.engine.is_stale(self.stale_after_seconds, now):
            message = f"Rates stale ({age:.0f}s since last update)"
        else:
            rates = self.engine.rates
            details.update({
                "usdt_ars": rates.usdt_ars_derived,
                "usdt_brl": rates.usdt_brl,
                "brl_ars": rates.brl_ars,
                "spread": rates.spread,
            })
            return HealthStatus(
                is_healthy=True,
                message=f"Rates live, BRL/ARS {rates.brl_ars:.2f} ({age:.0f}s ago)",
                last_check=now,
                details=details,
            )
        logger.warning("Rate engine unhealthy: %s", message)
        return HealthStatus(is_healthy=False, message=message, last_check=now, details=details)

    async def check_ledger(self) -> HealthStatus:
        """Every ledger collection can be listed."""
        now = datetime.now(timezone.utc)
        try:
            counts = {}
            for collection in (BOOKINGS, INCOME, EXPENSES, PROJECTED_EXPENSES):
                counts[collection] = len(await self.store.list(collection))
            return HealthStatus(
                is_healthy=True,
                message="Ledger readable: " + ", ".join(f"{k}={v}" for k, v in counts.items()),
                last_check=now,
                details=counts,
            )
        except Exception as e:
            logger.error("Ledger health check failed: %s", e)
            return HealthStatus(
                is_healthy=False,
                message=f"Ledger error: {str(e)}",
                last_check=now,
                details={"exception_type": type(e).__name__},
            )

    async def check_binance_rest(self) -> HealthStatus:
        """Binance REST ticker answers with prices for the required instruments."""
        now = datetime.now(timezone.utc)
        if self.provider is None:
            return HealthStatus(
                is_healthy=True,
                message="Binance REST check not configured",
                last_check=now,
                details={"configured": False},
            )
        try:
            prices = await asyncio.to_thread(self.provider.get_prices, BASE_INSTRUMENTS)
        except Exception as e:
            logger.error("Binance REST health check failed: %s", e)
            return HealthStatus(
                is_healthy=False,
                message=f"Binance REST error: {str(e)}",
                last_check=now,
                details={"exception_type": type(e).__name__},
            )
        missing = [i.value for i in BASE_INSTRUMENTS if i not in prices]
        if missing:
            return HealthStatus(
                is_healthy=False,
                message=f"Binance REST missing prices for {', '.join(missing)}",
                last_check=now,
                details={"missing": missing},
            )
        return HealthStatus(
            is_healthy=True,
            message="Binance REST healthy",
            last_check=now,
            details={i.value: p for i, p in prices.items()},
        )

    async def check_all(self) -> Dict[str, HealthStatus]:
        return {
            "rate_engine": self.check_rate_engine(),
            "ledger": await self.check_ledger(),
            "binance_rest": await self.check_binance_rest(),
        }

    async def get_overall_health(self) -> Dict[str, Any]:
        """Summary of all checks; degraded if any check fails."""
        checks = await self.check_all()
        failed = [name for name, check in checks.items() if not check.is_healthy]
        overall_healthy = not failed
        return {
            "overall_healthy": overall_healthy,
            "status": "healthy" if overall_healthy else "degraded",
            "message": (
                "All systems healthy" if overall_healthy
                else f"Degraded - {len(failed)} component(s) failed: {', '.join(failed)}"
            ),
            "failed_components": failed,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                name: {
                    "healthy": check.is_healthy,
                    "message": check.message,
                    "last_check": check.last_check.isoformat(),
                    "details": check.details,
                }
                for name, check in checks.items()
            },
        }
