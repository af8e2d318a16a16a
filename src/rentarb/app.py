# src/rentarb/app.py
"""
Application Entry Point - Rate Monitor Startup

This module serves as the composition root for RentArb. It wires the ledger
store, the Binance trade stream and the rate engine, then logs every
published cross-rate update until interrupted.

Files that USE this module:
- rentarb console script (pyproject entry point)

Files that this module USES:
- rentarb.shared.logging_conf (setup_logging for logging configuration)
- rentarb.config (settings for configuration management)
- rentarb.adapters.binance (BinanceTradeStream, BinanceTickerProvider)
- rentarb.adapters.persistence (JsonFileDocumentStore and repositories)
- rentarb.application (RateEngine, BookingService, FinanceService, HealthChecker)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations for forward references

import asyncio  # Event loop for the engine and ledger
import atexit  # Register cleanup functions to run when program exits
import logging  # Standard library for logging messages and errors
import os  # Operating system interface for environment variables and process management
import sys  # System-specific parameters and functions for exit codes
from dataclasses import dataclass  # Container for wired services
from pathlib import Path  # Object-oriented filesystem paths

from rentarb.adapters.binance import BinanceTickerProvider, BinanceTradeStream, default_instruments
from rentarb.adapters.persistence import (
    BookingRepository,
    DocumentStore,
    ExpenseRepository,
    IncomeRepository,
    JsonFileDocumentStore,
    ProjectedExpenseRepository,
)
from rentarb.application import BookingReconciler, BookingService, FinanceService, HealthChecker, RateEngine
from rentarb.config import settings
from rentarb.domain.errors import ProviderUnavailableError
from rentarb.shared.logging_conf import setup_logging

logger = logging.getLogger(__name__)

HEALTH_LOG_INTERVAL_SECONDS = 300


# PID file path for preventing multiple instances
# Can be overridden via RENTARB_PID_FILE environment variable
def _get_pid_file() -> Path:
    """Get PID file path from environment or next to the ledger file."""
    pid_file = os.environ.get("RENTARB_PID_FILE")
    if pid_file:
        return Path(pid_file)
    return Path(settings.ledger_file).parent / "rentarb.pid"


def _check_existing_instance() -> None:
    """
    Check if another instance is already running.

    Raises RuntimeError if PID file exists and process is still running.
    """
    pid_file = _get_pid_file()
    if not pid_file.exists():
        return
    try:
        old_pid = int(pid_file.read_text().strip())
    except (ValueError, OSError):
        # Invalid PID file, remove it
        pid_file.unlink(missing_ok=True)
        return
    try:
        os.kill(old_pid, 0)  # Signal 0 doesn't kill, just checks if process exists
    except ProcessLookupError:
        # Stale PID file
        pid_file.unlink(missing_ok=True)
        return
    except PermissionError:
        # Process exists but belongs to another user
        pass
    raise RuntimeError(
        f"Another rentarb instance is already running (PID: {old_pid}).\n"
        f"Please stop it first with: kill {old_pid}"
    )


def _create_pid_file() -> None:
    pid_file = _get_pid_file()
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))


def _remove_pid_file() -> None:
    """Remove PID file on exit."""
    pid_file = _get_pid_file()
    try:
        pid_file.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove PID file %s: %s", pid_file, e)


@dataclass
class Services:
    """Everything wired by build_services()."""
    store: DocumentStore
    engine: RateEngine
    provider: BinanceTickerProvider
    bookings: BookingService
    finance: FinanceService
    health: HealthChecker


def build_services(store: DocumentStore) -> Services:
    """Wire repositories, services and the rate engine around a ledger store."""
    incomes = IncomeRepository(store)
    stream = BinanceTradeStream()
    engine = RateEngine(stream)
    provider = BinanceTickerProvider()
    return Services(
        store=store,
        engine=engine,
        provider=provider,
        bookings=BookingService(BookingRepository(store), BookingReconciler(incomes)),
        finance=FinanceService(incomes, ExpenseRepository(store), ProjectedExpenseRepository(store)),
        health=HealthChecker(engine, store, provider),
    )


async def _prime(services: Services) -> None:
    """Seed the engine from the REST ticker so rates show before the first trades."""
    instruments = default_instruments(settings.track_direct_usdt_ars)
    try:
        ticks = await asyncio.to_thread(services.provider.get_ticks, instruments)
    except ProviderUnavailableError as e:
        logger.warning("Could not prime rates from Binance REST, waiting for trades: %s", e)
        return
    services.engine.prime(ticks)
    services.engine.publish()


async def _log_health(services: Services) -> None:
    while True:
        await asyncio.sleep(HEALTH_LOG_INTERVAL_SECONDS)
        health = await services.health.get_overall_health()
        level = logging.INFO if health["overall_healthy"] else logging.WARNING
        logger.log(level, "Health: %s", health["message"])


async def run() -> None:
    """Run the rate monitor until cancelled."""
    store = JsonFileDocumentStore(settings.ledger_file)
    services = build_services(store)
    await _prime(services)

    async with services.engine as engine:
        health_task = asyncio.create_task(_log_health(services), name="health-log")
        try:
            async for update in engine.updates():
                rates = update.rates
                logger.info(
                    "USDT/ARS %.2f (%+.2f%%)  USDT/BRL %.4f (%+.2f%%)  BRL/ARS %.2f (%+.2f%%)  spread %.2f%%",
                    rates.usdt_ars_derived, update.changes.usdt_ars,
                    rates.usdt_brl, update.changes.usdt_brl,
                    rates.brl_ars, update.changes.brl_ars,
                    rates.spread,
                )
        finally:
            health_task.cancel()
            await asyncio.gather(health_task, return_exceptions=True)


def main() -> None:
    """
    Start the rate monitor.

    This function:
    1. Sets up logging
    2. Takes the single-instance PID lock
    3. Runs the engine until Ctrl+C
    """
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        log_dir=settings.log_dir,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
        log_stdout=settings.log_stdout,
    )
    logger.info("Working directory: %s", os.getcwd())
    logger.info("Ledger file: %s", settings.ledger_file)

    try:
        _check_existing_instance()
        _create_pid_file()
        atexit.register(_remove_pid_file)
        logger.info("Instance lock acquired (PID: %d)", os.getpid())
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception("Unexpected error: %s (type: %s)", e, type(e).__name__)
        raise
    finally:
        _remove_pid_file()


if __name__ == "__main__":
    main()
