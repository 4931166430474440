#!/usr/bin/env python3
"""
Energy data miner - mines every configured region on a fixed interval.

Reads region descriptors from MINER_CONFIG_PATH (or --config), pulls
emissions and weather data through the self-throttled clients and upserts
it into DATABASE_URL. Failures are logged and never change the exit code:
the next interval simply tries again.

Usage:
    energy-miner                      # Run every 30 minutes until stopped
    energy-miner --once               # Run once and exit
    energy-miner --config regions.json --interval-minutes 10
    python -m energy_miner.ingest.run_miner --once --log-level DEBUG
"""

import argparse
import logging
import signal
import threading
from typing import List, Optional

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from energy_miner.api.http import HttpExecutor
from energy_miner.config import get_settings, load_miner_config
from energy_miner.db import (
    DurableCallLedger,
    UpsertStore,
    check_connection,
    dispose_engine,
    get_engine,
    get_session_factory,
    init_db,
)
from energy_miner.errors import ConfigurationError
from energy_miner.ingest.orchestrator import IngestionOrchestrator, RunReport
from energy_miner.utils.time_utils import utc_now
from energy_miner.utils.timing import timed_operation

logger = logging.getLogger(__name__)

# Set by SIGINT/SIGTERM; checked between regions and families
shutdown_requested = threading.Event()


def signal_handler(signum, frame):
    logger.info(f"Received signal {signum}, requesting graceful shutdown...")
    shutdown_requested.set()


def run_once(orchestrator: IngestionOrchestrator, config_path: str) -> Optional[RunReport]:
    """Reload the descriptors and mine every region once."""
    settings = get_settings()
    try:
        regions = load_miner_config(config_path, settings)
    except ConfigurationError as e:
        logger.error(f"Skipping run: {e}")
        return None

    with timed_operation(f"mining {len(regions)} region(s) from {config_path}", logger):
        return orchestrator.run(regions, cancel_event=shutdown_requested)


def build_orchestrator() -> Optional[IngestionOrchestrator]:
    """Wire store, durable ledger and HTTP executor from settings. None when the database is unreachable."""
    settings = get_settings()
    engine = get_engine()
    if not check_connection(engine):
        return None
    init_db(engine)
    session_factory = get_session_factory()
    store = UpsertStore(session_factory, max_attempts=settings.storage_max_retries)
    ledger = DurableCallLedger(session_factory)
    return IngestionOrchestrator(
        store,
        executor=HttpExecutor(),
        shared_ledger=ledger,
        backoff_seconds=settings.throttle_backoff_seconds,
        max_wait_seconds=settings.throttle_max_wait_seconds,
        request_timeout=settings.request_timeout_seconds,
    )


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="Mine emissions and weather data for every configured region",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=str, default=settings.miner_config_path,
                        help=f"Region descriptor JSON (default: {settings.miner_config_path})")
    parser.add_argument("--once", action="store_true", help="Run once and exit")
    parser.add_argument("--interval-minutes", type=int, default=settings.run_interval_minutes,
                        help=f"Minutes between runs (default: {settings.run_interval_minutes})")
    parser.add_argument("--log-level", type=str, default=settings.log_level,
                        help=f"Logging level (default: {settings.log_level})")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    orchestrator = build_orchestrator()
    if orchestrator is None:
        logger.error("Cannot start without a database")
        return 1
    ledger = orchestrator.shared_ledger

    while not shutdown_requested.is_set():
        run_once(orchestrator, args.config)
        if isinstance(ledger, DurableCallLedger):
            try:
                ledger.prune_expired(utc_now())
            except SQLAlchemyError as e:
                logger.error(f"Could not prune call ledger: {e}")

        if args.once:
            break

        logger.info(f"Sleeping {args.interval_minutes} minutes until next run")
        shutdown_requested.wait(args.interval_minutes * 60)

    dispose_engine()
    logger.info("Miner stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
