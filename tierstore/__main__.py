#!/usr/bin/env python3
"""
Tiered Record Store command line.

Usage:
    python -m tierstore run-cycle       # one migration cycle
    python -m tierstore serve           # periodic cycles until interrupted
    python -m tierstore show-cursor     # print the persisted cursor
    python -m tierstore reset-cursor    # discard the persisted cursor

    # Configuration comes from the environment
    TIERSTORE_AGE_THRESHOLD_DAYS=30 STORAGE_HOT_BACKEND=redis python -m tierstore run-cycle

run-cycle exits 0 on a clean cycle, 2 when records failed verification,
3 when another process holds the job's lease, 1 on any other error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from contextlib import suppress
from typing import Optional, Sequence

from tierstore import __version__
from tierstore.core.config import TierStoreConfig
from tierstore.core.errors import ErrorCode
from tierstore.migration.cursor import CursorStore, open_cursor_store
from tierstore.migration.engine import MigrationEngine, MigrationSettings
from tierstore.migration.lease import LeaseConfig, open_job_lease
from tierstore.migration.scheduler import MigrationScheduler
from tierstore.observability.logging import setup_logging
from tierstore.storage import open_cold_store, open_hot_store
from tierstore.tiering.policy import AgeThresholdPolicy

logger = logging.getLogger("tierstore")


def load_config() -> Optional[TierStoreConfig]:
    config_result = TierStoreConfig.from_env()
    if config_result.is_err():
        print(config_result.error, file=sys.stderr)
        return None
    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}", file=sys.stderr)
        return None
    return config


async def _open_cursor_store(config: TierStoreConfig) -> Optional[CursorStore]:
    result = await open_cursor_store(config.cursor)
    if result.is_err():
        logger.error(f"Cursor store unavailable: {result.error}")
        return None
    return result.unwrap()


async def _open_engine(config: TierStoreConfig) -> Optional[MigrationEngine]:
    hot = await open_hot_store(config.storage)
    if hot.is_err():
        logger.error(f"Hot store unavailable: {hot.error}")
        return None
    cold = await open_cold_store(config.storage)
    if cold.is_err():
        logger.error(f"Cold store unavailable: {cold.error}")
        await hot.unwrap().close()
        return None
    cursor_store = await _open_cursor_store(config)
    if cursor_store is None:
        await hot.unwrap().close()
        await cold.unwrap().close()
        return None

    lease = await open_job_lease(
        hot.unwrap(), cursor_store, LeaseConfig.for_ttl(config.tiering.lease_ttl_ms)
    )
    if lease.is_err():
        logger.error(f"Job lease unavailable: {lease.error}")
        await hot.unwrap().close()
        await cold.unwrap().close()
        await cursor_store.close()
        return None

    return MigrationEngine(
        hot.unwrap(),
        cold.unwrap(),
        AgeThresholdPolicy(config.tiering.age_threshold),
        cursor_store,
        MigrationSettings.from_config(config),
        lease=lease.unwrap(),
    )


# =============================================================================
# COMMANDS
# =============================================================================
async def run_cycle(config: TierStoreConfig) -> int:
    engine = await _open_engine(config)
    if engine is None:
        return 1
    try:
        result = await engine.run_cycle()
    finally:
        await engine.close()

    if result.is_err():
        print(json.dumps(result.error.to_dict(), default=str), file=sys.stderr)
        return 3 if result.error.code is ErrorCode.MIGRATION_CYCLE_IN_PROGRESS else 1
    report = result.unwrap()
    print(json.dumps(report.to_dict(), default=str))
    return 0 if not report.verification_failures else 2


async def serve(config: TierStoreConfig) -> int:
    engine = await _open_engine(config)
    if engine is None:
        return 1

    scheduler = MigrationScheduler(engine, config.tiering.cycle_interval)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await scheduler.start()
    try:
        await stop.wait()
    finally:
        await scheduler.stop(timeout=config.tiering.operation_timeout_s * 3)
        await engine.close()
    return 0


async def show_cursor(config: TierStoreConfig) -> int:
    store = await _open_cursor_store(config)
    if store is None:
        return 1
    try:
        result = await store.load(config.tiering.job_id)
    finally:
        await store.close()

    if result.is_err():
        print(f"Cursor unreadable: {result.error}", file=sys.stderr)
        return 1
    cursor = result.unwrap()
    print(json.dumps(cursor.to_dict() if cursor else None))
    return 0


async def reset_cursor(config: TierStoreConfig) -> int:
    store = await _open_cursor_store(config)
    if store is None:
        return 1
    try:
        result = await store.clear(config.tiering.job_id)
    finally:
        await store.close()

    if result.is_err():
        print(f"Reset failed: {result.error}", file=sys.stderr)
        return 1
    return 0


COMMANDS = {
    "run-cycle": run_cycle,
    "serve": serve,
    "show-cursor": show_cursor,
    "reset-cursor": reset_cursor,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tierstore",
        description="Tiered record store: hot/cold migration tooling",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override TIERSTORE_LOG_LEVEL",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run-cycle", help="Run one migration cycle and print its report")
    subparsers.add_parser("serve", help="Run migration cycles every cycle interval")
    subparsers.add_parser("show-cursor", help="Print the persisted migration cursor")
    subparsers.add_parser("reset-cursor", help="Discard the persisted migration cursor")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Synchronous entry point."""
    args = build_parser().parse_args(argv)

    config = load_config()
    if config is None:
        return 1

    setup_logging(
        args.log_level or config.observability.log_level,
        json_output=config.observability.log_json,
    )

    try:
        return asyncio.run(COMMANDS[args.command](config))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
