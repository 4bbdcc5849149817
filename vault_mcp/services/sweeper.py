"""Background eviction of records past the retention window."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import timedelta

from vault_mcp.clients.record_store import RecordStore

logger = logging.getLogger(__name__)


async def sweep_once(store: RecordStore, retention: timedelta) -> int:
    """Run one sweep off the event loop and report how many records went."""
    return await asyncio.to_thread(store.sweep, retention)


async def run_sweeper(store: RecordStore, retention: timedelta, interval_seconds: float) -> None:
    """Sweep every ``interval_seconds`` until cancelled."""
    logger.info(
        "Sweeper started (retention=%s, interval=%ss)", retention, interval_seconds
    )
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await sweep_once(store, retention)
            except sqlite3.Error:
                logger.exception("Sweep failed; retrying next interval")
    finally:
        logger.info("Sweeper stopped")


__all__ = ["run_sweeper", "sweep_once"]
