"""Scheduled consent expiry sweep.

Each run:
- expires pending requests past their response deadline
- expires approved consents whose permission has lapsed (closing sessions)
- ends unpaid and idle access sessions
- retries outstanding anchor records

Usage:
    # Run once
    python -m consent_gate.tasks.expiry_sweep

    # Or via cron (every 5 minutes)
    */5 * * * * cd /path/to/project && python -m consent_gate.tasks.expiry_sweep

    # Environment variables:
    DATABASE_URL - PostgreSQL connection string
"""

import asyncio
import logging
import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from consent_gate.core.config import settings
from consent_gate.services.collaborators import AnchoringService
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.utils.time import utc_now

logger = logging.getLogger(__name__)


async def sweep_once(
    session_factory: async_sessionmaker[AsyncSession],
    anchoring: AnchoringService | None = None,
) -> dict:
    """Run one sweep with the given session factory."""
    async with session_factory() as session:
        gateway = AccessControlGateway(session, session_factory, anchoring=anchoring)

        expired = await gateway.ledger.sweep_expired()
        sessions_ended = await gateway.sessions.expire_abandoned()
        anchors = await gateway.anchors.reconcile()

    return {
        "consents_expired": expired,
        "sessions_ended": sessions_ended,
        "anchors_reconciled": anchors["anchored"],
        "anchors_outstanding": anchors["outstanding"],
    }


async def run_expiry_sweep_task(database_url: str | None = None) -> dict:
    """Run the expiry sweep job against a database.

    Args:
        database_url: Database connection string. Defaults to DATABASE_URL or settings.

    Returns:
        Job results summary
    """
    db_url = database_url or os.getenv("DATABASE_URL") or settings.database_url

    # Convert sync URL to async if needed
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    logger.info(f"Starting expiry sweep at {utc_now().isoformat()}")

    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        results = await sweep_once(session_factory)
        logger.info(f"Expiry sweep complete: {results}")
        return results
    finally:
        await engine.dispose()


async def periodic_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: float | None = None,
    stop_event: asyncio.Event | None = None,
    anchoring: AnchoringService | None = None,
) -> None:
    """Sweep repeatedly until ``stop_event`` is set or the task is cancelled.

    A failed run is logged and the loop carries on with the next interval.
    """
    interval = interval_seconds if interval_seconds is not None else settings.sweep_interval_seconds
    stop_event = stop_event or asyncio.Event()

    while not stop_event.is_set():
        try:
            results = await sweep_once(session_factory, anchoring)
            if any(results.values()):
                logger.info(f"Periodic sweep: {results}")
        except Exception as e:
            logger.exception(f"Periodic sweep failed: {e}")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


def main():
    """CLI entry point."""
    import argparse

    from consent_gate.core.logging import setup_logging

    parser = argparse.ArgumentParser(description="Run the consent expiry sweep")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (overrides DATABASE_URL env var)",
    )
    args = parser.parse_args()

    setup_logging()

    try:
        results = asyncio.run(run_expiry_sweep_task(database_url=args.database_url))
        print(f"Sweep completed successfully: {results}")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Sweep failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
