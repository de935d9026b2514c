"""Database initialization utilities."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from consent_gate.db.base import Base
from consent_gate.db.session import engine as default_engine

# Register every model on the metadata
import consent_gate.models  # noqa: F401

logger = logging.getLogger(__name__)


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create all database tables."""
    async with (engine or default_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize the database for local development.

    Production schemas are managed by the alembic migrations.
    """
    await create_tables(engine)
    logger.info("Database initialization complete")
