import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import AsyncEngine
from core.config import settings
from core.database import build_engine
from core.logging import setup_logging
# Importing the package registers every model on Base.metadata
from models import Base

logger = logging.getLogger(__name__)


def reset_requested() -> bool:
    return os.getenv("RESET_DB", "false").strip().lower() in ("1", "true", "yes")


async def init_database(engine: AsyncEngine = None, reset: bool = None):
    """Create all tables; with ``reset`` drop them first"""
    reset = reset_requested() if reset is None else reset
    owns_engine = engine is None
    engine = engine or build_engine(settings.DATABASE_URL)

    logger.info("Connecting to database...")
    try:
        async with engine.begin() as conn:
            if reset:
                logger.warning("RESET_DB set: dropping all catalog tables")
                await conn.run_sync(Base.metadata.drop_all)
            logger.info("Creating tables...")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully.")
    finally:
        if owns_engine:
            await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
