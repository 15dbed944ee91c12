"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine.

    The pool is the only resource shared between concurrently running
    dataset pipelines; SQLite (used by the test-suite) keeps its default pool.
    """
    url = make_url(database_url)
    options = {"echo": echo, "future": True}
    if url.get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **options)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL)

# Create session factory
async_session_maker = build_session_maker(engine)
