"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from parceltrack.app.core.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    future=True,
)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """
    Build a session factory for the given engine.

    Sessions keep their attributes after commit so that snapshots can be
    built once the transaction is closed.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Create async session factory
AsyncSessionLocal = make_session_factory(engine)

# Create declarative base for models
Base = declarative_base()
