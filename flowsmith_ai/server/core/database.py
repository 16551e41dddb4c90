"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
used by the repositories backing the agent handler.
"""

from flowsmith_ai.repos.models import Base
from flowsmith_ai.repos.sql import create_engine, create_sessionmaker
from flowsmith_ai.server.core.config import settings

"""
engine:
    The global SQLAlchemy AsyncEngine instance, configured from ``DATABASE_URL``.
"""
engine = create_engine(settings.database_url)

"""
async_session_maker:
    A global factory for new AsyncSession instances bound to ``engine``.
"""
async_session_maker = create_sessionmaker(engine)


async def init_db():
    """
    Initialize the database.

    Creates the tables read by the executor if they don't exist. Tables owned
    by the workflow application are expected to already exist in production.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
