"""
Database engine and sessions.

Request handlers get a session per request through ``get_db``. Push
delivery runs after the response is sent, so it takes the factory from
``get_session_factory`` and opens its own.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from schoolbus.app.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)

# Instances keep their loaded state across commits
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """Per-request session; closed when the request finishes."""
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """Factory for work that outlives the request session."""
    return AsyncSessionLocal


def new_document_id() -> str:
    """Opaque document id, generated client-side like a document store would."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
