# File: devconnect/database.py

from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from .config import settings


def _async_database_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


ASYNC_DATABASE_URL = _async_database_url(settings.DATABASE_URL)

engine_options = {"echo": settings.DEBUG}
if ASYNC_DATABASE_URL.startswith("sqlite"):
    # Connections must not outlive the event loop that opened them
    engine_options["poolclass"] = NullPool

async_engine = create_async_engine(ASYNC_DATABASE_URL, **engine_options)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()

# Dependency
async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_models():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401  (registers the mappers)

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
