# syncbridge/database.py
"""
Async engine and session factory.

DATABASE_URL may use the plain postgresql:// or sqlite:// schemes; they are
rewritten to the asyncpg and aiosqlite drivers.
"""
import os

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from syncbridge.core.config import get_settings

ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def to_async_url(url: str) -> str:
    for prefix, replacement in ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def _resolve_url() -> str:
    url = get_settings().DATABASE_URL or os.environ.get("DATABASE_URL", "")
    if not url:
        raise ValueError("DATABASE_URL is not set in environment variables")
    return to_async_url(url)


def build_engine(url: str, **kwargs):
    """Create an async engine; pool sizing only applies to server databases."""
    options = {"echo": False}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
        )
    options.update(kwargs)
    return create_async_engine(url, **options)


database_url = _resolve_url()
engine = build_engine(database_url)

# Sessions keep loaded attributes after commit; services read ids and values
# from rows they have just committed.
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()
