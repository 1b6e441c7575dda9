from typing import AsyncGenerator, Dict

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.database import async_session
from syncbridge.integrations.base import PlatformInterface


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_platforms(request: Request) -> Dict[str, PlatformInterface]:
    """Platform clients built at startup and stored on app.state."""
    return getattr(request.app.state, "platforms", {})


def get_queue_consumer(request: Request):
    """Queue consumer when webhooks are processed asynchronously, else None."""
    return getattr(request.app.state, "queue_consumer", None)
