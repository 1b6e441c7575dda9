from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.dependencies import get_db, get_platforms

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(platforms=Depends(get_platforms)):
    """Basic health check"""
    return {"status": "healthy", "service": "SyncBridge", "platforms": sorted(platforms.keys())}


@router.get("/health/db")
async def database_health(db: AsyncSession = Depends(get_db)):
    """Check database connectivity"""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except SQLAlchemyError as e:
        return {"status": "unhealthy", "database": "error", "error": str(e)}
