"""
Scheduler management endpoints
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from syncbridge.scheduler import JOB_FUNCTIONS, get_scheduler_status, run_job_now

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


@router.get("/status", response_model=Dict[str, Any])
async def scheduler_status():
    """Get current scheduler status and configured jobs"""
    return await get_scheduler_status()


@router.post("/trigger/{job_id}")
async def trigger_job(job_id: str):
    """Run a scheduled job immediately"""
    if job_id not in JOB_FUNCTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")
    logger.info(f"Manually triggering job {job_id}")
    await run_job_now(job_id)
    return {"status": "success", "message": f"Job {job_id} completed"}
