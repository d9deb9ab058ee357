"""Operator job endpoints.

GET  /jobs/{job_id}  — job status, slice progress and failure count
POST /jobs/trigger   — enqueue a scheduling tick outside the beat schedule
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.dependencies import require_api_key
from app.services.crawl_store import job_summary
from app.workers.tasks import schedule_crawl_task

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/jobs/trigger",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger a scheduling tick",
    description="Queues the same task the beat schedule runs: one new job for all enabled targets.",
)
async def trigger_schedule(_: str = Depends(require_api_key)):
    task = schedule_crawl_task.delay()
    logger.info("Queued manual scheduling tick (task %s)", task.id)
    return {"task_id": task.id, "message": "Scheduling tick queued."}


@router.get(
    "/jobs/{job_id}",
    summary="Job status",
)
async def get_job_status(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(require_api_key),
):
    summary = await job_summary(db, job_id)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return summary
