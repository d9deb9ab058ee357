import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.session import get_db
from app.dependencies import require_api_key
from app.services.job_runner import job_runner

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/status",
    summary="Service status",
    description=(
        "Returns service version, database connection status, job runner configuration "
        "and the scheduling parameters. Requires a valid X-API-Key header."
    ),
)
async def get_status(
    db: AsyncSession = Depends(get_db),
    _: str = Depends(require_api_key),
):
    # ── DB liveness ────────────────────────────────────────────────────────────
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        db_status = "error"

    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "db": db_status,
        "job_runner": job_runner.status(),
        "config": {
            "schedule_interval_sec": settings.schedule_interval_sec,
            "slice_size": settings.slice_size,
            "claim_deadline_sec": settings.claim_deadline_sec,
            "slice_lease_reclaim_enabled": settings.slice_lease_reclaim_enabled,
            "latest_state_monotonic": settings.latest_state_monotonic,
            "max_subscriptions_per_user": settings.max_subscriptions_per_user,
        },
    }
