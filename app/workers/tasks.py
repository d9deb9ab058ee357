"""Celery task definitions.

Both tasks are timer-driven (see beat_schedule in celery_app) and run their
async service code in a fresh event loop:

  schedule_crawl          → enabled targets → job + slices → crawler workflow
  refresh_discharge_rates → recent readings → estimator → dorm_latest.last_kw
"""

import asyncio
import logging

from app.db.session import AsyncSessionLocal, engine
from app.services.discharge import refresh_discharge_rates
from app.services.scheduler import schedule_crawl
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Entry points ───────────────────────────────────────────────────────────────

@celery_app.task(bind=True, name="dormitricity.schedule_crawl", max_retries=0)
def schedule_crawl_task(self) -> str | None:
    """Celery entry point — one scheduling tick. Returns the new job id, if any."""
    return asyncio.run(_run_schedule())


@celery_app.task(bind=True, name="dormitricity.refresh_discharge_rates", max_retries=0)
def refresh_discharge_rates_task(self) -> int:
    """Celery entry point — re-estimate cached discharge rates."""
    return asyncio.run(_run_refresh())


# ── Async bodies ───────────────────────────────────────────────────────────────

async def _run_schedule() -> str | None:
    try:
        async with AsyncSessionLocal() as db:
            scheduled = await schedule_crawl(db)
    except Exception as exc:
        logger.exception("Scheduling tick failed: %s", exc)
        raise
    finally:
        # Pooled connections are bound to this task's event loop
        await engine.dispose()

    if scheduled is None:
        return None
    logger.info(
        "Scheduled job %s: %d targets in %d slices (dispatched=%s)",
        scheduled.job_id,
        scheduled.total_targets,
        scheduled.total_slices,
        scheduled.dispatched,
    )
    return str(scheduled.job_id)


async def _run_refresh() -> int:
    try:
        async with AsyncSessionLocal() as db:
            return await refresh_discharge_rates(db)
    except Exception as exc:
        logger.exception("Discharge-rate refresh failed: %s", exc)
        raise
    finally:
        await engine.dispose()
