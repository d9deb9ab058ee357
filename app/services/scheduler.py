"""Scheduling tick: turn the enabled targets into one job and start the crawlers."""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.target import CrawlTarget
from app.services.claim_token import mint_claim_token
from app.services.crawl_store import create_job_with_slices, fetch_enabled_targets
from app.services.job_runner import GitHubWorkflowRunner, job_runner

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    job_id: uuid.UUID
    total_slices: int
    total_targets: int
    dispatched: bool


def partition(targets: Sequence[CrawlTarget], size: int) -> list[list[dict]]:
    """Split targets into ordered slices of at most *size* payload entries."""
    payloads = [t.as_payload() for t in targets]
    return [payloads[i : i + size] for i in range(0, len(payloads), size)]


async def schedule_crawl(
    db: AsyncSession,
    runner: GitHubWorkflowRunner = job_runner,
    now: int | None = None,
) -> ScheduledJob | None:
    """Create a job for all enabled targets and hand it to the job runner.

    Returns None, and writes nothing, when no target is enabled. A runner
    that is not configured leaves the job PENDING for a manual crawl; any
    other dispatch failure propagates.
    """
    targets = await fetch_enabled_targets(db)
    if not targets:
        logger.info("No enabled targets — skipping scheduling tick")
        return None

    slices = partition(targets, settings.slice_size)
    job = await create_job_with_slices(db, slices, now=now)
    token = mint_claim_token(job.id, now=now)

    dispatched = True
    try:
        await runner.dispatch(job.id, token)
    except RuntimeError as exc:
        logger.warning("Job %s created but not dispatched: %s", job.id, exc)
        dispatched = False

    return ScheduledJob(
        job_id=job.id,
        total_slices=len(slices),
        total_targets=len(targets),
        dispatched=dispatched,
    )
