"""Datastore operations for crawl targets, jobs, slices, failures and readings.

The database is the only coordination point between crawler runs. Every
state transition below is a conditional UPDATE whose row count decides the
outcome; nothing relies on a prior read still being true. Each public
operation commits exactly once, so a caller never observes half of it.

Job lifecycle:   PENDING → RUNNING (first claim) → DONE → DONE_WITH_ERRORS
Slice lifecycle: PENDING → RUNNING (claim) → DONE (finished ingest)
"""

import hashlib
import hmac
import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import and_, bindparam, exists, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.session import upsert_insert
from app.models.job import CrawlFailure, CrawlJob, CrawlSlice, JobStatus, SliceStatus
from app.models.reading import DormLatest, Reading
from app.models.target import CrawlTarget

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1000


class SliceNotFound(LookupError):
    """No slice with the given index exists for the job."""


@dataclass
class ClaimedSlice:
    job_id: uuid.UUID
    slice_index: int
    targets: list[dict]
    deadline_ts: int

    def as_dict(self) -> dict:
        return {
            "job_id": str(self.job_id),
            "slice_index": self.slice_index,
            "targets": self.targets,
            "deadline_ts": self.deadline_ts,
        }


@dataclass
class IngestResult:
    job_status: JobStatus
    slice_closed: bool
    # Distinct dorms present in the batch's readings, in first-seen order
    hashed_dirs: list[str] = field(default_factory=list)


def _now(now: int | None) -> int:
    return int(time.time()) if now is None else now


# ── Targets ────────────────────────────────────────────────────────────────────

def hash_canonical_id(canonical_id: str, key: str | None = None) -> str:
    """Derive the pseudonymous hashed_dir for a dorm (hex HMAC-SHA256)."""
    secret = (key if key is not None else settings.dorm_hash_key).encode("utf-8")
    return hmac.new(secret, canonical_id.encode("utf-8"), hashlib.sha256).hexdigest()


async def fetch_enabled_targets(db: AsyncSession) -> list[CrawlTarget]:
    result = await db.execute(
        select(CrawlTarget)
        .where(CrawlTarget.enabled.is_(True))
        .order_by(CrawlTarget.hashed_dir)
    )
    return list(result.scalars().all())


async def enable_target(
    db: AsyncSession, hashed_dir: str, canonical_id: str, now: int | None = None
) -> None:
    """Insert the target or re-enable it. Runs inside the caller's transaction."""
    stmt = upsert_insert(db, CrawlTarget).values(
        hashed_dir=hashed_dir,
        canonical_id=canonical_id,
        enabled=True,
        created_ts=_now(now),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["hashed_dir"],
        set_={"enabled": True, "canonical_id": stmt.excluded.canonical_id},
    )
    await db.execute(stmt)


# ── Jobs and slices ────────────────────────────────────────────────────────────

async def create_job_with_slices(
    db: AsyncSession, slices: Sequence[list[dict]], now: int | None = None
) -> CrawlJob:
    """Persist one PENDING job and its PENDING slices in a single commit."""
    job = CrawlJob(
        id=uuid.uuid4(),
        created_ts=_now(now),
        status=JobStatus.PENDING,
        total_slices=len(slices),
        finished_slices=0,
    )
    db.add(job)
    db.add_all(
        CrawlSlice(
            job_id=job.id,
            slice_index=index,
            status=SliceStatus.PENDING,
            payload=list(payload),
        )
        for index, payload in enumerate(slices)
    )
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Created job %s with %d slices", job.id, job.total_slices)
    return job


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> CrawlJob | None:
    result = await db.execute(select(CrawlJob).where(CrawlJob.id == job_id))
    return result.scalar_one_or_none()


async def job_summary(db: AsyncSession, job_id: uuid.UUID) -> dict | None:
    """Job row plus per-status slice counts and the number of recorded failures."""
    job = await get_job(db, job_id)
    if job is None:
        return None

    counts_result = await db.execute(
        select(CrawlSlice.status, func.count())
        .where(CrawlSlice.job_id == job_id)
        .group_by(CrawlSlice.status)
    )
    slices = {s.value: 0 for s in SliceStatus}
    for slice_status, count in counts_result.all():
        slices[SliceStatus(slice_status).value] = count

    failures_result = await db.execute(
        select(func.count()).where(CrawlFailure.job_id == job_id)
    )

    return {
        "job_id": str(job.id),
        "status": job.status.value,
        "created_ts": job.created_ts,
        "total_slices": job.total_slices,
        "finished_slices": job.finished_slices,
        "slices": slices,
        "failures": failures_result.scalar_one(),
    }


async def claim_slice(
    db: AsyncSession, job_id: uuid.UUID, now: int | None = None
) -> ClaimedSlice | None:
    """Hand one PENDING slice of *job_id* to exactly one caller.

    The read only nominates a candidate. Ownership is decided by the
    conditional UPDATE: a caller whose update changed no row lost the race and
    gets None, the same as when no work is left.

    With lease reclaim enabled, a RUNNING slice whose deadline has passed is
    also a candidate; its update is guarded on the deadline that was read.
    """
    now = _now(now)

    claimable = CrawlSlice.status == SliceStatus.PENDING
    if settings.slice_lease_reclaim_enabled:
        claimable = or_(
            claimable,
            and_(
                CrawlSlice.status == SliceStatus.RUNNING,
                CrawlSlice.deadline_ts.is_not(None),
                CrawlSlice.deadline_ts < now,
            ),
        )

    result = await db.execute(
        select(
            CrawlSlice.slice_index,
            CrawlSlice.status,
            CrawlSlice.payload,
            CrawlSlice.deadline_ts,
        )
        .where(CrawlSlice.job_id == job_id, claimable)
        .order_by(CrawlSlice.slice_index)
        .limit(1)
    )
    candidate = result.one_or_none()
    if candidate is None:
        return None

    if SliceStatus(candidate.status) == SliceStatus.PENDING:
        guard = CrawlSlice.status == SliceStatus.PENDING
    else:
        guard = and_(
            CrawlSlice.status == SliceStatus.RUNNING,
            CrawlSlice.deadline_ts == candidate.deadline_ts,
        )

    deadline_ts = now + settings.claim_deadline_sec
    try:
        claimed = await db.execute(
            update(CrawlSlice)
            .where(
                CrawlSlice.job_id == job_id,
                CrawlSlice.slice_index == candidate.slice_index,
                guard,
            )
            .values(status=SliceStatus.RUNNING, claimed_ts=now, deadline_ts=deadline_ts)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            logger.info(
                "Claim race lost on job %s slice %d", job_id, candidate.slice_index
            )
            return None

        # No-op once the job is already RUNNING
        await db.execute(
            update(CrawlJob)
            .where(CrawlJob.id == job_id, CrawlJob.status == JobStatus.PENDING)
            .values(status=JobStatus.RUNNING)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if SliceStatus(candidate.status) == SliceStatus.RUNNING:
        logger.warning(
            "Reclaimed job %s slice %d after lease expiry", job_id, candidate.slice_index
        )
    else:
        logger.info("Claimed job %s slice %d", job_id, candidate.slice_index)

    return ClaimedSlice(
        job_id=job_id,
        slice_index=candidate.slice_index,
        targets=list(candidate.payload),
        deadline_ts=deadline_ts,
    )


# ── Ingestion ──────────────────────────────────────────────────────────────────

def _latest_per_dir(readings: Sequence[dict]) -> dict[str, dict]:
    """Pick the reading that should land in dorm_latest for each dorm."""
    latest: dict[str, dict] = {}
    for reading in readings:
        current = latest.get(reading["hashed_dir"])
        if (
            current is None
            or not settings.latest_state_monotonic
            or reading["ts"] > current["ts"]
        ):
            latest[reading["hashed_dir"]] = reading
    return latest


async def _insert_readings(db: AsyncSession, readings: Sequence[dict]) -> None:
    rows = [
        {
            "hashed_dir": r["hashed_dir"],
            "ts": int(r["ts"]),
            "kwh": float(r["kwh"]),
            "ok": bool(r.get("ok", True)),
        }
        for r in readings
    ]
    for i in range(0, len(rows), _CHUNK_SIZE):
        stmt = upsert_insert(db, Reading).values(rows[i : i + _CHUNK_SIZE])
        stmt = stmt.on_conflict_do_nothing(index_elements=["hashed_dir", "ts"])
        await db.execute(stmt)


async def _upsert_latest(db: AsyncSession, latest: dict[str, dict]) -> None:
    rows = [
        {"hashed_dir": h, "last_ts": int(r["ts"]), "last_kwh": float(r["kwh"])}
        for h, r in latest.items()
    ]
    for i in range(0, len(rows), _CHUNK_SIZE):
        stmt = upsert_insert(db, DormLatest).values(rows[i : i + _CHUNK_SIZE])
        stmt = stmt.on_conflict_do_update(
            index_elements=["hashed_dir"],
            set_={"last_ts": stmt.excluded.last_ts, "last_kwh": stmt.excluded.last_kwh},
            where=(
                DormLatest.last_ts < stmt.excluded.last_ts
                if settings.latest_state_monotonic
                else None
            ),
        )
        await db.execute(stmt)


async def _touch_targets(db: AsyncSession, latest: dict[str, dict]) -> None:
    table = CrawlTarget.__table__
    stmt = (
        table.update()
        .where(table.c.hashed_dir == bindparam("b_hashed_dir"))
        .values(last_crawled_ts=bindparam("b_ts"))
    )
    await db.execute(
        stmt,
        [{"b_hashed_dir": h, "b_ts": int(r["ts"])} for h, r in latest.items()],
    )


async def ingest_batch(
    db: AsyncSession,
    job_id: uuid.UUID,
    slice_index: int,
    readings: Sequence[dict],
    failures: Sequence[dict] = (),
    finished: bool = False,
    now: int | None = None,
) -> IngestResult:
    """Apply one crawler report as a single durable unit.

    Readings are insert-or-ignore, so replays are harmless. When *finished*
    is set, the slice is closed and the job counters are rolled up with
    conditional update expressions in the same transaction, so concurrent
    reports for sibling slices cannot double-count or skip the DONE step.

    Raises:
        SliceNotFound: the (job_id, slice_index) pair does not exist.
    """
    now = _now(now)

    slice_result = await db.execute(
        select(CrawlSlice.status).where(
            CrawlSlice.job_id == job_id, CrawlSlice.slice_index == slice_index
        )
    )
    if slice_result.scalar_one_or_none() is None:
        raise SliceNotFound(f"Job {job_id} has no slice {slice_index}")

    hashed_dirs = list(dict.fromkeys(r["hashed_dir"] for r in readings))
    slice_closed = False

    try:
        if readings:
            latest = _latest_per_dir(readings)
            await _insert_readings(db, readings)
            await _upsert_latest(db, latest)
            await _touch_targets(db, latest)

        if failures:
            await db.execute(
                insert(CrawlFailure),
                [
                    {
                        "job_id": job_id,
                        "hashed_dir": f["hashed_dir"],
                        "reason": f["reason"],
                        "ts": now,
                    }
                    for f in failures
                ],
            )

        if finished:
            closed = await db.execute(
                update(CrawlSlice)
                .where(
                    CrawlSlice.job_id == job_id,
                    CrawlSlice.slice_index == slice_index,
                    CrawlSlice.status != SliceStatus.DONE,
                )
                .values(status=SliceStatus.DONE, finished_ts=now)
                .execution_options(synchronize_session=False)
            )
            slice_closed = closed.rowcount == 1

            # A repeated "finished" report must not count the slice twice
            if slice_closed:
                await db.execute(
                    update(CrawlJob)
                    .where(
                        CrawlJob.id == job_id,
                        CrawlJob.finished_slices < CrawlJob.total_slices,
                    )
                    .values(finished_slices=CrawlJob.finished_slices + 1)
                    .execution_options(synchronize_session=False)
                )

            await db.execute(
                update(CrawlJob)
                .where(
                    CrawlJob.id == job_id,
                    CrawlJob.status.in_([JobStatus.PENDING, JobStatus.RUNNING]),
                    CrawlJob.finished_slices >= CrawlJob.total_slices,
                )
                .values(status=JobStatus.DONE)
                .execution_options(synchronize_session=False)
            )

        # Failures may arrive after the last slice closed the job
        if finished or failures:
            await db.execute(
                update(CrawlJob)
                .where(
                    CrawlJob.id == job_id,
                    CrawlJob.status == JobStatus.DONE,
                    exists().where(CrawlFailure.job_id == job_id),
                )
                .values(status=JobStatus.DONE_WITH_ERRORS)
                .execution_options(synchronize_session=False)
            )

        status_result = await db.execute(
            select(CrawlJob.status).where(CrawlJob.id == job_id)
        )
        job_status = JobStatus(status_result.scalar_one())
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Ingested job %s slice %d: %d readings, %d failures, closed=%s, job=%s",
        job_id,
        slice_index,
        len(readings),
        len(failures),
        slice_closed,
        job_status.value,
    )
    return IngestResult(
        job_status=job_status, slice_closed=slice_closed, hashed_dirs=hashed_dirs
    )
