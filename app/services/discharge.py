"""Periodic refresh of the cached discharge rate (dorm_latest.last_kw).

Loads the recent readings of every enabled dorm in one query (the window
before its newest reading, or at least its last few points), groups them
per dorm with pandas and runs the estimator on each group. Fits below
``estimator_min_r2`` clear the cached rate so the depletion rule is skipped
rather than fed a noisy slope.
"""

import logging
import time

import pandas as pd
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.reading import DormLatest, Reading
from app.models.target import CrawlTarget
from app.services.estimator import estimate_discharge, recent_window

logger = logging.getLogger(__name__)


async def _load_recent_readings(db: AsyncSession) -> pd.DataFrame:
    """OK readings of each enabled dorm inside the window, plus its newest min_points."""
    enabled = select(CrawlTarget.hashed_dir).where(CrawlTarget.enabled.is_(True))

    ranked = (
        select(
            Reading.hashed_dir,
            Reading.ts,
            Reading.kwh,
            func.row_number()
            .over(partition_by=Reading.hashed_dir, order_by=Reading.ts.desc())
            .label("recency"),
            func.max(Reading.ts).over(partition_by=Reading.hashed_dir).label("newest_ts"),
        )
        .where(Reading.hashed_dir.in_(enabled), Reading.ok.is_(True))
        .subquery()
    )

    result = await db.execute(
        select(ranked.c.hashed_dir, ranked.c.ts, ranked.c.kwh)
        .where(
            or_(
                ranked.c.ts >= ranked.c.newest_ts - settings.estimator_window_sec,
                ranked.c.recency <= settings.estimator_min_points,
            )
        )
        .order_by(ranked.c.hashed_dir, ranked.c.ts)
    )
    return pd.DataFrame(result.all(), columns=["hashed_dir", "ts", "kwh"])


async def refresh_discharge_rates(db: AsyncSession, now: int | None = None) -> int:
    """Re-estimate last_kw for every enabled dorm. Returns how many got an estimate."""
    now = int(time.time()) if now is None else now
    df = await _load_recent_readings(db)
    if df.empty:
        logger.info("No readings to estimate discharge rates from")
        return 0

    estimated = 0
    for hashed_dir, group in df.groupby("hashed_dir", sort=False):
        points = list(zip(group["ts"].astype(int), group["kwh"].astype(float)))
        points = recent_window(
            points, settings.estimator_window_sec, settings.estimator_min_points
        )

        fit = None
        if len(points) >= settings.estimator_min_points:
            fit = estimate_discharge(points)

        if fit is None or fit.r2 < settings.estimator_min_r2:
            logger.warning(
                "No usable discharge estimate for %s (%d points, r2=%s)",
                hashed_dir,
                len(points),
                f"{fit.r2:.3f}" if fit else "n/a",
            )
            values = {"last_kw": None, "last_kw_r2": fit.r2 if fit else None}
        else:
            values = {"last_kw": fit.kw, "last_kw_r2": fit.r2}
            estimated += 1

        await db.execute(
            update(DormLatest)
            .where(DormLatest.hashed_dir == hashed_dir)
            .values(estimated_ts=now, **values)
            .execution_options(synchronize_session=False)
        )

    await db.commit()
    logger.info(
        "Refreshed discharge rates: %d of %d dorms estimated",
        estimated,
        df["hashed_dir"].nunique(),
    )
    return estimated
