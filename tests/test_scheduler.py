"""Tests for the scheduling tick, the workflow runner and the discharge refresh."""

import json

import httpx
import pytest
from sqlalchemy import func, select

from app.config import settings
from app.models.job import CrawlJob, CrawlSlice
from app.models.reading import DormLatest
from app.services.claim_token import verify_claim_token
from app.services.crawl_store import create_job_with_slices, ingest_batch, job_summary
from app.services.discharge import refresh_discharge_rates
from app.services.job_runner import GitHubWorkflowRunner
from app.services.scheduler import partition, schedule_crawl

_NOW = 1_760_000_000


@pytest.fixture
def github_configured(monkeypatch):
    monkeypatch.setattr(settings, "github_token", "ghp_test")
    monkeypatch.setattr(settings, "github_owner", "dormitricity")
    monkeypatch.setattr(settings, "github_repo", "crawler")


@pytest.fixture
def unconfigured_runner(monkeypatch):
    monkeypatch.setattr(settings, "github_token", None)
    return GitHubWorkflowRunner()


# ── Scheduling ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_no_targets_creates_nothing(db, unconfigured_runner):
    assert await schedule_crawl(db, runner=unconfigured_runner) is None
    assert await db.scalar(select(func.count()).select_from(CrawlJob)) == 0


@pytest.mark.asyncio
async def test_ten_targets_fit_one_slice(db, seed_targets, unconfigured_runner):
    await seed_targets(10)

    scheduled = await schedule_crawl(db, runner=unconfigured_runner, now=_NOW)

    assert scheduled.total_slices == 1
    assert scheduled.total_targets == 10
    assert scheduled.dispatched is False
    summary = await job_summary(db, scheduled.job_id)
    assert summary["status"] == "PENDING"
    assert summary["slices"]["PENDING"] == 1


@pytest.mark.asyncio
async def test_targets_split_into_ordered_slices(db, seed_targets, unconfigured_runner, monkeypatch):
    monkeypatch.setattr(settings, "slice_size", 4)
    await seed_targets(10)

    scheduled = await schedule_crawl(db, runner=unconfigured_runner, now=_NOW)

    result = await db.execute(
        select(CrawlSlice.slice_index, CrawlSlice.payload)
        .where(CrawlSlice.job_id == scheduled.job_id)
        .order_by(CrawlSlice.slice_index)
    )
    rows = result.all()
    assert [len(payload) for _, payload in rows] == [4, 4, 2]
    dirs = [t["hashed_dir"] for _, payload in rows for t in payload]
    assert dirs == sorted(dirs)


def test_partition_empty():
    assert partition([], 50) == []


@pytest.mark.asyncio
async def test_dispatch_passes_job_and_credential(db, seed_targets, github_configured):
    await seed_targets(3)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(204)

    runner = GitHubWorkflowRunner(transport=httpx.MockTransport(handler))
    scheduled = await schedule_crawl(db, runner=runner)

    assert scheduled.dispatched is True
    assert len(calls) == 1
    request = calls[0]
    assert request.url.path == "/repos/dormitricity/crawler/actions/workflows/crawler.yml/dispatches"
    assert request.headers["Authorization"] == "Bearer ghp_test"

    body = json.loads(request.content)
    assert body["ref"] == "main"
    assert body["inputs"]["job_id"] == str(scheduled.job_id)
    claims = verify_claim_token(body["inputs"]["token"])
    assert claims["job_id"] == str(scheduled.job_id)


@pytest.mark.asyncio
async def test_dispatch_rejection_propagates_but_job_persists(db, seed_targets, github_configured):
    await seed_targets(2)
    runner = GitHubWorkflowRunner(
        transport=httpx.MockTransport(lambda request: httpx.Response(422))
    )

    with pytest.raises(httpx.HTTPStatusError):
        await schedule_crawl(db, runner=runner)
    assert await db.scalar(select(func.count()).select_from(CrawlJob)) == 1


class TestGitHubWorkflowRunner:
    def test_status_not_configured(self, unconfigured_runner):
        assert unconfigured_runner.status() == "not_configured"

    def test_status_configured(self, github_configured):
        assert GitHubWorkflowRunner().status() == "configured"

    @pytest.mark.asyncio
    async def test_dispatch_requires_configuration(self, unconfigured_runner):
        with pytest.raises(RuntimeError):
            await unconfigured_runner.dispatch("job", "token")


# ── Discharge-rate refresh ────────────────────────────────────────────────────

async def _ingest_series(db, targets, series_by_dir):
    job = await create_job_with_slices(db, [targets], now=_NOW)
    readings = [
        {"hashed_dir": hashed_dir, "ts": ts, "kwh": kwh, "ok": True}
        for hashed_dir, series in series_by_dir.items()
        for ts, kwh in series
    ]
    await ingest_batch(db, job.id, 0, readings)


async def _latest(session_factory, hashed_dir):
    async with session_factory() as session:
        return (
            await session.execute(
                select(DormLatest.last_kw, DormLatest.last_kw_r2, DormLatest.estimated_ts).where(
                    DormLatest.hashed_dir == hashed_dir
                )
            )
        ).one()


@pytest.mark.asyncio
async def test_refresh_caches_discharge_rate(db, seed_targets, session_factory):
    targets = await seed_targets(1)
    hashed_dir = targets[0]["hashed_dir"]
    # 0.5 kWh per hour with one 50 kWh top-up in the middle
    series = [(_NOW + h * 3600, 30.0 - 0.5 * h + (50.0 if h >= 4 else 0.0)) for h in range(8)]
    await _ingest_series(db, targets, {hashed_dir: series})

    assert await refresh_discharge_rates(db, now=_NOW + 9 * 3600) == 1

    last_kw, r2, estimated_ts = await _latest(session_factory, hashed_dir)
    assert last_kw == pytest.approx(-0.5)
    assert r2 == pytest.approx(1.0)
    assert estimated_ts == _NOW + 9 * 3600


@pytest.mark.asyncio
async def test_refresh_skips_short_series(db, seed_targets, session_factory):
    targets = await seed_targets(1)
    hashed_dir = targets[0]["hashed_dir"]
    await _ingest_series(db, targets, {hashed_dir: [(_NOW, 10.0), (_NOW + 3600, 9.0)]})

    assert await refresh_discharge_rates(db, now=_NOW) == 0
    last_kw, _, estimated_ts = await _latest(session_factory, hashed_dir)
    assert last_kw is None
    assert estimated_ts == _NOW


@pytest.mark.asyncio
async def test_refresh_clears_rate_on_poor_fit(db, seed_targets, session_factory):
    targets = await seed_targets(1)
    hashed_dir = targets[0]["hashed_dir"]
    noisy = [(_NOW + h * 3600, kwh) for h, kwh in enumerate([20, 25, 18, 26, 17, 27])]
    await _ingest_series(db, targets, {hashed_dir: noisy})

    assert await refresh_discharge_rates(db, now=_NOW) == 0
    last_kw, r2, _ = await _latest(session_factory, hashed_dir)
    assert last_kw is None
    assert r2 < settings.estimator_min_r2


@pytest.mark.asyncio
async def test_refresh_without_readings(db):
    assert await refresh_discharge_rates(db) == 0


@pytest.mark.asyncio
async def test_refresh_falls_back_to_last_points_when_window_is_sparse(
    db, seed_targets, session_factory
):
    targets = await seed_targets(1)
    hashed_dir = targets[0]["hashed_dir"]
    # one reading every 12 h, so only 3 fall inside the 24 h window
    series = [(_NOW + i * 12 * 3600, 40.0 - i) for i in range(6)]
    await _ingest_series(db, targets, {hashed_dir: series})

    assert await refresh_discharge_rates(db, now=_NOW + 6 * 12 * 3600) == 1

    last_kw, r2, _ = await _latest(session_factory, hashed_dir)
    assert last_kw == pytest.approx(-1.0 / 12.0)
    assert r2 == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_refresh_uses_each_dorms_own_window(db, seed_targets, session_factory):
    targets = await seed_targets(2)
    fresh, stale = targets[0]["hashed_dir"], targets[1]["hashed_dir"]
    # the stale dorm stopped reporting a week before the fresh one
    week = 7 * 24 * 3600
    await _ingest_series(
        db,
        targets,
        {
            fresh: [(_NOW + week + h * 3600, 30.0 - 0.5 * h) for h in range(6)],
            stale: [(_NOW + h * 3600, 20.0 - 2.0 * h) for h in range(6)],
        },
    )

    assert await refresh_discharge_rates(db, now=_NOW + week + 6 * 3600) == 2
    assert (await _latest(session_factory, fresh))[0] == pytest.approx(-0.5)
    assert (await _latest(session_factory, stale))[0] == pytest.approx(-2.0)
