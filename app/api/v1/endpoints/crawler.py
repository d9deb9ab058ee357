"""Crawler-facing endpoints.

POST /crawler/claim  — hand the caller one PENDING slice of its job (204 when none is left)
POST /crawler/ingest — apply a batch of readings/failures, roll up the job, run alerting

Both require the job-scoped bearer credential minted by the scheduler.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.dependencies import get_notifier, require_claim_scope
from app.schemas.crawler import ClaimRequest, ClaimResponse, IngestRequest, IngestResponse
from app.services.alerting import AlertingReport, run_alerts
from app.services.crawl_store import SliceNotFound, claim_slice, ingest_batch
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_same_job(claims: dict[str, Any], job_id) -> None:
    if claims.get("job_id") != str(job_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Credential was issued for a different job",
        )


@router.post(
    "/crawler/claim",
    response_model=ClaimResponse,
    responses={204: {"description": "No slice left to claim"}},
    summary="Claim the next pending slice",
)
async def claim(
    body: ClaimRequest,
    db: AsyncSession = Depends(get_db),
    claims: dict = Depends(require_claim_scope("claim")),
):
    _require_same_job(claims, body.job_id)

    claimed = await claim_slice(db, body.job_id)
    if claimed is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return claimed.as_dict()


@router.post(
    "/crawler/ingest",
    response_model=IngestResponse,
    summary="Report readings and failures for a claimed slice",
    description=(
        "Readings are idempotent on (hashed_dir, ts). With finished=true the slice is "
        "closed and the job status rolled up. Alerts for the dorms in the batch are "
        "evaluated after the data is committed; delivery problems never fail the call."
    ),
)
async def ingest(
    body: IngestRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    claims: dict = Depends(require_claim_scope("ingest")),
):
    _require_same_job(claims, body.job_id)

    try:
        result = await ingest_batch(
            db,
            job_id=body.job_id,
            slice_index=body.slice_index,
            readings=[r.model_dump() for r in body.readings],
            failures=[f.model_dump() for f in body.failures],
            finished=body.finished,
        )
    except SliceNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    report = AlertingReport()
    try:
        report = await run_alerts(db, result.hashed_dirs, notifier)
    except Exception as exc:
        # Readings are already committed; alerting retries on the next batch
        logger.exception(
            "Alerting after job %s slice %d failed: %s", body.job_id, body.slice_index, exc
        )

    return {
        "ok": True,
        "job_status": result.job_status.value,
        "slice_closed": result.slice_closed,
        "alerts_sent": len(report.sent),
        "alerts_failed": len(report.failed),
    }
