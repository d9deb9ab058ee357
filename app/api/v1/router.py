from fastapi import APIRouter

from app.api.v1.endpoints import crawler, jobs, notify, system

api_v1_router = APIRouter()

# System / health endpoints (status, docs metadata)
api_v1_router.include_router(system.router, tags=["System"])

# Claim + ingest, authenticated with the job-scoped crawler credential
api_v1_router.include_router(crawler.router, tags=["Crawler"])

# Operator view of jobs and manual scheduling
api_v1_router.include_router(jobs.router, tags=["Jobs"])

# Notification channel checks
api_v1_router.include_router(notify.router, tags=["Notifications"])
