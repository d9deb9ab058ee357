# Import all ORM models here so Alembic's env.py picks up their metadata automatically.
from app.models.job import CrawlFailure, CrawlJob, CrawlSlice, JobStatus, SliceStatus
from app.models.reading import DormLatest, Reading
from app.models.subscription import NotifyChannel, Subscription
from app.models.target import CrawlTarget

__all__ = [
    "CrawlTarget",
    "CrawlJob",
    "CrawlSlice",
    "CrawlFailure",
    "JobStatus",
    "SliceStatus",
    "Reading",
    "DormLatest",
    "Subscription",
    "NotifyChannel",
]
