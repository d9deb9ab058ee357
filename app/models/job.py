import enum
import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    DONE_WITH_ERRORS = "DONE_WITH_ERRORS"


class SliceStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"


class CrawlJob(Base):
    """One scheduling tick. Immutable except for status and finished_slices."""

    __tablename__ = "crawl_jobs"
    __table_args__ = (
        CheckConstraint("finished_slices <= total_slices", name="ck_crawl_jobs_finished_le_total"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="crawljobstatus"), nullable=False, default=JobStatus.PENDING
    )
    total_slices: Mapped[int] = mapped_column(Integer, nullable=False)
    finished_slices: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CrawlSlice(Base):
    """A fixed-size, ordered partition of a job's targets.

    PENDING → RUNNING (claimed) → DONE (closed by a finished ingest).
    """

    __tablename__ = "crawl_slices"
    __table_args__ = (
        Index("ix_crawl_slices_job_status", "job_id", "status", "slice_index"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("crawl_jobs.id", ondelete="CASCADE"),
        primary_key=True,
    )
    slice_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[SliceStatus] = mapped_column(
        Enum(SliceStatus, name="crawlslicestatus"), nullable=False, default=SliceStatus.PENDING
    )
    payload: Mapped[list] = mapped_column(JSON, nullable=False)
    claimed_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    deadline_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    finished_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class CrawlFailure(Base):
    """Append-only record of a single target that could not be crawled in a job."""

    __tablename__ = "crawl_failures"
    __table_args__ = (Index("ix_crawl_failures_job_id", "job_id"),)

    # SQLite only autoincrements INTEGER PRIMARY KEY columns
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("crawl_jobs.id", ondelete="CASCADE"), nullable=False
    )
    hashed_dir: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
