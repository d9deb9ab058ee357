from sqlalchemy import BigInteger, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class CrawlTarget(Base):
    """A dorm whose meter is crawled on every scheduling tick while enabled.

    Disabled targets are skipped by the scheduler; their readings are kept.
    """

    __tablename__ = "crawl_targets"
    __table_args__ = (Index("ix_crawl_targets_enabled", "enabled", "hashed_dir"),)

    hashed_dir: Mapped[str] = mapped_column(String(64), primary_key=True)
    canonical_id: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_crawled_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def as_payload(self) -> dict:
        """Shape stored in slice payloads and handed to crawlers."""
        return {"hashed_dir": self.hashed_dir, "canonical_id": self.canonical_id}
