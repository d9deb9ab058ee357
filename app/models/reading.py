from sqlalchemy import BigInteger, Boolean, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Reading(Base):
    """A single meter observation. Keyed by (hashed_dir, ts); re-submissions are ignored."""

    __tablename__ = "readings"

    hashed_dir: Mapped[str] = mapped_column(String(64), primary_key=True)
    ts: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    kwh: Mapped[float] = mapped_column(Float, nullable=False)
    ok: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class DormLatest(Base):
    """Latest reading per dorm, plus the cached discharge rate used for depletion alerts.

    last_kw is negative while the balance is being consumed; None means unknown.
    """

    __tablename__ = "dorm_latest"

    hashed_dir: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_kwh: Mapped[float] = mapped_column(Float, nullable=False)
    last_kw: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_kw_r2: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
