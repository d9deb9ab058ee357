import enum

from sqlalchemy import BigInteger, Enum, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class NotifyChannel(str, enum.Enum):
    none = "none"
    wxwork = "wxwork"
    feishu = "feishu"
    serverchan = "serverchan"


class Subscription(Base):
    """A user's alert rules for one dorm.

    threshold_kwh ≤ 0 disables the low-power rule; within_hours ≤ 0 disables
    the depletion rule.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_hashed_dir", "hashed_dir"),)

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    hashed_dir: Mapped[str] = mapped_column(String(64), primary_key=True)
    canonical_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notify_channel: Mapped[NotifyChannel] = mapped_column(
        Enum(NotifyChannel, name="notifychannel"), nullable=False, default=NotifyChannel.none
    )
    notify_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    threshold_kwh: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    within_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cooldown_sec: Mapped[int] = mapped_column(Integer, nullable=False, default=43200)
    last_alert_ts: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
