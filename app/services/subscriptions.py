"""Subscription records and the target-enablement rules tied to them.

Subscribing to a dorm enables its crawl target; removing the last subscriber
disables it again. Readings are never deleted, so resubscribing later picks
the history back up.
"""

import logging
import time
from dataclasses import dataclass

from sqlalchemy import delete, exists, func, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.reading import DormLatest
from app.models.subscription import NotifyChannel, Subscription
from app.models.target import CrawlTarget
from app.services.crawl_store import enable_target, hash_canonical_id

logger = logging.getLogger(__name__)


class MaxSubscriptionsReached(ValueError):
    pass


class AlreadySubscribed(ValueError):
    pass


class SubscriptionNotFound(LookupError):
    pass


# Advisory-lock namespace for per-user subscription writes
_SUBSCRIPTION_LOCK_CLASS = 7301


@dataclass
class SubscriptionView:
    """A subscription together with the latest known state of its dorm."""

    subscription: Subscription
    last_ts: int | None
    last_kwh: float | None
    last_kw: float | None


def _user_lock(user_id: str):
    return select(
        func.pg_advisory_xact_lock(_SUBSCRIPTION_LOCK_CLASS, func.hashtext(user_id))
    )


async def _serialize_user(db: AsyncSession, user_id: str) -> None:
    """Hold a per-user lock until commit so the count in the limit check is current.

    Under READ COMMITTED two transactions would otherwise each miss the
    other's uncommitted row. SQLite already admits a single writer at a time.
    """
    if db.get_bind().dialect.name == "postgresql":
        await db.execute(_user_lock(user_id))


async def create_subscription(
    db: AsyncSession, user_id: str, canonical_id: str, now: int | None = None
) -> Subscription:
    """Subscribe *user_id* to a dorm and make sure the dorm is being crawled.

    The per-user limit is checked by the INSERT itself (INSERT … SELECT …
    WHERE count < limit) while a per-user transaction lock is held, so two
    concurrent requests cannot both slip past it.

    Raises:
        AlreadySubscribed: the user already follows this dorm.
        MaxSubscriptionsReached: the user is at ``max_subscriptions_per_user``.
    """
    now = int(time.time()) if now is None else now
    hashed_dir = hash_canonical_id(canonical_id)

    existing = await db.get(Subscription, (user_id, hashed_dir), populate_existing=True)
    if existing is not None:
        raise AlreadySubscribed(f"User {user_id} already subscribed to {hashed_dir}")

    columns = Subscription.__table__.c
    values = {
        "user_id": user_id,
        "hashed_dir": hashed_dir,
        "canonical_id": canonical_id,
        "created_ts": now,
        "notify_channel": NotifyChannel.none,
        "threshold_kwh": 0.0,
        "within_hours": 0.0,
        "cooldown_sec": settings.default_cooldown_sec,
    }
    owned = (
        select(func.count())
        .select_from(Subscription)
        .where(Subscription.user_id == user_id)
        .scalar_subquery()
    )
    source = select(
        *(literal(value, columns[name].type) for name, value in values.items())
    ).where(owned < settings.max_subscriptions_per_user)

    try:
        await _serialize_user(db, user_id)
        await enable_target(db, hashed_dir, canonical_id, now)
        result = await db.execute(
            insert(Subscription).from_select(list(values), source)
        )
    except IntegrityError as exc:
        await db.rollback()
        raise AlreadySubscribed(
            f"User {user_id} already subscribed to {hashed_dir}"
        ) from exc

    if result.rowcount != 1:
        await db.rollback()
        raise MaxSubscriptionsReached(
            f"User {user_id} already has {settings.max_subscriptions_per_user} subscriptions"
        )

    await db.commit()
    logger.info("User %s subscribed to %s", user_id, hashed_dir)
    return await db.get(Subscription, (user_id, hashed_dir), populate_existing=True)


async def update_subscription_notify(
    db: AsyncSession,
    user_id: str,
    hashed_dir: str,
    *,
    threshold_kwh: float,
    within_hours: float,
    cooldown_sec: int,
    notify_channel: NotifyChannel,
    notify_token: str | None = None,
) -> None:
    """Replace the alert rules and delivery settings of one subscription."""
    if cooldown_sec not in settings.allowed_cooldowns_sec:
        raise ValueError(
            f"cooldown_sec must be one of {settings.allowed_cooldowns_sec}"
        )
    if notify_channel != NotifyChannel.none and not notify_token:
        raise ValueError("notify_token is required unless notify_channel is 'none'")

    result = await db.execute(
        update(Subscription)
        .where(Subscription.user_id == user_id, Subscription.hashed_dir == hashed_dir)
        .values(
            threshold_kwh=threshold_kwh,
            within_hours=within_hours,
            cooldown_sec=cooldown_sec,
            notify_channel=notify_channel,
            notify_token=notify_token,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise SubscriptionNotFound(f"User {user_id} has no subscription to {hashed_dir}")
    await db.commit()


async def delete_subscription(db: AsyncSession, user_id: str, hashed_dir: str) -> bool:
    """Remove a subscription; disable the target if nobody follows it any more.

    Returns True when the target was disabled.
    """
    deleted = await db.execute(
        delete(Subscription)
        .where(Subscription.user_id == user_id, Subscription.hashed_dir == hashed_dir)
        .execution_options(synchronize_session=False)
    )
    if deleted.rowcount == 0:
        await db.rollback()
        raise SubscriptionNotFound(f"User {user_id} has no subscription to {hashed_dir}")

    disabled = await db.execute(
        update(CrawlTarget)
        .where(
            CrawlTarget.hashed_dir == hashed_dir,
            CrawlTarget.enabled.is_(True),
            ~exists().where(Subscription.hashed_dir == hashed_dir),
        )
        .values(enabled=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    target_disabled = disabled.rowcount == 1
    if target_disabled:
        logger.info("Disabled target %s — last subscriber left", hashed_dir)
    return target_disabled


async def subscriptions_for_dirs(
    db: AsyncSession, hashed_dirs: list[str]
) -> list[SubscriptionView]:
    if not hashed_dirs:
        return []
    result = await db.execute(
        select(Subscription, DormLatest.last_ts, DormLatest.last_kwh, DormLatest.last_kw)
        .outerjoin(DormLatest, DormLatest.hashed_dir == Subscription.hashed_dir)
        .where(Subscription.hashed_dir.in_(hashed_dirs))
        .order_by(Subscription.hashed_dir, Subscription.user_id)
        .execution_options(populate_existing=True)
    )
    return [
        SubscriptionView(subscription=sub, last_ts=last_ts, last_kwh=last_kwh, last_kw=last_kw)
        for sub, last_ts, last_kwh, last_kw in result.all()
    ]
