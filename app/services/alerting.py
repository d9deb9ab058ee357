"""Post-ingestion alert evaluation.

For every subscription on a freshly updated dorm:

  cooldown  → skip while now - last_alert_ts < cooldown_sec
  low_power → last_kwh below threshold_kwh
  depletion → only if low_power did not fire; hours left at the cached
              discharge rate below within_hours

At most one alert per subscription per cooldown. The cooldown slot is taken
with a conditional UPDATE before sending and given back if delivery fails,
so concurrent ingestions of one dorm send once and a failed send is retried
on the next ingestion.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field

from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import NotifyChannel, Subscription
from app.services.notifier import Notifier, NotifyResult
from app.services.subscriptions import SubscriptionView, subscriptions_for_dirs

logger = logging.getLogger(__name__)


class AlertKind(str, enum.Enum):
    low_power = "low_power"
    depletion_imminent = "depletion_imminent"


@dataclass(frozen=True)
class Alert:
    kind: AlertKind
    title: str
    body: str
    hours_remaining: float | None = None


@dataclass
class AlertingReport:
    sent: list[tuple[str, str]] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


def evaluate_rules(
    sub: Subscription, last_kwh: float | None, last_kw: float | None, now: int
) -> Alert | None:
    """Decide which alert, if any, *sub* should receive right now."""
    if last_kwh is None:
        return None
    if sub.last_alert_ts is not None and now - sub.last_alert_ts < sub.cooldown_sec:
        return None

    if sub.threshold_kwh > 0 and last_kwh < sub.threshold_kwh:
        return Alert(
            kind=AlertKind.low_power,
            title="Low electricity balance",
            body=(
                f"{sub.canonical_id}: {last_kwh:.2f} kWh left, "
                f"below your threshold of {sub.threshold_kwh:.2f} kWh."
            ),
        )

    if sub.within_hours > 0 and last_kw is not None and last_kw < 0:
        hours_remaining = last_kwh / -last_kw
        if hours_remaining < sub.within_hours:
            return Alert(
                kind=AlertKind.depletion_imminent,
                title="Electricity running out soon",
                body=(
                    f"{sub.canonical_id}: about {hours_remaining:.1f} h left "
                    f"at the current usage of {-last_kw:.2f} kW."
                ),
                hours_remaining=hours_remaining,
            )

    return None


async def _deliver(notifier: Notifier, sub: Subscription, alert: Alert) -> NotifyResult:
    try:
        return await notifier.send(sub.notify_channel, sub.notify_token, alert.title, alert.body)
    except Exception as exc:
        # One subscriber's provider must not break delivery for the others
        logger.exception(
            "Unexpected error notifying %s about %s", sub.user_id, sub.hashed_dir
        )
        return NotifyResult(False, str(exc))


def _subscription_key(sub: Subscription):
    return and_(Subscription.user_id == sub.user_id, Subscription.hashed_dir == sub.hashed_dir)


async def _reserve(db: AsyncSession, due: list[tuple[Subscription, Alert]], now: int):
    """Claim the cooldown slot of each due subscription; keep only the ones we won.

    The UPDATE re-checks the cooldown against the stored row, so a concurrent
    ingestion of the same dorm cannot send the same alert twice.
    """
    reserved: list[tuple[Subscription, Alert, int | None]] = []
    try:
        for sub, alert in due:
            result = await db.execute(
                update(Subscription)
                .where(
                    _subscription_key(sub),
                    or_(
                        Subscription.last_alert_ts.is_(None),
                        Subscription.last_alert_ts <= now - Subscription.cooldown_sec,
                    ),
                )
                .values(last_alert_ts=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                reserved.append((sub, alert, sub.last_alert_ts))
            else:
                logger.info(
                    "Alert for %s on %s already sent by a concurrent ingestion",
                    sub.user_id,
                    sub.hashed_dir,
                )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return reserved


async def _release(
    db: AsyncSession, failed: list[tuple[Subscription, int | None]], now: int
) -> None:
    """Put back the previous last_alert_ts for deliveries that did not go through."""
    try:
        for sub, previous in failed:
            await db.execute(
                update(Subscription)
                .where(_subscription_key(sub), Subscription.last_alert_ts == now)
                .values(last_alert_ts=previous)
                .execution_options(synchronize_session=False)
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def run_alerts(
    db: AsyncSession,
    hashed_dirs: list[str],
    notifier: Notifier,
    now: int | None = None,
) -> AlertingReport:
    """Evaluate and deliver alerts for the subscriptions on *hashed_dirs*."""
    now = int(time.time()) if now is None else now
    report = AlertingReport()

    views: list[SubscriptionView] = await subscriptions_for_dirs(db, hashed_dirs)
    due: list[tuple[Subscription, Alert]] = []
    for view in views:
        sub = view.subscription
        if sub.notify_channel == NotifyChannel.none or not sub.notify_token:
            continue
        alert = evaluate_rules(sub, view.last_kwh, view.last_kw, now)
        if alert is not None:
            due.append((sub, alert))

    if not due:
        return report

    reserved = await _reserve(db, due, now)
    if not reserved:
        return report

    results = await asyncio.gather(
        *(_deliver(notifier, sub, alert) for sub, alert, _ in reserved)
    )

    failed: list[tuple[Subscription, int | None]] = []
    for (sub, alert, previous), result in zip(reserved, results):
        key = (sub.user_id, sub.hashed_dir)
        if result.ok:
            report.sent.append(key)
            logger.info("Sent %s alert to %s for %s", alert.kind.value, *key)
        else:
            failed.append((sub, previous))
            report.failed.append(key)
            logger.warning(
                "Could not deliver %s alert to %s for %s: %s",
                alert.kind.value,
                sub.user_id,
                sub.hashed_dir,
                result.error,
            )

    if failed:
        await _release(db, failed, now)

    return report
