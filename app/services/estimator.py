"""Discharge-rate estimation for a single dorm's reading series.

Top-ups show up as positive jumps in the meter balance. They are snapped to
the vendor's purchase denominations and subtracted out, leaving an
"uncharged" series that only reflects consumption. An ordinary least-squares
line through that series gives the discharge rate in kW.
"""

from collections.abc import Sequence
from typing import NamedTuple

import numpy as np

# (exclusive lower bound, snapped charge) — checked top-down
_CHARGE_LADDER: tuple[tuple[float, float], ...] = (
    (175.0, 200.0),
    (125.0, 150.0),
    (87.5, 100.0),
    (62.5, 75.0),
    (37.5, 50.0),
    (12.5, 25.0),
)
_PASS_THROUGH_ABOVE = 225.0


class SeriesPoint(NamedTuple):
    ts: int
    kwh: float


class DischargeEstimate(NamedTuple):
    kw: float   # negative while consuming
    r2: float   # coefficient of determination of the fit


def snap_charge(diff: float) -> float:
    """Map a balance jump onto the nearest purchase denomination at or below it.

    Jumps of 12.5 kWh or less (including drops) count as no charge; jumps
    above 225 kWh are taken at face value.
    """
    if diff > _PASS_THROUGH_ABOVE:
        return diff
    for lower, charge in _CHARGE_LADDER:
        if diff > lower:
            return charge
    return 0.0


def remove_charges(points: Sequence[tuple[int, float]]) -> list[SeriesPoint]:
    """Subtract the cumulative inferred charge from every point after each top-up."""
    if not points:
        return []

    first_ts, first_kwh = points[0]
    result = [SeriesPoint(int(first_ts), float(first_kwh))]
    previous = float(first_kwh)
    total_charge = 0.0

    for ts, kwh in points[1:]:
        kwh = float(kwh)
        total_charge += snap_charge(kwh - previous)
        previous = kwh
        result.append(SeriesPoint(int(ts), kwh - total_charge))

    return result


def recent_window(
    points: Sequence[tuple[int, float]], window_sec: int, min_points: int
) -> list[tuple[int, float]]:
    """Keep points within *window_sec* of the newest one, or the last *min_points* if fewer."""
    if not points:
        return []
    cutoff = points[-1][0] - window_sec
    recent = [p for p in points if p[0] >= cutoff]
    return list(recent) if len(recent) >= min_points else list(points[-min_points:])


def estimate_discharge(points: Sequence[tuple[int, float]]) -> DischargeEstimate | None:
    """Fit ``kwh = a + b·ts`` over the uncharged series.

    Args:
        points: (unix seconds, kWh) pairs ordered by time.

    Returns:
        The slope converted from kWh/s to kW together with R², or None when
        there are fewer than two points or every timestamp is identical.
    """
    uncharged = remove_charges(points)
    if len(uncharged) < 2:
        return None

    x = np.array([p.ts for p in uncharged], dtype=float)
    y = np.array([p.kwh for p in uncharged], dtype=float)

    # Centre on the means; raw unix-second sums lose all precision when squared
    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float(np.dot(dx, dx))
    if sxx == 0.0:
        return None

    slope = float(np.dot(dx, dy)) / sxx  # kWh per second
    intercept = float(y.mean()) - slope * float(x.mean())

    residuals = y - (intercept + slope * x)
    ss_res = float(np.dot(residuals, residuals))
    ss_tot = float(np.dot(dy, dy))
    r2 = 1.0 if ss_tot == 0.0 else 1.0 - ss_res / ss_tot

    return DischargeEstimate(kw=slope * 3600.0, r2=r2)
