"""Distance aggregation helpers.

Pure transformations: ``breakdown`` reduces one athlete's activities to
kilometre totals per activity type and ``combine`` folds the per-athlete
results into a :class:`StatsSnapshot`. No I/O happens here, so the output
depends only on the inputs (and the ``now`` timestamp passed in).
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Sequence, Tuple

from .models import (
    ActivityRecord,
    AthleteBreakdown,
    AthleteStat,
    StatsSnapshot,
    TrackingPeriod,
    TypeBreakdown,
    TypeTotals,
)
from .utils import utc_now

AthleteInput = Tuple[str, AthleteBreakdown]  # (display name, breakdown)


def breakdown(activities: Iterable[ActivityRecord]) -> AthleteBreakdown:
    """Sum distance (km) and count per activity type for one athlete."""

    result = AthleteBreakdown()
    for act in activities:
        km = act.distance_meters / 1000.0
        result.total_km += km
        result.activity_count += 1
        totals = result.by_type.setdefault(act.activity_type, TypeTotals())
        totals.distance_km += km
        totals.count += 1
    return result


def merge_type_breakdowns(parts: Iterable[TypeBreakdown]) -> TypeBreakdown:
    """Sum distance and count per type across several breakdowns.

    Keys appear in first-seen order so repeated calls give identical output.
    """

    merged: TypeBreakdown = {}
    for part in parts:
        for activity_type, totals in part.items():
            target = merged.setdefault(activity_type, TypeTotals())
            target.distance_km += totals.distance_km
            target.count += totals.count
    return merged


def _copy_types(by_type: TypeBreakdown) -> TypeBreakdown:
    return {
        key: TypeTotals(distance_km=value.distance_km, count=value.count)
        for key, value in by_type.items()
    }


def sort_athletes(athletes: Sequence[AthleteStat]) -> List[AthleteStat]:
    """Descending by distance; equal distances keep their input order."""

    return sorted(athletes, key=lambda stat: -stat.total_distance_km)


def combine(
    per_user: Sequence[AthleteInput],
    tracking_period: TrackingPeriod | None = None,
    *,
    now: datetime | None = None,
) -> StatsSnapshot:
    """Build the challenge-wide snapshot from per-athlete breakdowns."""

    athletes: List[AthleteStat] = []
    total_km = 0.0
    for display_name, part in per_user:
        total_km += part.total_km
        athletes.append(
            AthleteStat(
                display_name=display_name,
                total_distance_km=part.total_km,
                activity_count=part.activity_count,
                by_type=_copy_types(part.by_type),
            )
        )
    return StatsSnapshot(
        total_distance_km=total_km,
        athletes=sort_athletes(athletes),
        activity_types=merge_type_breakdowns(part.by_type for _, part in per_user),
        last_updated=now or utc_now(),
        tracking_period=tracking_period,
    )


__all__ = ["breakdown", "combine", "merge_type_breakdowns", "sort_athletes"]
