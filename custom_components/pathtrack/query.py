"""
Date-range queries over a reconciled path.

Pure functions: callers pass the path snapshot and the reference time zone.
Dates are calendar days in that zone, so a fix at 23:59:59 local time belongs
to its day and one at 00:00:01 to the next.
"""
from __future__ import annotations

import itertools
from datetime import date, tzinfo
from typing import Iterable, Sequence

from .const import MIN_MOVEMENT_DISTANCE
from .geo import haversine_m
from .models import DateAvailability, Fix, RouteStats


def local_date(fix: Fix, tz: tzinfo) -> date:
    return fix.captured_at.astimezone(tz).date()


def query_range(
    path: Iterable[Fix],
    start_date: date,
    end_date_inclusive: date,
    tz: tzinfo,
) -> tuple[Fix, ...]:
    """
    Fixes captured from start_date 00:00:00 through end_date 23:59:59 in tz.

    Returns an empty tuple when nothing falls in range or when the range is
    inverted. The path order is preserved.
    """
    if end_date_inclusive < start_date:
        return ()
    return tuple(
        fix for fix in path
        if start_date <= local_date(fix, tz) <= end_date_inclusive
    )


def route_stats(fixes: Sequence[Fix], min_movement_m: float = MIN_MOVEMENT_DISTANCE) -> RouteStats:
    """
    Point count, travelled distance and time span of an ordered sequence.

    Steps shorter than min_movement_m are treated as jitter: they are not
    added to the distance and the reference point does not move.
    """
    located = [fix for fix in fixes if fix.has_coordinates]
    if not located:
        return RouteStats()

    distance = 0.0
    anchor = located[0]
    for fix in located[1:]:
        step = haversine_m(anchor.latitude, anchor.longitude, fix.latitude, fix.longitude)
        if step > min_movement_m:
            distance += step
            anchor = fix

    return RouteStats(
        total_points=len(located),
        total_distance_m=distance,
        start_time=located[0].captured_at,
        end_time=located[-1].captured_at,
    )


def list_available_dates(
    entity_id: str,
    path: Iterable[Fix],
    tz: tzinfo,
) -> tuple[DateAvailability, ...]:
    """Availability index of a path: one entry per local day with data, ascending."""
    ordered = sorted(path, key=lambda f: f.captured_at)
    entries = []
    for day, group in itertools.groupby(ordered, key=lambda f: local_date(f, tz)):
        fixes = list(group)
        stats = route_stats(fixes)
        entries.append(
            DateAvailability(
                entity_id=entity_id,
                date=day,
                fix_count=len(fixes),
                start_time=fixes[0].captured_at,
                end_time=fixes[-1].captured_at,
                total_distance_m=stats.total_distance_m,
            )
        )
    return tuple(entries)
