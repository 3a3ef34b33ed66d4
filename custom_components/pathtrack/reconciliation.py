"""
Reconciliation engine — merges fix batches into one canonical path.

Pure functions with no HA or network dependencies. The remote store, the
local cache and the live stream are all just producers of Fix batches; this
module is the only place where they are combined.

Guarantees:
- merge(P, ()) == P and merge(P, P) == P
- the surviving set does not depend on the order of the input batches
- the result is non-decreasing by captured_at, ties keep insertion order
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from .const import DEFAULT_DUPLICATE_EPSILON
from .models import Fix

_LOGGER = logging.getLogger(__name__)


def same_position(a: Fix, b: Fix, epsilon: float = DEFAULT_DUPLICATE_EPSILON) -> bool:
    return abs(a.latitude - b.latitude) < epsilon and abs(a.longitude - b.longitude) < epsilon


def is_duplicate(a: Fix, b: Fix, epsilon: float = DEFAULT_DUPLICATE_EPSILON) -> bool:
    """
    Two fixes are duplicates when their coordinates match within epsilon and
    either their capture times are equal or one of the capture times is not
    reliable (taken from a receive time rather than the device clock).
    """
    if not same_position(a, b, epsilon):
        return False
    if not a.timestamp_reliable or not b.timestamp_reliable:
        return True
    return a.captured_at == b.captured_at


def merge(
    existing: Iterable[Fix],
    incoming: Iterable[Fix],
    epsilon: float = DEFAULT_DUPLICATE_EPSILON,
) -> tuple[Fix, ...]:
    """
    Merge ``incoming`` into ``existing`` and return the new canonical path.

    Fixes without coordinates are dropped with a logged anomaly. The first
    occurrence of a duplicate survives, so fixes already in the path win
    over re-delivered copies.
    """
    kept: list[Fix] = []
    # Reliable fixes bucketed by capture time; only equal timestamps can collide
    by_time: dict[datetime, list[Fix]] = {}
    # Fixes with an unreliable timestamp collide with any fix at the same position
    unreliable: list[Fix] = []

    for fix in (*existing, *incoming):
        if not fix.has_coordinates:
            _LOGGER.warning(
                "Dropping fix for %s at %s without coordinates",
                fix.entity_id, fix.captured_at.isoformat(),
            )
            continue

        if fix.timestamp_reliable:
            candidates = [*by_time.get(fix.captured_at, ()), *unreliable]
        else:
            candidates = kept
        if any(is_duplicate(other, fix, epsilon) for other in candidates):
            continue

        kept.append(fix)
        if fix.timestamp_reliable:
            by_time.setdefault(fix.captured_at, []).append(fix)
        else:
            unreliable.append(fix)

    # list.sort is stable: equal timestamps keep their insertion order
    kept.sort(key=lambda f: f.captured_at)
    return tuple(kept)


def latest_timestamp(path: Iterable[Fix]) -> datetime | None:
    """Max captured_at over a path, or None for an empty one."""
    return max((fix.captured_at for fix in path), default=None)
