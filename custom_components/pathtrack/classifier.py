"""
Accuracy classifier: decides whether a fix is trustworthy enough to keep.

The source kind of a fix is always derived here from its reported accuracy.
A label asserted by the device or by a stored record is never trusted, since
network positioning labelled as GPS silently corrupts path quality.

No I/O, no retries; retrying acquisition belongs to the caller.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from homeassistant.util import dt as dt_util

from .errors import AccuracyRejected, InvalidCoordinates
from .models import AccuracyPolicy, Fix, FixRole, RawFix, SourceKind

_LOGGER = logging.getLogger(__name__)


def _accuracy_reported(accuracy_m: float | None) -> bool:
    # Some sources report -1 when accuracy is not known
    return accuracy_m is not None and not math.isnan(accuracy_m) and accuracy_m >= 0


def source_kind_for(accuracy_m: float | None, policy: AccuracyPolicy) -> SourceKind:
    """Derive the positioning grade of a fix from its reported accuracy."""
    if not _accuracy_reported(accuracy_m):
        return SourceKind.UNKNOWN
    if accuracy_m <= policy.max_accuracy_m:
        return SourceKind.SATELLITE
    return SourceKind.NETWORK


def classify(
    raw: RawFix,
    entity_id: str,
    policy: AccuracyPolicy,
    *,
    role: FixRole | None = None,
    manual: bool = False,
) -> Fix:
    """
    Turn a raw sample into an accepted Fix or raise AccuracyRejected.

    Satellite-grade fixes are always accepted. Network-grade and unknown
    accuracy fixes are accepted, flagged as degraded, only when the policy
    explicitly allows degraded fixes. Manually entered fixes bypass the
    accuracy gate when the policy allows manual input.
    """
    if not (-90.0 <= raw.latitude <= 90.0 and -180.0 <= raw.longitude <= 180.0):
        raise InvalidCoordinates(
            raw.accuracy_m,
            policy.max_accuracy_m,
            f"Fix rejected: coordinates ({raw.latitude}, {raw.longitude}) out of range",
        )

    if manual:
        if not policy.allow_manual:
            raise AccuracyRejected(
                raw.accuracy_m, policy.max_accuracy_m, "Fix rejected: manual fixes are not allowed"
            )
        kind = SourceKind.MANUAL
    else:
        kind = source_kind_for(raw.accuracy_m, policy)
        if kind is not SourceKind.SATELLITE and not policy.allow_degraded:
            raise AccuracyRejected(raw.accuracy_m, policy.max_accuracy_m)

    return Fix(
        entity_id=entity_id,
        latitude=raw.latitude,
        longitude=raw.longitude,
        accuracy_m=raw.accuracy_m,
        captured_at=dt_util.as_utc(raw.captured_at),
        source_kind=kind,
        role=role,
        speed=raw.speed,
        heading=raw.heading,
    )


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

def _parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 text or epoch seconds/milliseconds into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Epoch milliseconds are what browsers and the original server emit
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        return dt_util.utc_from_timestamp(seconds)
    else:
        parsed = dt_util.parse_datetime(str(value))
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_util.UTC)
    return dt_util.as_utc(parsed)


def _float_or_none(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def fix_from_record(
    record: dict[str, Any],
    policy: AccuracyPolicy,
    *,
    entity_id: str | None = None,
    received_at: datetime | None = None,
) -> Fix:
    """
    Build a Fix from a stored JSON record, re-deriving its source kind.

    Accepts both the flat camelCase record written by this integration and
    the LocationHistory shape of the original server (``deviceId``, nested
    ``location``, ``timestamp``). Missing coordinates stay None so the
    reconciliation engine can drop the record; they are never coerced to 0,0.
    When the capture time is missing the server receive time, then
    ``received_at`` is used and the fix is marked timestamp-unreliable.
    """
    location = record.get("location") if isinstance(record.get("location"), dict) else {}

    def pick(*keys: str) -> Any:
        for key in keys:
            if record.get(key) is not None:
                return record[key]
            if location.get(key) is not None:
                return location[key]
        return None

    accuracy = _float_or_none(pick("accuracyMeters", "accuracy"))

    captured_at = _parse_timestamp(pick("capturedAt", "timestamp"))
    reliable = captured_at is not None
    if captured_at is None:
        captured_at = _parse_timestamp(pick("recordedAt", "createdAt"))
    if captured_at is None:
        captured_at = received_at or dt_util.utcnow()
    if reliable and record.get("timestampReliable") is False:
        reliable = False

    role: FixRole | None = None
    raw_role = record.get("role")
    if raw_role in (FixRole.START.value, FixRole.CURRENT.value):
        role = FixRole(raw_role)
    elif record.get("isStartPoint"):
        role = FixRole.START

    stored_kind = record.get("sourceKind") or record.get("source")
    if stored_kind == SourceKind.MANUAL:
        # Manual entry is a property of how the fix was recorded, not of its accuracy
        kind = SourceKind.MANUAL
    else:
        kind = source_kind_for(accuracy, policy)
        if stored_kind and stored_kind not in (kind.value, "gps", "api", "scan"):
            _LOGGER.debug("Ignoring stored source label %r, derived %s", stored_kind, kind)

    return Fix(
        entity_id=str(entity_id or pick("entityId", "deviceId") or ""),
        latitude=_float_or_none(pick("latitude", "lat")),
        longitude=_float_or_none(pick("longitude", "lng", "lon")),
        accuracy_m=accuracy,
        captured_at=captured_at,
        source_kind=kind,
        address=record.get("address") or None,
        role=role,
        speed=_float_or_none(pick("speed")),
        heading=_float_or_none(pick("heading")),
        timestamp_reliable=reliable,
    )
