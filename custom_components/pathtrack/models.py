"""
Domain models for the Path Track integration.

Pure data classes with no dependencies on HTTP, API logic, or Home Assistant
internals. Every model is frozen: a Fix is never edited once written, a
correction is a new Fix.
"""
from __future__ import annotations

import dataclasses
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class SourceKind(StrEnum):
    """Positioning grade of a fix, derived from its reported accuracy."""

    SATELLITE = "satellite"
    NETWORK = "network"
    MANUAL = "manual"
    UNKNOWN = "unknown"


class FixRole(StrEnum):
    """Marks semantically significant fixes, e.g. the point captured at scan time."""

    START = "start"
    CURRENT = "current"


class TrackingStatus(StrEnum):
    """Why an entity's path looks the way it does right now."""

    IDLE = "idle"
    TRACKING = "tracking"
    LOW_ACCURACY = "low_accuracy"
    NO_SIGNAL = "no_signal"
    PERMISSION_DENIED = "permission_denied"
    SYNC_ERROR = "sync_error"


@dataclasses.dataclass(frozen=True)
class RawFix:
    """One unvalidated sample as delivered by the positioning source."""

    latitude: float
    longitude: float
    accuracy_m: float | None
    captured_at: datetime
    speed: float | None = None
    heading: float | None = None


@dataclasses.dataclass(frozen=True)
class Fix:
    """One accepted positioning sample of a tracked entity."""

    entity_id: str
    latitude: float | None
    longitude: float | None
    accuracy_m: float | None
    captured_at: datetime
    source_kind: SourceKind
    address: str | None = None
    role: FixRole | None = None
    speed: float | None = None
    heading: float | None = None
    # False when captured_at was taken from a receive time, not the device clock
    timestamp_reliable: bool = True

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_degraded(self) -> bool:
        """True for fixes accepted below satellite grade."""
        return self.source_kind in (SourceKind.NETWORK, SourceKind.UNKNOWN)

    def with_address(self, address: str) -> Fix:
        return dataclasses.replace(self, address=address)

    def to_record(self) -> dict[str, Any]:
        """Serialise to the flat JSON record exchanged with the remote path store."""
        record: dict[str, Any] = {
            "entityId": self.entity_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracyMeters": self.accuracy_m,
            "capturedAt": self.captured_at.isoformat(),
            "sourceKind": str(self.source_kind),
        }
        if self.address:
            record["address"] = self.address
        if self.role is not None:
            record["role"] = str(self.role)
        if self.speed is not None:
            record["speed"] = self.speed
        if self.heading is not None:
            record["heading"] = self.heading
        if not self.timestamp_reliable:
            record["timestampReliable"] = False
        return record


@dataclasses.dataclass(frozen=True)
class DateAvailability:
    """Availability index entry: how many fixes an entity has on one day."""

    entity_id: str
    date: date
    fix_count: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    total_distance_m: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "count": self.fix_count,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "total_distance_m": round(self.total_distance_m, 2),
        }


@dataclasses.dataclass(frozen=True)
class RouteStats:
    """Summary of a sequence of fixes."""

    total_points: int = 0
    total_distance_m: float = 0.0
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def duration_s(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return max(0.0, (self.end_time - self.start_time).total_seconds())

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_points": self.total_points,
            "total_distance_m": round(self.total_distance_m, 2),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_s": self.duration_s,
        }


@dataclasses.dataclass(frozen=True)
class SamplerOptions:
    """Options for one acquisition from the positioning source."""

    high_accuracy_requested: bool = True
    timeout: float = 30.0
    # Seconds; 0 forbids returning a cached fix
    max_cache_age: float = 60.0


@dataclasses.dataclass(frozen=True)
class AccuracyPolicy:
    """Caller-controlled accuracy gate."""

    max_accuracy_m: float = 50.0
    allow_degraded: bool = False
    allow_manual: bool = True


@dataclasses.dataclass(frozen=True)
class Rejection:
    """Last rejected fix of an entity, kept so the UI can say why tracking stalled."""

    accuracy_m: float | None
    threshold_m: float
    rejected_at: datetime
    reason: str
