"""Reconciled tracking state published by the coordinator."""
from __future__ import annotations

import dataclasses
from datetime import datetime

from .models import Fix, Rejection, TrackingStatus


@dataclasses.dataclass(frozen=True)
class TrackerData:
    """
    Snapshot shared with entities and query accessors.

    The coordinator swaps in a new instance on every merge, so a reader
    holding a reference keeps seeing the state from before the merge.
    """

    # entity_id → reconciled path, ordered by captured_at
    paths: dict[str, tuple[Fix, ...]] = dataclasses.field(default_factory=dict)

    # entity_id → max captured_at seen from the remote store
    last_known: dict[str, datetime] = dataclasses.field(default_factory=dict)

    # entity_id → why the path looks the way it does
    status: dict[str, TrackingStatus] = dataclasses.field(default_factory=dict)

    # entity_id → last fix rejected by the accuracy policy
    rejections: dict[str, Rejection] = dataclasses.field(default_factory=dict)

    # entity currently observed by the sync scheduler
    observed_entity: str | None = None

    def path(self, entity_id: str) -> tuple[Fix, ...]:
        return self.paths.get(entity_id, ())

    def latest(self, entity_id: str) -> Fix | None:
        path = self.paths.get(entity_id)
        return path[-1] if path else None

    def status_of(self, entity_id: str) -> TrackingStatus:
        return self.status.get(entity_id, TrackingStatus.IDLE)
