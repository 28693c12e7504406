"""Change-Propagation Coordinator.

Mounted config objects can change without the workload's pod template
changing, in which case the platform keeps the old pods running. The
coordinator closes that gap: when configs were written in this pass (or a
restart is still pending from an earlier one) and the instance allows
automatic restarts, it stamps the pod template once to roll the pods.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from .applier import Applied, Outcome
from .events import EventRecorder
from .labels import RESTARTED_AT_LABEL
from .resources import ResourceStore, SpecRecord
from .workloads import WorkloadShape

logger = logging.getLogger(__name__)

STAMP_FORMAT = "%Y%m%dT%H%M%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_stamp(now: datetime, current: str | None) -> str:
    """Timestamp label value that always differs from ``current``."""
    stamp = now.strftime(STAMP_FORMAT)
    if current is None or not current.startswith(stamp):
        return stamp
    suffix = current[len(stamp):].lstrip("-")
    n = int(suffix) if suffix.isdigit() else 0
    return f"{stamp}-{n + 1}"


@dataclass
class Settled:
    restarted: bool
    still_required: bool


class RestartCoordinator:
    def __init__(self, store: ResourceStore, events: EventRecorder, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.events = events
        self.clock = clock

    @staticmethod
    def pods_stale(config_outcomes: Iterable[Outcome], pending: bool) -> bool:
        """True when running pods may hold configuration older than the live config objects."""
        return pending or any(o.wrote for o in config_outcomes)

    @staticmethod
    def signal(stale: bool, auto_restart: bool) -> bool:
        return stale and auto_restart

    def settle(
        self, record: SpecRecord, shape: WorkloadShape, workload: Applied, stale: bool, signal: bool
    ) -> Settled:
        """Recycle the pods at most once for this pass.

        A created or updated workload already starts pods from the current
        configuration, which consumes the signal without another write.
        """
        if not stale or workload.outcome is not Outcome.UNCHANGED:
            return Settled(restarted=False, still_required=False)
        if not signal:
            return Settled(restarted=False, still_required=True)

        live = workload.resource.copy()
        labels = shape.template_labels(live)
        labels[RESTARTED_AT_LABEL] = next_stamp(self.clock(), labels.get(RESTARTED_AT_LABEL))
        self.store.update(live)
        logger.info("Cycling: %s (%s)", live.ref, record.identity)
        self.events.normal(record, "Restart", f"Restarted {shape.kind.value}")
        return Settled(restarted=True, still_required=False)
