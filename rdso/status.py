"""Status State Machine.

The status is recomputed from scratch on every pass from the active
workload's readiness counters and whatever terminal failure earlier stages
recorded. It is written back only when it differs from what is stored, so a
converged instance produces no status writes either.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from .api_models import Condition, InstanceStatus, RestDataServicesSpec, StatusState
from .resources import ResourceStore, SpecificationStore, SpecRecord
from .workloads import WorkloadShape

logger = logging.getLogger(__name__)

AVAILABLE = "Available"
PROGRESSING = "Progressing"
DEGRADED = "Degraded"
RESTART_REQUIRED = "RestartRequired"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def derive(ready: int, desired: int) -> tuple[StatusState, str]:
    """Map readiness counters to (state, workload status).

    Nothing ready is "Preparing" even when nothing is desired: readiness has
    to be observed before an instance counts as available.
    """
    if ready <= 0:
        return StatusState.PROGRESSING, "Preparing"
    if ready >= desired:
        return StatusState.AVAILABLE, "Healthy"
    return StatusState.PROGRESSING, "Progressing"


def set_condition(
    conditions: list[Condition], ctype: str, status: str, reason: str, message: str, now: str
) -> list[Condition]:
    """Upsert a condition; its transition time only moves when its status flips."""
    out: list[Condition] = []
    found = False
    for c in conditions:
        if c.type != ctype:
            out.append(c)
            continue
        found = True
        changed = c.status != status
        out.append(
            Condition(
                type=ctype,
                status=status,
                reason=reason,
                message=message,
                last_transition_time=now if changed else c.last_transition_time,
            )
        )
    if not found:
        out.append(Condition(type=ctype, status=status, reason=reason, message=message, last_transition_time=now))
    return out


def initial_status(previous: InstanceStatus, clock: Callable[[], str] = _now) -> InstanceStatus:
    status = previous.model_copy(deep=True)
    status.state = StatusState.UNKNOWN
    status.conditions = set_condition([], AVAILABLE, "Unknown", "Reconciling", "Starting reconciliation", clock())
    return status


class StatusMachine:
    def __init__(self, store: ResourceStore, specs: SpecificationStore, clock: Callable[[], str] = _now):
        self.store = store
        self.specs = specs
        self.clock = clock

    def observe(self, record: SpecRecord, shape: WorkloadShape) -> tuple[int, int]:
        """Readiness counters of the active workload; an absent workload counts as 0/0."""
        live = self.store.get(shape.kind, record.identity.namespace, record.identity.name)
        if live is None:
            logger.info("%s not ready: %s does not exist yet", record.identity, shape.kind.value)
            return 0, 0
        return shape.counters(live)

    def compute(
        self,
        record: SpecRecord,
        spec: RestDataServicesSpec | None,
        ready: int,
        desired: int,
        restart_required: bool = False,
        degraded_reason: str | None = None,
        last_error: str | None = None,
    ) -> InstanceStatus:
        now = self.clock()
        status = record.status.model_copy(deep=True)
        state, workload_status = derive(ready, desired)
        if degraded_reason is not None:
            state = StatusState.DEGRADED

        status.state = state
        status.workload_status = workload_status
        status.ready_replicas = ready
        status.desired_replicas = desired
        status.restart_required = restart_required
        status.last_error = last_error
        status.observed_generation = record.generation
        if spec is not None:
            status.workload_type = spec.workload_type.value
            status.ords_version = spec.image_tag
            status.http_port = spec.global_settings.http_port
            status.https_port = spec.global_settings.https_port

        if state is StatusState.DEGRADED:
            status.message = degraded_reason
        elif restart_required:
            status.message = "Configurations have changed; restart pending"
        elif state is StatusState.AVAILABLE:
            status.message = "Workload in Sync"
        else:
            status.message = f"{ready}/{desired} replicas ready"

        conditions = status.conditions
        conditions = set_condition(
            conditions,
            AVAILABLE,
            "True" if state is StatusState.AVAILABLE else "False",
            "Available" if state is StatusState.AVAILABLE else workload_status,
            f"{ready}/{desired} replicas ready",
            now,
        )
        conditions = set_condition(
            conditions,
            PROGRESSING,
            "True" if state is StatusState.PROGRESSING else "False",
            workload_status,
            f"{ready}/{desired} replicas ready",
            now,
        )
        conditions = set_condition(
            conditions,
            DEGRADED,
            "True" if state is StatusState.DEGRADED else "False",
            "ReconcileFailed" if state is StatusState.DEGRADED else "AsExpected",
            degraded_reason or "",
            now,
        )
        conditions = set_condition(
            conditions,
            RESTART_REQUIRED,
            "True" if restart_required else "False",
            "Unsynced" if restart_required else "InSync",
            "Configurations have changed" if restart_required else "",
            now,
        )
        status.conditions = conditions
        return status

    def write(self, record: SpecRecord, status: InstanceStatus) -> SpecRecord:
        if status.to_document() == record.status.to_document():
            return record
        return self.specs.update_status(record, status)
