from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from . import db
from .api_models import PassResultModel, RestDataServicesSpec
from .applier import Applied, Applier, Outcome
from .compiler import compile_spec
from .errors import CleanupError, ConfigurationError, InvalidResourceError, ReconcileError, TransientStoreError
from .events import EventRecorder
from .resources import Identity, ResourceStore, SpecificationStore, SpecRecord
from .restarts import RestartCoordinator, utc_now
from .status import StatusMachine, initial_status
from .switchboard import Switchboard
from .workloads import shape_for

logger = logging.getLogger(__name__)


class PassOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"  # desired state applied, cleanup incomplete
    RETRY = "retry"
    FATAL = "fatal"
    DELETED = "deleted"

    @property
    def retryable(self) -> bool:
        return self in {PassOutcome.RETRY, PassOutcome.DEGRADED}


@dataclass
class PassContext:
    """State shared between the stages of one pass; never outlives it."""

    record: SpecRecord
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    cleanup_failures: list[str] = field(default_factory=list)
    stale: bool = False
    restart_signal: bool = False
    restarted: bool = False

    def track(self, applied: Applied) -> Outcome:
        self.outcomes[applied.resource.ref] = applied.outcome
        return applied.outcome

    def count(self, outcome: Outcome) -> int:
        return sum(1 for o in self.outcomes.values() if o is outcome)


@dataclass
class PassResult:
    identity: Identity
    outcome: PassOutcome
    created: int = 0
    updated: int = 0
    deleted: int = 0
    restarted: bool = False
    message: str = ""
    generation: int | None = None
    duration_ms: float = 0.0
    finished_at: str = ""

    def to_model(self) -> PassResultModel:
        return PassResultModel(
            namespace=self.identity.namespace,
            name=self.identity.name,
            outcome=self.outcome.value,
            created=self.created,
            updated=self.updated,
            deleted=self.deleted,
            restarted=self.restarted,
            message=self.message,
            finished_at=self.finished_at,
        )


class Reconciler:
    """Runs one reconciliation pass for one specification instance.

    Stages run in a fixed order (configs, workload, service, status) because
    later stages read state the earlier ones may have just changed. A pass
    may stop half way on a store error; the next pass repairs whatever was
    left behind since every stage is idempotent.
    """

    def __init__(
        self,
        specs: SpecificationStore,
        store: ResourceStore,
        events: EventRecorder | None = None,
        clock: Callable[[], datetime] = utc_now,
        journal: bool = True,
    ):
        self.specs = specs
        self.journal = journal
        self.store = store
        self.events = events or EventRecorder()
        self.applier = Applier(store, self.events)
        self.switchboard = Switchboard(self.applier)
        self.restarts = RestartCoordinator(store, self.events, clock)
        self.status = StatusMachine(store, specs, lambda: clock().strftime("%Y-%m-%dT%H:%M:%SZ"))

    def reconcile(self, identity: Identity) -> PassResult:
        t0 = time.monotonic()
        record = self.specs.get(identity)
        if record is None:
            logger.info("Resource deleted: %s", identity)
            result = PassResult(identity=identity, outcome=PassOutcome.DELETED, message="Resource deleted")
            return self._finish(result, t0)

        ctx = PassContext(record=record)
        try:
            result = self._run(ctx)
        except (ConfigurationError, InvalidResourceError) as e:
            result = self._fatal(ctx, e)
        except TransientStoreError as e:
            result = self._retry(ctx, e)
        return self._finish(result, t0)

    def _run(self, ctx: PassContext) -> PassResult:
        if not ctx.record.status.conditions:
            ctx.record = self.specs.update_status(ctx.record, initial_status(ctx.record.status))
        record = ctx.record
        spec = record.parse_spec()
        desired = compile_spec(record, spec)

        # Configs, then removal of pools that are no longer declared.
        config_outcomes = [ctx.track(self.applier.apply(record, cfg)) for cfg in desired.configs]
        pruned = self.applier.prune_pool_configs(record, keep=desired.pool_config_names)
        ctx.deleted += pruned.deleted
        ctx.cleanup_failures += pruned.failures

        ctx.stale = RestartCoordinator.pods_stale(config_outcomes, pending=record.status.restart_required)
        ctx.restart_signal = RestartCoordinator.signal(ctx.stale, spec.auto_restart)
        if ctx.stale and not record.status.restart_required:
            # Recorded before touching the workload so a later pass still recycles the pods.
            pending = record.status.model_copy(deep=True)
            pending.restart_required = True
            ctx.record = record = self.status.write(record, pending)

        # Workload: selected shape, abandoned shapes, then at most one recycle.
        switched = self.switchboard.apply(record, desired.shape, desired.workload)
        ctx.track(switched.applied)
        ctx.deleted += switched.removed
        ctx.cleanup_failures += switched.failures
        settled = self.restarts.settle(record, desired.shape, switched.applied, ctx.stale, ctx.restart_signal)
        ctx.restarted = settled.restarted
        ctx.stale = settled.still_required
        ctx.restart_signal = False

        ctx.track(self.applier.apply(record, desired.service))

        ready, wanted = self.status.observe(record, desired.shape)
        cleanup = CleanupError(ctx.cleanup_failures) if ctx.cleanup_failures else None
        cleanup_message = str(cleanup) if cleanup else None
        status = self.status.compute(
            record, spec, ready, wanted, restart_required=settled.still_required, last_error=cleanup_message
        )
        ctx.record = self.status.write(record, status)

        if cleanup is not None:
            self.events.warning(record, "CleanupFailed", str(cleanup))
            return self._result(ctx, PassOutcome.DEGRADED, f"cleanup incomplete: {cleanup}")
        return self._result(ctx, PassOutcome.SUCCEEDED, "reconciled")

    def _fatal(self, ctx: PassContext, error: ReconcileError) -> PassResult:
        record = ctx.record
        message = f"{type(error).__name__}: {error}"
        logger.error("Reconcile failed for %s: %s", record.identity, message)
        self.events.warning(record, "ReconcileFailed", message)

        spec: RestDataServicesSpec | None
        try:
            spec = record.parse_spec()
        except ConfigurationError:
            spec = None
        ready, wanted = record.status.ready_replicas, record.status.desired_replicas
        try:
            if spec is not None:
                ready, wanted = self.status.observe(record, shape_for(spec.workload_type))
            status = self.status.compute(
                record,
                spec,
                ready,
                wanted,
                restart_required=record.status.restart_required,
                degraded_reason=message,
                last_error=message,
            )
            ctx.record = self.status.write(record, status)
        except TransientStoreError as e:
            # Without a recorded Degraded status the failure would go unnoticed; try again.
            logger.warning("Could not record Degraded status for %s: %s", record.identity, e)
            return self._result(ctx, PassOutcome.RETRY, f"{message} (status not recorded: {e})")
        return self._result(ctx, PassOutcome.FATAL, message)

    def _retry(self, ctx: PassContext, error: TransientStoreError) -> PassResult:
        record = ctx.record
        message = f"{type(error).__name__}: {error}"
        logger.warning("Reconcile of %s will be retried: %s", record.identity, message)
        self.events.warning(record, "RetryScheduled", message)
        status = record.status.model_copy(deep=True)
        status.last_error = message
        status.restart_required = status.restart_required or ctx.stale
        try:
            ctx.record = self.status.write(record, status)
        except ReconcileError as e:
            logger.warning("Could not record error status for %s: %s", record.identity, e)
        return self._result(ctx, PassOutcome.RETRY, message)

    def _result(self, ctx: PassContext, outcome: PassOutcome, message: str) -> PassResult:
        return PassResult(
            identity=ctx.record.identity,
            outcome=outcome,
            created=ctx.count(Outcome.CREATED),
            updated=ctx.count(Outcome.UPDATED),
            deleted=len(ctx.deleted),
            restarted=ctx.restarted,
            message=message,
            generation=ctx.record.generation,
        )

    def _finish(self, result: PassResult, t0: float) -> PassResult:
        result.duration_ms = round((time.monotonic() - t0) * 1000.0, 2)
        result.finished_at = db.utc_now()
        if not self.journal:
            return result
        try:
            db.record_pass(
                result.identity.namespace,
                result.identity.name,
                result.outcome.value,
                created=result.created,
                updated=result.updated,
                deleted=result.deleted,
                restarted=result.restarted,
                duration_ms=result.duration_ms,
                message=result.message,
            )
        except Exception as e:
            logger.warning("Journal write failed for %s: %s: %s", result.identity, type(e).__name__, e)
        return result
