from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event, Thread

from . import db
from .events import EventRecorder
from .reconciler import PassOutcome, PassResult, Reconciler
from .resources import Identity, ResourceStore, SpecificationStore
from .runtime import Backoff, RuntimeState
from .settings import Settings, settings

logger = logging.getLogger(__name__)


class Busy(Exception):
    """A pass for this identity is already running."""


class Controller:
    """Continuously reconciles every RestDataServices instance.

    A background thread lists all specifications every resync interval and
    hands each one that is due to a worker pool. Passes for different
    instances run concurrently; passes for the same instance never overlap.
    """

    def __init__(
        self,
        specs: SpecificationStore,
        store: ResourceStore,
        events: EventRecorder | None = None,
        runtime: RuntimeState | None = None,
        config: Settings = settings,
    ):
        self.specs = specs
        self.config = config
        self.runtime = runtime or RuntimeState(
            Backoff(base_s=config.retry_base_s, max_s=config.retry_max_s), resync_s=config.resync_interval_s
        )
        self.reconciler = Reconciler(specs, store, events)
        self._stop = Event()
        self._thr: Thread | None = None
        self._pool: ThreadPoolExecutor | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._pool = ThreadPoolExecutor(max_workers=max(1, self.config.workers), thread_name_prefix="rdso-worker")
        self._thr = Thread(target=self._loop, name="rdso-dispatch", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thr:
            self._thr.join(timeout=5)
        if self._pool:
            self._pool.shutdown(wait=True)
            self._pool = None

    def _loop(self) -> None:
        db.log_event("INFO", "Controller started")
        logger.info("Controller started (resync every %ss, %s workers)", self.config.resync_interval_s, self.config.workers)
        while not self._stop.is_set():
            try:
                self._tick()
            except Exception as e:
                logger.exception("Controller tick failed")
                db.log_event("ERROR", f"Controller tick failed: {type(e).__name__}: {e}")
            # Ticks run more often than the resync interval; RuntimeState decides what is due.
            self._stop.wait(max(1, min(self.config.resync_interval_s, self.config.retry_base_s)))
        db.log_event("INFO", "Controller stopped")

    def _tick(self) -> list[Future]:
        records = self.specs.list()
        self.runtime.forget_missing({r.identity for r in records})
        submitted: list[Future] = []
        for record in records:
            identity = record.identity
            if not self.runtime.due(identity, record.generation) or not self.runtime.try_acquire(identity):
                continue
            if self._pool is None:
                self.runtime.release(identity)
                break
            submitted.append(self._pool.submit(self._pass, identity))
        return submitted

    def _pass(self, identity: Identity) -> PassResult:
        """Run one pass for an identity that has already been acquired."""
        try:
            try:
                result = self.reconciler.reconcile(identity)
            except Exception as e:
                logger.exception("Unexpected failure reconciling %s", identity)
                db.log_event("ERROR", f"Pass crashed: {type(e).__name__}: {e}", namespace=identity.namespace, instance=identity.name)
                result = PassResult(identity=identity, outcome=PassOutcome.RETRY, message=f"{type(e).__name__}: {e}")
            delay = self.runtime.record(result)
            if delay:
                logger.info("Retrying %s in %.0fs: %s", identity, delay, result.message)
            return result
        finally:
            self.runtime.release(identity)

    def reconcile_now(self, identity: Identity) -> PassResult:
        """Run a pass synchronously on the caller's thread; raises Busy when one is in flight."""
        if not self.runtime.try_acquire(identity):
            raise Busy(str(identity))
        result = self._pass(identity)
        logger.info("Manual pass for %s finished in %.0fms: %s", identity, result.duration_ms, result.outcome.value)
        return result

    def list_instances(self) -> list[tuple[Identity, dict, PassResult | None]]:
        out = []
        for record in self.specs.list():
            out.append((record.identity, record.status.to_document(), self.runtime.last_result(record.identity)))
        return out

    def instance(self, identity: Identity) -> tuple[Identity, dict, PassResult | None] | None:
        record = self.specs.get(identity)
        if record is None:
            return None
        return identity, record.status.to_document(), self.runtime.last_result(identity)
