from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from .reconciler import PassOutcome, PassResult
from .resources import Identity


@dataclass
class Backoff:
    base_s: float
    max_s: float

    def delay(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self.max_s, self.base_s * (2 ** (failures - 1)))


class RuntimeState:
    """In-memory dispatch state shared by the loop, the workers and the API.

    At most one pass per identity is in flight at a time; different
    identities never share mutable state beyond this bookkeeping.
    """

    def __init__(
        self,
        backoff: Backoff | None = None,
        clock: Callable[[], float] = time.monotonic,
        resync_s: float = 0.0,
    ) -> None:
        self.lock = Lock()
        self.backoff = backoff or Backoff(base_s=5, max_s=300)
        self.clock = clock
        self.resync_s = resync_s
        self.in_flight: set[Identity] = set()
        self.last_results: dict[Identity, PassResult] = {}
        self.fail_counts: dict[Identity, int] = {}  # identity -> consecutive retryable failures
        self.not_before: dict[Identity, float] = {}  # identity -> monotonic deadline
        self.fatal_generation: dict[Identity, int] = {}  # identity -> generation that failed fatally
        self.synced: dict[Identity, tuple[int | None, float]] = {}  # identity -> (generation, next resync)

    def try_acquire(self, identity: Identity) -> bool:
        with self.lock:
            if identity in self.in_flight:
                return False
            self.in_flight.add(identity)
            return True

    def release(self, identity: Identity) -> None:
        with self.lock:
            self.in_flight.discard(identity)

    def busy(self, identity: Identity) -> bool:
        with self.lock:
            return identity in self.in_flight

    def due(self, identity: Identity, generation: int) -> bool:
        """Whether the periodic loop should dispatch a pass for ``identity`` now."""
        with self.lock:
            failed_gen = self.fatal_generation.get(identity)
            if failed_gen is not None:
                if failed_gen == generation:
                    return False
                del self.fatal_generation[identity]
            now = self.clock()
            if now < self.not_before.get(identity, 0.0):
                return False
            synced = self.synced.get(identity)
            return synced is None or synced[0] != generation or now >= synced[1]

    def record(self, result: PassResult) -> float:
        """Store the result of a finished pass; returns the retry delay (0 when none)."""
        identity = result.identity
        with self.lock:
            if result.outcome is PassOutcome.DELETED:
                self.last_results.pop(identity, None)
                self.fail_counts.pop(identity, None)
                self.not_before.pop(identity, None)
                self.fatal_generation.pop(identity, None)
                self.synced.pop(identity, None)
                return 0.0

            self.last_results[identity] = result
            if result.outcome.retryable:
                self.fail_counts[identity] = self.fail_counts.get(identity, 0) + 1
                delay = self.backoff.delay(self.fail_counts[identity])
                self.not_before[identity] = self.clock() + delay
                self.synced.pop(identity, None)
                return delay

            self.fail_counts.pop(identity, None)
            self.not_before.pop(identity, None)
            if result.outcome is PassOutcome.FATAL and result.generation is not None:
                self.fatal_generation[identity] = result.generation
                self.synced.pop(identity, None)
            else:
                self.fatal_generation.pop(identity, None)
                self.synced[identity] = (result.generation, self.clock() + self.resync_s)
            return 0.0

    def last_result(self, identity: Identity) -> PassResult | None:
        with self.lock:
            return self.last_results.get(identity)

    def failures(self, identity: Identity) -> int:
        with self.lock:
            return self.fail_counts.get(identity, 0)

    def forget_missing(self, present: set[Identity]) -> None:
        with self.lock:
            for d in (self.last_results, self.fail_counts, self.not_before, self.fatal_generation, self.synced):
                for identity in [i for i in d if i not in present]:
                    del d[identity]
