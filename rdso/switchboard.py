from __future__ import annotations

from dataclasses import dataclass

from .applier import Applied, Applier
from .labels import instance_labels
from .resources import ManagedResource, SpecRecord
from .workloads import WorkloadShape, other_shapes


@dataclass
class Switched:
    applied: Applied
    removed: list[str]
    failures: list[str]


class Switchboard:
    """Keeps exactly one workload shape alive per instance.

    The selected shape is applied first; only then are the objects of the
    two other shapes removed, so a failed cleanup never blocks the cutover.
    """

    def __init__(self, applier: Applier):
        self.applier = applier

    def apply(self, record: SpecRecord, shape: WorkloadShape, desired: ManagedResource) -> Switched:
        applied = self.applier.apply(record, desired)
        removed: list[str] = []
        failures: list[str] = []
        selector = instance_labels(record.identity.name)
        for other in other_shapes(shape):
            pruned = self.applier.prune(record, other.kind, selector, keep=set())
            removed += pruned.deleted
            failures += pruned.failures
        return Switched(applied=applied, removed=removed, failures=failures)
