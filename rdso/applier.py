"""State Differ/Applier.

For every desired object: read the live one, create it when absent, update
it when its content differs and leave it alone otherwise. The outcome of each
step (created / updated / unchanged) is what the restart coordinator reads,
so a step that writes nothing must report ``UNCHANGED``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .errors import ReconcileError
from .events import EventRecorder
from .labels import SPEC_HASH_LABEL, pool_selector
from .resources import ManagedResource, ResourceKind, ResourceStore, SpecRecord

logger = logging.getLogger(__name__)

# Server-assigned service fields that an update has to carry over.
_SERVICE_KEPT_FIELDS = ("clusterIP", "clusterIPs", "ipFamilies", "ipFamilyPolicy")


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"

    @property
    def wrote(self) -> bool:
        return self is not Outcome.UNCHANGED


@dataclass
class Applied:
    resource: ManagedResource
    outcome: Outcome


@dataclass
class Pruned:
    deleted: list[str]
    failures: list[str]


def has_labels(live: dict[str, str], wanted: dict[str, str]) -> bool:
    return all(live.get(k) == v for k, v in wanted.items())


def config_matches(live: ManagedResource, desired: ManagedResource) -> bool:
    return live.body == desired.body and has_labels(live.labels, desired.labels)


def workload_matches(live: ManagedResource, desired: ManagedResource) -> bool:
    # Live workloads carry server-defaulted fields; only the content hash is compared.
    live_hash = live.labels.get(SPEC_HASH_LABEL)
    return live_hash is not None and live_hash == desired.labels.get(SPEC_HASH_LABEL) and has_labels(live.labels, desired.labels)


def _service_projection(body: dict[str, Any]) -> dict[str, Any]:
    ports = [
        {
            "name": p.get("name"),
            "protocol": p.get("protocol") or "TCP",
            "port": p.get("port"),
            "targetPort": p.get("targetPort"),
        }
        for p in body.get("ports") or []
    ]
    return {"selector": body.get("selector") or {}, "ports": sorted(ports, key=lambda p: str(p["name"]))}


def service_matches(live: ManagedResource, desired: ManagedResource) -> bool:
    return _service_projection(live.body) == _service_projection(desired.body) and has_labels(live.labels, desired.labels)


MATCHERS: dict[str, Callable[[ManagedResource, ManagedResource], bool]] = {
    "config": config_matches,
    "workload": workload_matches,
    "service": service_matches,
}


class Applier:
    def __init__(self, store: ResourceStore, events: EventRecorder):
        self.store = store
        self.events = events

    def apply(self, record: SpecRecord, desired: ManagedResource) -> Applied:
        live = self.store.get(desired.kind, desired.namespace, desired.name)
        if live is None:
            created = self.store.create(desired.copy())
            logger.info("Created: %s (%s)", desired.ref, record.identity)
            self.events.normal(record, "Create", f"{desired.kind.value} {desired.name} Created")
            return Applied(created, Outcome.CREATED)

        if MATCHERS[desired.kind.category](live, desired):
            return Applied(live, Outcome.UNCHANGED)

        updated = self.store.update(self._update_for(live, desired))
        logger.info("Updated: %s (%s)", desired.ref, record.identity)
        self.events.normal(record, "Update", f"{desired.kind.value} {desired.name} Updated")
        return Applied(updated, Outcome.UPDATED)

    def _update_for(self, live: ManagedResource, desired: ManagedResource) -> ManagedResource:
        write = desired.copy()
        # Writing against the version we read turns concurrent edits into conflicts.
        write.resource_version = live.resource_version
        write.labels = {**live.labels, **desired.labels}
        if desired.kind is ResourceKind.SERVICE:
            for key in _SERVICE_KEPT_FIELDS:
                if key in live.body and key not in write.body:
                    write.body[key] = live.body[key]
        return write

    def prune_pool_configs(self, record: SpecRecord, keep: set[str]) -> Pruned:
        """Delete pool configs of this instance that are no longer declared."""
        return self.prune(record, ResourceKind.CONFIG_MAP, pool_selector(record.identity.name), keep)

    def prune(
        self, record: SpecRecord, kind: ResourceKind, selector: dict[str, str], keep: set[str]
    ) -> Pruned:
        """Delete live objects matching ``selector`` whose names are not in ``keep``.

        Failures are collected rather than raised so that the caller can carry
        on with the resources that are still desired.
        """
        namespace = record.identity.namespace
        result = Pruned(deleted=[], failures=[])
        try:
            live = self.store.list(kind, namespace, selector)
        except ReconcileError as e:
            result.failures.append(f"list {kind.value}: {e}")
            return result

        for obj in sorted(live, key=lambda o: o.name):
            if obj.name in keep:
                continue
            try:
                self.store.delete(kind, namespace, obj.name)
            except ReconcileError as e:
                logger.warning("Delete failed: %s (%s): %s", obj.ref, record.identity, e)
                result.failures.append(f"delete {obj.ref}: {e}")
                continue
            logger.info("Deleted: %s (%s)", obj.ref, record.identity)
            self.events.normal(record, "Delete", f"{kind.value} {obj.name} Deleted")
            result.deleted.append(obj.ref)
        return result
