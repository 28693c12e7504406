"""In-memory stores.

Used by the ``render`` command for dry runs and by the test-suite. They keep
the semantics the reconciler relies on: resource versions that move on every
write, conflicts on stale writes and server-owned status that updates do not
touch.
"""
from __future__ import annotations

import copy
from collections import Counter
from threading import Lock
from typing import Any

from .api_models import InstanceStatus
from .errors import ConflictError, NotFoundError
from .resources import Identity, ManagedResource, ResourceKind, SpecRecord

Key = tuple[ResourceKind, str, str]


class MemoryResourceStore:
    def __init__(self) -> None:
        self.lock = Lock()
        self.objects: dict[Key, ManagedResource] = {}
        self.calls: Counter[tuple[str, ResourceKind]] = Counter()
        self.failures: dict[tuple[str, ResourceKind], Exception] = {}
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _check(self, verb: str, kind: ResourceKind) -> None:
        self.calls[(verb, kind)] += 1
        err = self.failures.get((verb, kind))
        if err is not None:
            raise err

    def fail(self, verb: str, kind: ResourceKind, error: Exception) -> None:
        """Make every ``verb`` call on ``kind`` raise ``error`` until ``heal``."""
        self.failures[(verb, kind)] = error

    def heal(self) -> None:
        self.failures.clear()

    def writes(self, kind: ResourceKind | None = None) -> int:
        return sum(
            n for (verb, k), n in self.calls.items() if verb in {"create", "update", "delete"} and kind in (None, k)
        )

    def get(self, kind: ResourceKind, namespace: str, name: str) -> ManagedResource | None:
        with self.lock:
            self._check("get", kind)
            obj = self.objects.get((kind, namespace, name))
            return obj.copy() if obj else None

    def create(self, resource: ManagedResource) -> ManagedResource:
        with self.lock:
            self._check("create", resource.kind)
            key = (resource.kind, resource.namespace, resource.name)
            if key in self.objects:
                raise ConflictError(f"{resource.ref} already exists")
            stored = resource.copy()
            stored.resource_version = self._next_version()
            stored.status = {}
            self.objects[key] = stored
            return stored.copy()

    def update(self, resource: ManagedResource) -> ManagedResource:
        with self.lock:
            self._check("update", resource.kind)
            key = (resource.kind, resource.namespace, resource.name)
            live = self.objects.get(key)
            if live is None:
                raise NotFoundError(f"{resource.ref} not found")
            if resource.resource_version and resource.resource_version != live.resource_version:
                raise ConflictError(f"{resource.ref} was modified (have {resource.resource_version}, live {live.resource_version})")
            stored = resource.copy()
            stored.resource_version = self._next_version()
            stored.status = copy.deepcopy(live.status)
            self.objects[key] = stored
            return stored.copy()

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        with self.lock:
            self._check("delete", kind)
            self.objects.pop((kind, namespace, name), None)

    def list(self, kind: ResourceKind, namespace: str, labels: dict[str, str]) -> list[ManagedResource]:
        with self.lock:
            self._check("list", kind)
            return [
                obj.copy()
                for (k, ns, _), obj in sorted(self.objects.items(), key=lambda kv: kv[0][2])
                if k is kind and ns == namespace and all(obj.labels.get(lk) == lv for lk, lv in labels.items())
            ]

    def set_status(self, kind: ResourceKind, namespace: str, name: str, status: dict[str, Any]) -> None:
        """Simulate the platform reporting workload status."""
        with self.lock:
            obj = self.objects[(kind, namespace, name)]
            obj.status = copy.deepcopy(status)
            obj.resource_version = self._next_version()

    def find(self, kind: ResourceKind, namespace: str, name: str) -> ManagedResource | None:
        """Read without counting a call."""
        with self.lock:
            obj = self.objects.get((kind, namespace, name))
            return obj.copy() if obj else None

    def all(self) -> list[ManagedResource]:
        with self.lock:
            return [obj.copy() for _, obj in sorted(self.objects.items(), key=lambda kv: (kv[0][0].value, kv[0][2]))]


class MemorySpecificationStore:
    def __init__(self) -> None:
        self.lock = Lock()
        self.records: dict[Identity, SpecRecord] = {}
        self.status_writes = 0
        self.status_failure: Exception | None = None
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def put(self, name: str, spec: dict[str, Any], namespace: str = "default") -> SpecRecord:
        """Create the instance, or replace its spec and bump its generation."""
        identity = Identity(namespace=namespace, name=name)
        with self.lock:
            current = self.records.get(identity)
            record = SpecRecord(
                identity=identity,
                uid=current.uid if current else f"uid-{namespace}-{name}",
                generation=current.generation + 1 if current else 1,
                resource_version=self._next_version(),
                document=copy.deepcopy(spec),
                status=current.status.model_copy(deep=True) if current else InstanceStatus(),
            )
            self.records[identity] = record
            return copy.deepcopy(record)

    def remove(self, identity: Identity) -> None:
        with self.lock:
            self.records.pop(identity, None)

    def get(self, identity: Identity) -> SpecRecord | None:
        with self.lock:
            record = self.records.get(identity)
            return copy.deepcopy(record) if record else None

    def list(self) -> list[SpecRecord]:
        with self.lock:
            return [copy.deepcopy(r) for _, r in sorted(self.records.items(), key=lambda kv: str(kv[0]))]

    def update_status(self, record: SpecRecord, status: InstanceStatus) -> SpecRecord:
        with self.lock:
            if self.status_failure is not None:
                raise self.status_failure
            live = self.records.get(record.identity)
            if live is None:
                raise NotFoundError(f"{record.identity} not found")
            if record.resource_version != live.resource_version:
                raise ConflictError(f"{record.identity} was modified")
            live.status = status.model_copy(deep=True)
            live.resource_version = self._next_version()
            self.status_writes += 1
            return copy.deepcopy(live)


class RecordingEventSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[tuple[str, str, str, str]] = []  # (identity, type, reason, message)

    def emit(self, record: SpecRecord, event_type: str, reason: str, message: str) -> None:
        if self.fail:
            raise RuntimeError("event sink unavailable")
        self.events.append((str(record.identity), event_type, reason, message))

    def reasons(self) -> list[str]:
        return [e[2] for e in self.events]
