from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from pydantic import ValidationError

from .api_models import InstanceStatus, RestDataServicesSpec
from .errors import ConfigurationError

CRD_GROUP = "database.oracle.com"
CRD_VERSION = "v1"
CRD_KIND = "RestDataServices"
CRD_PLURAL = "restdataservices"


class ResourceKind(str, Enum):
    CONFIG_MAP = "ConfigMap"
    DEPLOYMENT = "Deployment"
    DAEMON_SET = "DaemonSet"
    STATEFUL_SET = "StatefulSet"
    SERVICE = "Service"

    @property
    def category(self) -> str:
        if self is ResourceKind.CONFIG_MAP:
            return "config"
        if self is ResourceKind.SERVICE:
            return "service"
        return "workload"

    @property
    def api_version(self) -> str:
        return "v1" if self.category != "workload" else "apps/v1"

    @property
    def body_field(self) -> str:
        return "data" if self is ResourceKind.CONFIG_MAP else "spec"


@dataclass(frozen=True)
class Identity:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ManagedResource:
    """A cluster object owned by one specification instance.

    ``body`` is the content payload (``data`` for config objects, ``spec``
    otherwise). ``status`` is whatever the server reported and is never written.
    """

    kind: ResourceKind
    namespace: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    owner: dict[str, Any] | None = None
    resource_version: str | None = None
    status: dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> str:
        return f"{self.kind.value}/{self.name}"

    def copy(self) -> "ManagedResource":
        return copy.deepcopy(self)

    def to_manifest(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
        }
        if self.owner:
            metadata["ownerReferences"] = [dict(self.owner)]
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": self.kind.api_version,
            "kind": self.kind.value,
            "metadata": metadata,
            self.kind.body_field: copy.deepcopy(self.body),
        }

    @classmethod
    def from_manifest(cls, kind: ResourceKind, manifest: dict[str, Any]) -> "ManagedResource":
        metadata = manifest.get("metadata") or {}
        owners = metadata.get("ownerReferences") or []
        return cls(
            kind=kind,
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            labels=dict(metadata.get("labels") or {}),
            body=copy.deepcopy(manifest.get(kind.body_field) or {}),
            owner=dict(owners[0]) if owners else None,
            resource_version=metadata.get("resourceVersion"),
            status=copy.deepcopy(manifest.get("status") or {}),
        )


@dataclass
class SpecRecord:
    """One RestDataServices object as read from the specification store."""

    identity: Identity
    uid: str
    generation: int
    resource_version: str | None
    document: dict[str, Any]
    status: InstanceStatus = field(default_factory=InstanceStatus)

    def parse_spec(self) -> RestDataServicesSpec:
        try:
            return RestDataServicesSpec.model_validate(self.document)
        except ValidationError as e:
            raise ConfigurationError(f"invalid specification: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "SpecRecord":
        metadata = doc.get("metadata") or {}
        try:
            status = InstanceStatus.model_validate(doc.get("status") or {})
        except ValidationError:
            status = InstanceStatus()
        return cls(
            identity=Identity(namespace=metadata.get("namespace", ""), name=metadata.get("name", "")),
            uid=metadata.get("uid", ""),
            generation=int(metadata.get("generation") or 0),
            resource_version=metadata.get("resourceVersion"),
            document=copy.deepcopy(doc.get("spec") or {}),
            status=status,
        )


class ResourceStore(Protocol):
    def get(self, kind: ResourceKind, namespace: str, name: str) -> ManagedResource | None: ...

    def create(self, resource: ManagedResource) -> ManagedResource: ...

    def update(self, resource: ManagedResource) -> ManagedResource: ...

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None: ...

    def list(self, kind: ResourceKind, namespace: str, labels: dict[str, str]) -> list[ManagedResource]: ...


class SpecificationStore(Protocol):
    def get(self, identity: Identity) -> SpecRecord | None: ...

    def list(self) -> list[SpecRecord]: ...

    def update_status(self, record: SpecRecord, status: InstanceStatus) -> SpecRecord: ...


class EventSink(Protocol):
    def emit(self, record: SpecRecord, event_type: str, reason: str, message: str) -> None: ...
