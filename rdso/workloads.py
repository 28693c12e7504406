"""The three workload shapes a gateway instance can run as.

Each shape knows how to build its spec, where its pod template labels live
and which status counters describe readiness, so callers never have to
inspect which concrete kind they are holding.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any

from .api_models import RestDataServicesSpec, WorkloadType
from .resources import ManagedResource, ResourceKind


def spec_hash(body: dict[str, Any]) -> str:
    """Short change-detection fingerprint of a workload spec (16 hex chars)."""
    raw = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(raw).digest()[:8].hex()


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class WorkloadShape:
    kind: ResourceKind
    workload_type: WorkloadType

    def build_spec(
        self, spec: RestDataServicesSpec, selector: dict[str, str], template: dict[str, Any], service: str
    ) -> dict[str, Any]:
        raise NotImplementedError

    def counters(self, live: ManagedResource) -> tuple[int, int]:
        """Return (ready, desired) replica counters of a live object."""
        raise NotImplementedError

    def template_labels(self, resource: ManagedResource) -> dict[str, str]:
        """Pod template labels of ``resource``; the returned dict is live, edits stick."""
        template = resource.body.setdefault("template", {})
        metadata = template.setdefault("metadata", {})
        return metadata.setdefault("labels", {})


class DeploymentShape(WorkloadShape):
    kind = ResourceKind.DEPLOYMENT
    workload_type = WorkloadType.DEPLOYMENT

    def build_spec(self, spec, selector, template, service):
        return {"replicas": spec.replicas, "selector": {"matchLabels": selector}, "template": template}

    def counters(self, live):
        desired = live.body.get("replicas")
        if desired is None:
            desired = live.status.get("replicas")
        return _int(live.status.get("readyReplicas")), _int(desired)


class DaemonSetShape(WorkloadShape):
    kind = ResourceKind.DAEMON_SET
    workload_type = WorkloadType.DAEMON_SET

    def build_spec(self, spec, selector, template, service):
        # One pod per node: no replica count.
        return {"selector": {"matchLabels": selector}, "template": template}

    def counters(self, live):
        return _int(live.status.get("numberReady")), _int(live.status.get("desiredNumberScheduled"))


class StatefulSetShape(WorkloadShape):
    kind = ResourceKind.STATEFUL_SET
    workload_type = WorkloadType.STATEFUL_SET

    def build_spec(self, spec, selector, template, service):
        return {
            "replicas": spec.replicas,
            "serviceName": service,
            "selector": {"matchLabels": selector},
            "template": template,
        }

    def counters(self, live):
        desired = live.body.get("replicas")
        if desired is None:
            desired = live.status.get("replicas")
        return _int(live.status.get("readyReplicas")), _int(desired)


SHAPES: dict[WorkloadType, WorkloadShape] = {
    WorkloadType.DEPLOYMENT: DeploymentShape(),
    WorkloadType.DAEMON_SET: DaemonSetShape(),
    WorkloadType.STATEFUL_SET: StatefulSetShape(),
}


def shape_for(workload_type: WorkloadType) -> WorkloadShape:
    return SHAPES.get(workload_type, SHAPES[WorkloadType.DEPLOYMENT])


def other_shapes(active: WorkloadShape) -> list[WorkloadShape]:
    return [s for s in SHAPES.values() if s.kind is not active.kind]
