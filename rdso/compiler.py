"""Resource Definition Compiler.

``compile_spec`` maps one specification to the full set of objects it should
own. It performs no I/O and is deterministic: identical specifications give
byte-identical documents, which is what lets the applier use plain content
equality to decide whether a write is needed.
"""
from __future__ import annotations

from dataclasses import dataclass

from . import labels
from .api_models import RestDataServicesSpec
from .errors import ConfigurationError
from .podspec import HTTP_PORT_NAME, HTTPS_PORT_NAME, INIT_SCRIPT, INIT_SCRIPT_FILE, pod_template
from .properties import GLOBAL_DOCUMENT, POOL_DOCUMENT, render_global, render_pool
from .resources import ManagedResource, ResourceKind, SpecRecord
from .workloads import WorkloadShape, shape_for, spec_hash

SERVICE_HTTP_PORT_NAME = "svc-http-port"
SERVICE_HTTPS_PORT_NAME = "svc-https-port"


@dataclass
class DesiredState:
    init_config: ManagedResource
    global_config: ManagedResource
    pool_configs: list[ManagedResource]
    workload: ManagedResource
    service: ManagedResource
    shape: WorkloadShape

    @property
    def configs(self) -> list[ManagedResource]:
        return [self.init_config, self.global_config, *self.pool_configs]

    @property
    def pool_config_names(self) -> set[str]:
        return {c.name for c in self.pool_configs}

    def resources(self) -> list[ManagedResource]:
        return [*self.configs, self.workload, self.service]


def check_pools(spec: RestDataServicesSpec) -> None:
    """Pool names must be valid and unique once case-folded."""
    seen: dict[str, str] = {}
    for pool in spec.pool_settings:
        labels.validate_name(pool.key, "pool name")
        if pool.key in seen:
            raise ConfigurationError(
                f"poolName: {pool.pool_name} is not unique (collides with {seen[pool.key]})"
            )
        seen[pool.key] = pool.pool_name


def _config(record: SpecRecord, name: str, role: str, data: dict[str, str]) -> ManagedResource:
    return ManagedResource(
        kind=ResourceKind.CONFIG_MAP,
        namespace=record.identity.namespace,
        name=name,
        labels=labels.object_labels(record.identity.name, role),
        body=data,
        owner=labels.owner_reference(record),
    )


def _workload(record: SpecRecord, spec: RestDataServicesSpec, shape: WorkloadShape) -> ManagedResource:
    instance = record.identity.name
    body = shape.build_spec(
        spec,
        selector=labels.instance_labels(instance),
        template=pod_template(instance, spec),
        service=labels.service_name(instance),
    )
    object_labels = labels.object_labels(instance)
    object_labels[labels.SPEC_HASH_LABEL] = spec_hash(body)
    return ManagedResource(
        kind=shape.kind,
        namespace=record.identity.namespace,
        name=labels.workload_name(instance),
        labels=object_labels,
        body=body,
        owner=labels.owner_reference(record),
    )


def _service(record: SpecRecord, spec: RestDataServicesSpec) -> ManagedResource:
    instance = record.identity.name
    gs = spec.global_settings
    return ManagedResource(
        kind=ResourceKind.SERVICE,
        namespace=record.identity.namespace,
        name=labels.service_name(instance),
        labels=labels.object_labels(instance),
        body={
            "selector": labels.instance_labels(instance),
            "ports": [
                {"name": SERVICE_HTTP_PORT_NAME, "protocol": "TCP", "port": gs.http_port, "targetPort": HTTP_PORT_NAME},
                {"name": SERVICE_HTTPS_PORT_NAME, "protocol": "TCP", "port": gs.https_port, "targetPort": HTTPS_PORT_NAME},
            ],
        },
        owner=labels.owner_reference(record),
    )


def compile_spec(record: SpecRecord, spec: RestDataServicesSpec | None = None) -> DesiredState:
    if spec is None:
        spec = record.parse_spec()
    instance = record.identity.name
    labels.validate_name(instance, "instance name")
    check_pools(spec)

    shape = shape_for(spec.workload_type)
    return DesiredState(
        init_config=_config(record, labels.init_script_name(instance), labels.ROLE_INIT, {INIT_SCRIPT_FILE: INIT_SCRIPT}),
        global_config=_config(
            record,
            labels.global_config_name(instance),
            labels.ROLE_GLOBAL,
            {GLOBAL_DOCUMENT: render_global(spec.global_settings)},
        ),
        pool_configs=[
            _config(record, labels.pool_config_name(instance, pool.key), labels.ROLE_POOL, {POOL_DOCUMENT: render_pool(pool)})
            for pool in spec.pool_settings
        ],
        workload=_workload(record, spec, shape),
        service=_service(record, spec),
        shape=shape,
    )
