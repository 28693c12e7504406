from __future__ import annotations

import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException

from .api_models import InstanceStatus
from .controller import Controller
from .errors import ConflictError, InvalidResourceError, NotFoundError, TransientStoreError
from .events import EventRecorder
from .resources import (
    CRD_GROUP,
    CRD_KIND,
    CRD_PLURAL,
    CRD_VERSION,
    Identity,
    ManagedResource,
    ResourceKind,
    SpecRecord,
)
from .restarts import utc_now
from .settings import Settings, settings

logger = logging.getLogger(__name__)

# kind -> (api group, method suffix) of the generated client methods.
_METHODS: dict[ResourceKind, tuple[str, str]] = {
    ResourceKind.CONFIG_MAP: ("core", "config_map"),
    ResourceKind.SERVICE: ("core", "service"),
    ResourceKind.DEPLOYMENT: ("apps", "deployment"),
    ResourceKind.DAEMON_SET: ("apps", "daemon_set"),
    ResourceKind.STATEFUL_SET: ("apps", "stateful_set"),
}


def load_config(context: str | None = None) -> None:
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster configuration")
    except config.ConfigException:
        config.load_kube_config(context=context)
        logger.info("Using kubeconfig (context=%s)", context or "current")


def translate(e: ApiException, what: str) -> Exception:
    """Map an API failure onto the reconcile error taxonomy."""
    detail = f"{what}: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(detail)
    if e.status == 409:
        return ConflictError(detail)
    if e.status in (400, 422):
        return InvalidResourceError(detail)
    return TransientStoreError(detail)


def label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubeResourceStore:
    """ResourceStore backed by the core and apps API groups."""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        core: client.CoreV1Api | None = None,
        apps: client.AppsV1Api | None = None,
    ):
        self.api_client = api_client or client.ApiClient()
        self._apis = {
            "core": core or client.CoreV1Api(self.api_client),
            "apps": apps or client.AppsV1Api(self.api_client),
        }

    def _call(self, verb: str, kind: ResourceKind, *args: Any, **kwargs: Any) -> Any:
        group, suffix = _METHODS[kind]
        return getattr(self._apis[group], f"{verb}_namespaced_{suffix}")(*args, **kwargs)

    def _to_resource(self, kind: ResourceKind, obj: Any) -> ManagedResource:
        return ManagedResource.from_manifest(kind, self.api_client.sanitize_for_serialization(obj))

    def get(self, kind: ResourceKind, namespace: str, name: str) -> ManagedResource | None:
        try:
            obj = self._call("read", kind, name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate(e, f"read {kind.value}/{name}") from e
        return self._to_resource(kind, obj)

    def create(self, resource: ManagedResource) -> ManagedResource:
        try:
            obj = self._call("create", resource.kind, resource.namespace, resource.to_manifest())
        except ApiException as e:
            raise translate(e, f"create {resource.ref}") from e
        return self._to_resource(resource.kind, obj)

    def update(self, resource: ManagedResource) -> ManagedResource:
        try:
            obj = self._call("replace", resource.kind, resource.name, resource.namespace, resource.to_manifest())
        except ApiException as e:
            raise translate(e, f"replace {resource.ref}") from e
        return self._to_resource(resource.kind, obj)

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        try:
            self._call("delete", kind, name, namespace, propagation_policy="Foreground")
        except ApiException as e:
            if e.status == 404:
                logger.info("%s/%s already gone", kind.value, name)
                return
            raise translate(e, f"delete {kind.value}/{name}") from e

    def list(self, kind: ResourceKind, namespace: str, labels: dict[str, str]) -> list[ManagedResource]:
        try:
            result = self._call("list", kind, namespace, label_selector=label_selector(labels))
        except ApiException as e:
            raise translate(e, f"list {kind.value}") from e
        return [self._to_resource(kind, item) for item in result.items or []]


class KubeSpecificationStore:
    """SpecificationStore over the RestDataServices custom resource.

    An empty ``namespace`` watches every namespace in the cluster.
    """

    def __init__(self, namespace: str = "", api: client.CustomObjectsApi | None = None):
        self.namespace = namespace
        self.api = api or client.CustomObjectsApi()

    def get(self, identity: Identity) -> SpecRecord | None:
        try:
            doc = self.api.get_namespaced_custom_object(
                CRD_GROUP, CRD_VERSION, identity.namespace, CRD_PLURAL, identity.name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate(e, f"read {CRD_KIND} {identity}") from e
        return SpecRecord.from_document(doc)

    def list(self) -> list[SpecRecord]:
        try:
            if self.namespace:
                result = self.api.list_namespaced_custom_object(CRD_GROUP, CRD_VERSION, self.namespace, CRD_PLURAL)
            else:
                result = self.api.list_cluster_custom_object(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
        except ApiException as e:
            raise translate(e, f"list {CRD_KIND}") from e
        return [SpecRecord.from_document(doc) for doc in result.get("items") or []]

    def update_status(self, record: SpecRecord, status: InstanceStatus) -> SpecRecord:
        body = {
            "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
            "kind": CRD_KIND,
            "metadata": {
                "name": record.identity.name,
                "namespace": record.identity.namespace,
                "resourceVersion": record.resource_version,
            },
            "spec": record.document,
            "status": status.to_document(),
        }
        try:
            doc = self.api.replace_namespaced_custom_object_status(
                CRD_GROUP, CRD_VERSION, record.identity.namespace, CRD_PLURAL, record.identity.name, body
            )
        except ApiException as e:
            raise translate(e, f"update status of {record.identity}") from e
        return SpecRecord.from_document(doc)


class KubeEventSink:
    """Posts events against the RestDataServices object."""

    component = "rdso"

    def __init__(self, api: client.CoreV1Api | None = None):
        self.api = api or client.CoreV1Api()

    def emit(self, record: SpecRecord, event_type: str, reason: str, message: str) -> None:
        now = utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")
        body = {
            "metadata": {"generateName": f"{record.identity.name}.", "namespace": record.identity.namespace},
            "involvedObject": {
                "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
                "kind": CRD_KIND,
                "name": record.identity.name,
                "namespace": record.identity.namespace,
                "uid": record.uid,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "count": 1,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "source": {"component": self.component},
        }
        self.api.create_namespaced_event(record.identity.namespace, body)


def cluster_controller(cfg: Settings = settings) -> Controller:
    """Controller wired against the cluster the process runs in (or the kubeconfig)."""
    load_config(cfg.kubeconfig_context)
    sinks = [KubeEventSink()] if cfg.post_events else []
    return Controller(
        KubeSpecificationStore(cfg.namespace),
        KubeResourceStore(),
        EventRecorder(*sinks),
        config=cfg,
    )
