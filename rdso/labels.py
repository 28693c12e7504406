"""Naming and labeling rules for objects owned by a RestDataServices instance.

Every object carries the instance label and the controller filter label, so
the engine can rediscover what it created without keeping any state. Config
objects additionally carry a role label; only ``pool`` configs are pruned.
"""
from __future__ import annotations

import re

from .errors import ConfigurationError
from .resources import CRD_GROUP, CRD_KIND, CRD_VERSION, SpecRecord

INSTANCE_LABEL = "app.kubernetes.io/instance"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "rdso"
CONTROLLER_LABEL = "oracle.com/ords-operator-filter"
CONTROLLER_VALUE = "oracle-ords-operator"
CONFIG_ROLE_LABEL = "oracle.com/ords-operator-config"
SPEC_HASH_LABEL = "oracle.com/ords-operator-spec-hash"
RESTARTED_AT_LABEL = "oracle.com/ords-operator-restarted-at"

ROLE_INIT = "init"
ROLE_GLOBAL = "global"
ROLE_POOL = "pool"

GLOBAL_CONFIG_SUFFIX = "settings-global"
POOL_CONFIG_PREFIX = "settings-"
INIT_SCRIPT_SUFFIX = "init-script"

# DNS-1123 label: object names and the pool part of config names.
DNS_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")


def validate_name(value: str, what: str) -> None:
    if not DNS_LABEL_RE.match(value):
        raise ConfigurationError(
            f"Invalid {what} '{value}'. Use lowercase letters/numbers and hyphen, alphanumeric at both ends (max 63 chars)."
        )


def workload_name(instance: str) -> str:
    return instance


def service_name(instance: str) -> str:
    return instance


def init_script_name(instance: str) -> str:
    return f"{instance}-{INIT_SCRIPT_SUFFIX}"


def global_config_name(instance: str) -> str:
    return f"{instance}-{GLOBAL_CONFIG_SUFFIX}"


def pool_config_name(instance: str, pool_key: str) -> str:
    return f"{instance}-{POOL_CONFIG_PREFIX}{pool_key}"


def instance_labels(instance: str) -> dict[str, str]:
    """Labels shared by every owned object; also the pod selector."""
    return {
        INSTANCE_LABEL: instance,
        CONTROLLER_LABEL: CONTROLLER_VALUE,
    }


def object_labels(instance: str, role: str | None = None) -> dict[str, str]:
    labels = instance_labels(instance)
    labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE
    if role:
        labels[CONFIG_ROLE_LABEL] = role
    return labels


def pool_selector(instance: str) -> dict[str, str]:
    selector = instance_labels(instance)
    selector[CONFIG_ROLE_LABEL] = ROLE_POOL
    return selector


def owner_reference(record: SpecRecord) -> dict[str, object]:
    return {
        "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
        "kind": CRD_KIND,
        "name": record.identity.name,
        "uid": record.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }
