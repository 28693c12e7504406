from __future__ import annotations

from typing import Any

from .api_models import PoolSettings, RestDataServicesSpec
from .labels import global_config_name, init_script_name, instance_labels, pool_config_name

SA_BASE = "/opt/oracle/sa"
CONFIG_ROOT = f"{SA_BASE}/config"
GLOBAL_LOG_DIR = f"{SA_BASE}/log/global"
INIT_SCRIPT_FILE = "init_script.sh"

HTTP_PORT_NAME = "pod-http-port"
HTTPS_PORT_NAME = "pod-https-port"
RUN_AS_USER = 54321

INIT_SCRIPT = """#!/bin/bash
set_secret() {
  echo "Processing pool $1 secret from $2"
  if [ -n "${!2}" ]; then
    ords --config "$ORDS_CONFIG" config --db-pool "$1" secret --password-stdin "$3" <<< "${!2}"
  fi
}

upgrade_ords() {
  echo "Checking to install/upgrade ORDS for pool $1"
  if [ -n "${!2}" ] && [ "${!3}" = "true" ]; then
    local ords_admin
    ords_admin=$(ords --config "$ORDS_CONFIG" config --db-pool "$1" get db.adminUser | tail -1)
    echo "Performing ORDS install/upgrade as $ords_admin on pool $1"
    ords --config "$ORDS_CONFIG" install --db-pool "$1" --db-only \\
      --admin-user "$ords_admin" --password-stdin <<< "${!2}"
  fi
}

for pool in "$ORDS_CONFIG"/databases/*; do
  pool_name=$(basename "$pool")
  set_secret "$pool_name" "${pool_name}_dbsecret" "db.password"
  set_secret "$pool_name" "${pool_name}_dbadminusersecret" "db.adminUser.password"
  set_secret "$pool_name" "${pool_name}_dbcdbadminusersecret" "db.cdb.adminUser.password"
  upgrade_ords "$pool_name" "${pool_name}_dbadminusersecret" "${pool_name}_autoupgrade_ords"
done
"""


def pool_dir(pool_key: str) -> str:
    return f"{CONFIG_ROOT}/databases/{pool_key}/"


def network_admin_dir(pool_key: str) -> str:
    return f"{pool_dir(pool_key)}network/admin/"


def _config_map_volume(name: str, mode: int = 0o660) -> dict[str, Any]:
    return {"name": name, "configMap": {"name": name, "defaultMode": mode}}


def _secret_volume(name: str) -> dict[str, Any]:
    return {"name": name, "secret": {"secretName": name}}


def _empty_dir_volume(name: str) -> dict[str, Any]:
    return {"name": name, "emptyDir": {}}


def _mount(name: str, path: str, read_only: bool) -> dict[str, Any]:
    return {"name": name, "mountPath": path, "readOnly": read_only}


def volumes(instance: str, spec: RestDataServicesSpec) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Volumes and mounts shared by the init step and the gateway step.

    Secret volumes are declared once per secret name even when several pools
    mount the same secret.
    """
    init_script = init_script_name(instance)
    global_config = global_config_name(instance)
    vols = [
        _config_map_volume(init_script, 0o770),
        _empty_dir_volume("standalone"),
        _empty_dir_volume("sa-wallet-global"),
        _empty_dir_volume("sa-log-global"),
        _config_map_volume(global_config),
        _empty_dir_volume("sa-doc-root"),
    ]
    mounts = [
        _mount(init_script, f"{SA_BASE}/bin", True),
        _mount("standalone", f"{CONFIG_ROOT}/global/standalone/", False),
        _mount("sa-wallet-global", f"{CONFIG_ROOT}/global/wallet/", False),
        _mount("sa-log-global", f"{SA_BASE}/log/global/", False),
        _mount(global_config, f"{CONFIG_ROOT}/global/", True),
        _mount("sa-doc-root", f"{CONFIG_ROOT}/global/doc_root/", False),
    ]

    declared_secrets: set[str] = set()
    for pool in spec.pool_settings:
        key = pool.key
        wallet = f"sa-wallet-{key}"
        config = pool_config_name(instance, key)
        vols += [_empty_dir_volume(wallet), _config_map_volume(config)]
        mounts += [_mount(wallet, f"{pool_dir(key)}wallet/", False), _mount(config, pool_dir(key), True)]

        for secret in _mounted_secrets(pool):
            if secret not in declared_secrets:
                vols.append(_secret_volume(secret))
                declared_secrets.add(secret)
            mounts.append(_mount(secret, network_admin_dir(key), True))
    return vols, mounts


def _mounted_secrets(pool: PoolSettings) -> list[str]:
    names = []
    if pool.db_wallet_secret is not None:
        names.append(pool.db_wallet_secret.secret_name)
    if pool.tns_admin_secret is not None:
        names.append(pool.tns_admin_secret.secret_name)
    return names


def _secret_env(name: str, secret_name: str, key: str) -> dict[str, Any]:
    return {"name": name, "valueFrom": {"secretKeyRef": {"name": secret_name, "key": key}}}


def env(spec: RestDataServicesSpec, init_step: bool) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = [{"name": "ORDS_CONFIG", "value": CONFIG_ROOT}]
    if len(spec.pool_settings) == 1:
        # A single pool may rely on TNS_ADMIN for wallet based connections.
        out.append({"name": "TNS_ADMIN", "value": network_admin_dir(spec.pool_settings[0].key)})
    if not init_step:
        return out

    for pool in spec.pool_settings:
        key = pool.key
        out.append(_secret_env(f"{key}_dbsecret", pool.db_secret.secret_name, pool.db_secret.password_key))
        if pool.db_admin_user_secret is not None:
            admin = pool.db_admin_user_secret
            out.append(_secret_env(f"{key}_dbadminusersecret", admin.secret_name, admin.password_key))
            out.append({"name": f"{key}_autoupgrade_ords", "value": "true" if pool.auto_upgrade_ords else "false"})
            out.append({"name": f"{key}_autoupgrade_apex", "value": "true" if pool.auto_upgrade_apex else "false"})
        if pool.db_cdb_admin_user_secret is not None:
            cdb = pool.db_cdb_admin_user_secret
            out.append(_secret_env(f"{key}_dbcdbadminusersecret", cdb.secret_name, cdb.password_key))
    return out


def security_context() -> dict[str, Any]:
    return {
        "runAsNonRoot": True,
        "runAsUser": RUN_AS_USER,
        "allowPrivilegeEscalation": False,
        "capabilities": {"drop": ["ALL"]},
    }


def pod_template(instance: str, spec: RestDataServicesSpec) -> dict[str, Any]:
    vols, mounts = volumes(instance, spec)
    gs = spec.global_settings
    pod_spec: dict[str, Any] = {
        "volumes": vols,
        "securityContext": {
            "runAsNonRoot": True,
            "fsGroup": RUN_AS_USER,
            "seccompProfile": {"type": "RuntimeDefault"},
        },
        "initContainers": [
            {
                "name": f"{instance}-init",
                "image": spec.image,
                "imagePullPolicy": spec.image_pull_policy,
                "securityContext": security_context(),
                "command": ["sh", "-c", f"{SA_BASE}/bin/{INIT_SCRIPT_FILE}"],
                "env": env(spec, init_step=True),
                "volumeMounts": mounts,
            }
        ],
        "containers": [
            {
                "name": instance,
                "image": spec.image,
                "imagePullPolicy": spec.image_pull_policy,
                "securityContext": security_context(),
                "ports": [
                    {"name": HTTP_PORT_NAME, "containerPort": gs.http_port},
                    {"name": HTTPS_PORT_NAME, "containerPort": gs.https_port},
                ],
                "command": [
                    "/bin/bash",
                    "-c",
                    "ords --config $ORDS_CONFIG serve --apex-images /opt/oracle/apex/$APEX_VER/images",
                ],
                "env": env(spec, init_step=False),
                "volumeMounts": mounts,
            }
        ],
    }
    if spec.image_pull_secrets:
        pod_spec["imagePullSecrets"] = [{"name": spec.image_pull_secrets}]
    return {"metadata": {"labels": instance_labels(instance)}, "spec": pod_spec}
