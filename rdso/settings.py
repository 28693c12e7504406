from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Journal
    db_path: str = os.getenv("RDSO_DB_PATH", "rdso.db")

    # Dispatch
    namespace: str = os.getenv("RDSO_NAMESPACE", "")
    resync_interval_s: int = _env_int("RDSO_RESYNC_INTERVAL_S", 60)
    workers: int = _env_int("RDSO_WORKERS", 4)
    retry_base_s: int = _env_int("RDSO_RETRY_BASE_S", 5)
    retry_max_s: int = _env_int("RDSO_RETRY_MAX_S", 300)

    # Cluster access
    kubeconfig_context: str | None = os.getenv("RDSO_KUBECONFIG_CONTEXT")
    post_events: bool = _env_bool("RDSO_POST_EVENTS", True)

    # Admin API. Mutating endpoints are open when no user is configured.
    admin_user: str | None = os.getenv("RDSO_ADMIN_USER")
    admin_password: str | None = os.getenv("RDSO_ADMIN_PASSWORD")


settings = Settings()
