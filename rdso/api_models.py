from __future__ import annotations

import re
from datetime import timedelta
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_GO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h))+$")
_GO_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}


def _parse_go_duration(value: Any) -> Any:
    """Accept Go-style durations ("15m", "1h30m", "500ms") next to what pydantic parses."""
    if isinstance(value, str) and _GO_DURATION_RE.match(value.strip()):
        seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in _GO_DURATION_PART_RE.findall(value.strip()))
        return timedelta(seconds=seconds)
    return value


Duration = Annotated[timedelta, BeforeValidator(_parse_go_duration)]


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class WorkloadType(str, Enum):
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    DAEMON_SET = "DaemonSet"


class SecretRef(_Model):
    """Reference to a password held in a Secret; the value itself is never read."""

    secret_name: str
    password_key: str = "password"


class MountedSecretRef(_Model):
    secret_name: str


class WalletSecretRef(_Model):
    secret_name: str
    wallet_name: str


class GlobalSettings(_Model):
    cache_metadata_graphql_expire_after_access: Optional[Duration] = None
    cache_metadata_jwks_enabled: Optional[bool] = None
    cache_metadata_jwks_initial_capacity: Optional[int] = None
    cache_metadata_jwks_maximum_size: Optional[int] = None
    cache_metadata_jwks_expire_after_access: Optional[Duration] = None
    cache_metadata_jwks_expire_after_write: Optional[Duration] = None
    database_api_management_services_disabled: Optional[bool] = None
    db_invalid_pool_timeout: Optional[Duration] = None
    feature_graphql_max_nesting_depth: Optional[int] = None
    request_trace_header_name: Optional[str] = None
    security_credentials_attempts: Optional[int] = None
    security_credentials_lock_time: Optional[Duration] = None
    standalone_context_path: Optional[str] = None
    standalone_http_port: Optional[int] = Field(None, ge=1, le=65535)
    standalone_https_host: Optional[str] = None
    standalone_https_port: Optional[int] = Field(None, ge=1, le=65535)
    standalone_static_context_path: Optional[str] = None
    standalone_stop_timeout: Optional[int] = None
    cache_metadata_timeout: Optional[str] = None
    cache_metadata_enabled: Optional[bool] = None
    database_api_enabled: Optional[bool] = None
    debug_print_debug_to_screen: Optional[bool] = None
    error_response_format: Optional[str] = None
    icap_port: Optional[int] = None
    icap_secure_port: Optional[int] = None
    icap_server: Optional[str] = None
    log_procedure: Optional[bool] = None
    security_disable_default_exclusion_list: Optional[bool] = None
    security_exclusion_list: Optional[str] = None
    security_inclusion_list: Optional[str] = None
    security_max_entries: Optional[int] = None
    security_verify_ssl: Optional[bool] = Field(None, alias="securityVerifySSL")
    security_https_header_check: Optional[str] = Field(None, alias="securityHTTPSHeaderCheck")
    security_force_https: Optional[bool] = Field(None, alias="securityForceHTTPS")
    security_external_session_trusted_origins: Optional[str] = None
    enable_standalone_access_log: bool = False

    @property
    def http_port(self) -> int:
        return self.standalone_http_port or 8080

    @property
    def https_port(self) -> int:
        return self.standalone_https_port or 8443


class PoolSettings(_Model):
    pool_name: str = Field(..., min_length=1)
    db_username: str = "ORDS_PUBLIC_USER"

    # Credential references, resolved by the init step.
    db_secret: SecretRef
    db_admin_user_secret: Optional[SecretRef] = None
    db_cdb_admin_user_secret: Optional[SecretRef] = None
    tns_admin_secret: Optional[MountedSecretRef] = None
    db_wallet_secret: Optional[WalletSecretRef] = None
    auto_upgrade_ords: bool = Field(False, alias="autoUpgradeORDS")
    auto_upgrade_apex: bool = Field(False, alias="autoUpgradeAPEX")

    db_admin_user: Optional[str] = None
    db_cdb_admin_user: Optional[str] = None
    apex_security_administrator_roles: Optional[str] = None
    apex_security_user_roles: Optional[str] = None
    db_credentials_source: Optional[str] = None
    db_pool_destroy_timeout: Optional[Duration] = None
    db_wallet_zip_service: Optional[str] = None
    debug_track_resources: Optional[bool] = None
    feature_openservicebroker_exclude: Optional[bool] = None
    feature_sdw: Optional[bool] = None
    http_cookie_filter: Optional[str] = None
    jdbc_auth_admin_role: Optional[str] = None
    jdbc_cleanup_mode: Optional[str] = None
    owa_trace_sql: Optional[bool] = None
    plsql_gateway_mode: Optional[str] = None
    security_jwt_profile_enabled: Optional[bool] = None
    security_jwks_size: Optional[int] = None
    security_jwks_connection_timeout: Optional[Duration] = None
    security_jwks_read_timeout: Optional[Duration] = None
    security_jwks_refresh_interval: Optional[Duration] = None
    security_jwt_allowed_skew: Optional[Duration] = None
    security_jwt_allowed_age: Optional[Duration] = None
    db_connection_type: Optional[str] = None
    db_custom_url: Optional[str] = Field(None, alias="dbCustomURL")
    db_hostname: Optional[str] = None
    db_port: Optional[int] = Field(None, ge=1, le=65535)
    db_servicename: Optional[str] = None
    db_service_name_suffix: Optional[str] = None
    db_sid: Optional[str] = None
    db_tns_alias_name: Optional[str] = None
    jdbc_driver_type: Optional[str] = None
    jdbc_inactivity_timeout: Optional[int] = None
    jdbc_initial_limit: Optional[int] = None
    jdbc_max_connection_reuse_count: Optional[int] = None
    jdbc_max_limit: Optional[int] = None
    jdbc_auth_enabled: Optional[bool] = None
    jdbc_max_statements_limit: Optional[int] = None
    jdbc_min_limit: Optional[int] = None
    jdbc_statement_timeout: Optional[int] = None
    misc_default_page: Optional[str] = None
    misc_pagination_max_rows: Optional[int] = None
    procedure_post_process: Optional[str] = None
    procedure_pre_process: Optional[str] = None
    procedure_rest_pre_hook: Optional[str] = None
    security_request_authentication_function: Optional[str] = None
    security_request_validation_function: Optional[str] = None
    soda_default_limit: Optional[str] = None
    soda_max_limit: Optional[str] = None
    rest_enabled_sql_active: Optional[bool] = None

    @property
    def key(self) -> str:
        """Case-folded pool name used for object names and mount paths."""
        return self.pool_name.lower()


class RestDataServicesSpec(_Model):
    workload_type: WorkloadType = WorkloadType.DEPLOYMENT
    replicas: int = Field(1, ge=1)
    auto_restart: bool = False
    image: str = Field(..., min_length=1)
    image_pull_policy: str = "IfNotPresent"
    image_pull_secrets: Optional[str] = None
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)
    pool_settings: list[PoolSettings] = Field(default_factory=list)

    @field_validator("workload_type", mode="before")
    @classmethod
    def _fallback_workload_type(cls, value: Any) -> Any:
        # Unknown shapes fall back to the fixed-replica Deployment.
        if isinstance(value, WorkloadType):
            return value
        if not isinstance(value, str) or value not in {w.value for w in WorkloadType}:
            return WorkloadType.DEPLOYMENT
        return value

    @property
    def image_tag(self) -> str:
        image = self.image
        if "@" in image:
            return image.split("@", 1)[1]
        last = image.rsplit("/", 1)[-1]
        if ":" in last:
            return last.rsplit(":", 1)[1]
        return "latest"


class StatusState(str, Enum):
    UNKNOWN = "Unknown"
    PROGRESSING = "Progressing"
    AVAILABLE = "Available"
    DEGRADED = "Degraded"


class Condition(_Model):
    type: str
    status: str  # True|False|Unknown
    reason: str
    message: str = ""
    last_transition_time: str = ""


class InstanceStatus(_Model):
    state: StatusState = StatusState.UNKNOWN
    workload_type: Optional[str] = None
    ords_version: Optional[str] = Field(None, alias="ordsVersion")
    http_port: Optional[int] = None
    https_port: Optional[int] = None
    ready_replicas: int = 0
    desired_replicas: int = 0
    workload_status: Optional[str] = None  # Preparing|Progressing|Healthy
    restart_required: bool = False
    message: Optional[str] = None
    last_error: Optional[str] = None
    observed_generation: Optional[int] = None
    conditions: list[Condition] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Admin API payloads ---


class PassResultModel(BaseModel):
    namespace: str
    name: str
    outcome: str
    created: int = 0
    updated: int = 0
    deleted: int = 0
    restarted: bool = False
    message: str = ""
    finished_at: str = ""


class InstanceView(BaseModel):
    namespace: str
    name: str
    status: dict[str, Any] = Field(default_factory=dict)
    last_pass: Optional[PassResultModel] = None
