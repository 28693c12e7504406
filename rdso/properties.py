"""Rendering of the gateway's global and pool property documents.

Each recognized key is declared once in an entry table together with the
model attribute it reads and the renderer for its value type. An entry is
emitted only when its attribute is set, so the rendered key set mirrors
exactly what the operator wrote in the specification.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable
from xml.sax.saxutils import escape

from .api_models import GlobalSettings, PoolSettings
from .podspec import GLOBAL_LOG_DIR, network_admin_dir

HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<!DOCTYPE properties SYSTEM "http://java.sun.com/dtd/properties.dtd">\n'
    "<properties>\n"
)
FOOTER = "</properties>\n"

GLOBAL_DOCUMENT = "settings.xml"
POOL_DOCUMENT = "pool.xml"


def render_str(value: str) -> str:
    return value


def render_int(value: int) -> str:
    return str(int(value))


def render_bool(value: bool) -> str:
    return "true" if value else "false"


def _fraction(value: int, unit: int) -> str:
    whole, rest = divmod(value, unit)
    if not rest:
        return str(whole)
    digits = str(rest).rjust(len(str(unit)) - 1, "0").rstrip("0")
    return f"{whole}.{digits}"


def render_duration(value: timedelta) -> str:
    """Format like Go's time.Duration: 15m0s, 1h0m0s, 1.5s, 250ms."""
    total_us = (value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds
    if total_us == 0:
        return "0s"
    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)
    if total_us < 1000:
        return f"{sign}{total_us}µs"
    if total_us < 1_000_000:
        return f"{sign}{_fraction(total_us, 1000)}ms"
    hours, rest = divmod(total_us, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    out = sign
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return out + f"{_fraction(rest, 1_000_000)}s"


@dataclass(frozen=True)
class Entry:
    key: str
    attr: str
    render: Callable[[Any], str]


def entry_line(key: str, text: str) -> str:
    return f'  <entry key="{key}">{escape(text)}</entry>\n'


def conditional_entry(entry: Entry, source: Any) -> str:
    value = getattr(source, entry.attr)
    if value is None:
        return ""
    text = entry.render(value)
    if text == "":
        return ""
    return entry_line(entry.key, text)


GLOBAL_ENTRIES: tuple[Entry, ...] = (
    Entry("cache.metadata.graphql.expireAfterAccess", "cache_metadata_graphql_expire_after_access", render_duration),
    Entry("cache.metadata.jwks.enabled", "cache_metadata_jwks_enabled", render_bool),
    Entry("cache.metadata.jwks.initialCapacity", "cache_metadata_jwks_initial_capacity", render_int),
    Entry("cache.metadata.jwks.maximumSize", "cache_metadata_jwks_maximum_size", render_int),
    Entry("cache.metadata.jwks.expireAfterAccess", "cache_metadata_jwks_expire_after_access", render_duration),
    Entry("cache.metadata.jwks.expireAfterWrite", "cache_metadata_jwks_expire_after_write", render_duration),
    Entry("database.api.management.services.disabled", "database_api_management_services_disabled", render_bool),
    Entry("db.invalidPoolTimeout", "db_invalid_pool_timeout", render_duration),
    Entry("feature.graphql.max.nesting.depth", "feature_graphql_max_nesting_depth", render_int),
    Entry("request.traceHeaderName", "request_trace_header_name", render_str),
    Entry("security.credentials.attempts", "security_credentials_attempts", render_int),
    Entry("security.credentials.lock.time", "security_credentials_lock_time", render_duration),
    Entry("standalone.context.path", "standalone_context_path", render_str),
    Entry("standalone.http.port", "standalone_http_port", render_int),
    Entry("standalone.https.host", "standalone_https_host", render_str),
    Entry("standalone.https.port", "standalone_https_port", render_int),
    Entry("standalone.static.context.path", "standalone_static_context_path", render_str),
    Entry("standalone.stop.timeout", "standalone_stop_timeout", render_int),
    Entry("cache.metadata.timeout", "cache_metadata_timeout", render_str),
    Entry("cache.metadata.enabled", "cache_metadata_enabled", render_bool),
    Entry("database.api.enabled", "database_api_enabled", render_bool),
    Entry("debug.printDebugToScreen", "debug_print_debug_to_screen", render_bool),
    Entry("error.responseFormat", "error_response_format", render_str),
    Entry("icap.port", "icap_port", render_int),
    Entry("icap.secure.port", "icap_secure_port", render_int),
    Entry("icap.server", "icap_server", render_str),
    Entry("log.procedure", "log_procedure", render_bool),
    Entry("security.disableDefaultExclusionList", "security_disable_default_exclusion_list", render_bool),
    Entry("security.exclusionList", "security_exclusion_list", render_str),
    Entry("security.inclusionList", "security_inclusion_list", render_str),
    Entry("security.maxEntries", "security_max_entries", render_int),
    Entry("security.verifySSL", "security_verify_ssl", render_bool),
    Entry("security.httpsHeaderCheck", "security_https_header_check", render_str),
    Entry("security.forceHTTPS", "security_force_https", render_bool),
    Entry("externalSessionTrustedOrigins", "security_external_session_trusted_origins", render_str),
)

POOL_ENTRIES: tuple[Entry, ...] = (
    Entry("db.adminUser", "db_admin_user", render_str),
    Entry("db.cdb.adminUser", "db_cdb_admin_user", render_str),
    Entry("apex.security.administrator.roles", "apex_security_administrator_roles", render_str),
    Entry("apex.security.user.roles", "apex_security_user_roles", render_str),
    Entry("db.credentialsSource", "db_credentials_source", render_str),
    Entry("db.poolDestroyTimeout", "db_pool_destroy_timeout", render_duration),
    Entry("db.wallet.zip.service", "db_wallet_zip_service", render_str),
    Entry("debug.trackResources", "debug_track_resources", render_bool),
    Entry("feature.openservicebroker.exclude", "feature_openservicebroker_exclude", render_bool),
    Entry("feature.sdw", "feature_sdw", render_bool),
    Entry("http.cookie.filter", "http_cookie_filter", render_str),
    Entry("jdbc.auth.admin.role", "jdbc_auth_admin_role", render_str),
    Entry("jdbc.cleanup.mode", "jdbc_cleanup_mode", render_str),
    Entry("owa.trace.sql", "owa_trace_sql", render_bool),
    Entry("plsql.gateway.mode", "plsql_gateway_mode", render_str),
    Entry("security.jwt.profile.enabled", "security_jwt_profile_enabled", render_bool),
    Entry("security.jwks.size", "security_jwks_size", render_int),
    Entry("security.jwks.connection.timeout", "security_jwks_connection_timeout", render_duration),
    Entry("security.jwks.read.timeout", "security_jwks_read_timeout", render_duration),
    Entry("security.jwks.refresh.interval", "security_jwks_refresh_interval", render_duration),
    Entry("security.jwt.allowed.skew", "security_jwt_allowed_skew", render_duration),
    Entry("security.jwt.allowed.age", "security_jwt_allowed_age", render_duration),
    Entry("db.connectionType", "db_connection_type", render_str),
    Entry("db.customURL", "db_custom_url", render_str),
    Entry("db.hostname", "db_hostname", render_str),
    Entry("db.port", "db_port", render_int),
    Entry("db.servicename", "db_servicename", render_str),
    Entry("db.serviceNameSuffix", "db_service_name_suffix", render_str),
    Entry("db.sid", "db_sid", render_str),
    Entry("db.tnsAliasName", "db_tns_alias_name", render_str),
    Entry("jdbc.DriverType", "jdbc_driver_type", render_str),
    Entry("jdbc.InactivityTimeout", "jdbc_inactivity_timeout", render_int),
    Entry("jdbc.InitialLimit", "jdbc_initial_limit", render_int),
    Entry("jdbc.MaxConnectionReuseCount", "jdbc_max_connection_reuse_count", render_int),
    Entry("jdbc.MaxLimit", "jdbc_max_limit", render_int),
    Entry("jdbc.auth.enabled", "jdbc_auth_enabled", render_bool),
    Entry("jdbc.MaxStatementsLimit", "jdbc_max_statements_limit", render_int),
    Entry("jdbc.MinLimit", "jdbc_min_limit", render_int),
    Entry("jdbc.statementTimeout", "jdbc_statement_timeout", render_int),
    Entry("misc.defaultPage", "misc_default_page", render_str),
    Entry("misc.pagination.maxRows", "misc_pagination_max_rows", render_int),
    Entry("procedure.postProcess", "procedure_post_process", render_str),
    Entry("procedure.preProcess", "procedure_pre_process", render_str),
    Entry("procedure.rest.preHook", "procedure_rest_pre_hook", render_str),
    Entry("security.requestAuthenticationFunction", "security_request_authentication_function", render_str),
    Entry("security.requestValidationFunction", "security_request_validation_function", render_str),
    Entry("soda.defaultLimit", "soda_default_limit", render_str),
    Entry("soda.maxLimit", "soda_max_limit", render_str),
    Entry("restEnabledSql.active", "rest_enabled_sql_active", render_bool),
)

# Keys written for every pool regardless of what the operator set.
POOL_REQUIRED_KEYS = ("db.username", "db.tnsDirectory")


def render_global(settings: GlobalSettings) -> str:
    body = "".join(conditional_entry(e, settings) for e in GLOBAL_ENTRIES)
    if settings.enable_standalone_access_log:
        body += entry_line("standalone.access.log", GLOBAL_LOG_DIR)
    return HEADER + body + FOOTER


def render_pool(pool: PoolSettings) -> str:
    body = entry_line("db.username", pool.db_username)
    body += "".join(conditional_entry(e, pool) for e in POOL_ENTRIES)
    body += entry_line("db.tnsDirectory", network_admin_dir(pool.key))
    if pool.db_wallet_secret is not None:
        body += entry_line("db.wallet.zip", pool.db_wallet_secret.wallet_name)
        body += entry_line("db.wallet.zip.path", network_admin_dir(pool.key))
    return HEADER + body + FOOTER
