"""Configuration for accesscore engines.

Two layers:

- ``AccessCoreConfig`` — runtime settings (logging, audit retention,
  sweeper interval). ``load_config_from_env()`` is the ONLY place that
  reads the environment; everything else receives the config object.
- ``EngineConfig`` — the seed tables an engine is built from: system
  roles, the static permission matrix, the default permission catalog and
  the default templates. ``default_engine_config()`` returns a fresh copy
  on every call, so two engines never share mutable seed state.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .permissions.constants import Permissions, SystemRoles


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AccessCoreConfig(BaseModel):
    """Runtime settings shared by every component of an engine."""

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )
    service_name: Optional[str] = Field(
        default=None,
        description="Service name attached to log records",
    )

    # Audit
    audit_enabled: bool = Field(
        default=True,
        description="Record grant/revoke/assignment actions in the audit log",
    )
    audit_checks: bool = Field(
        default=True,
        description="Also record every permission check (high volume)",
    )
    audit_max_entries: int = Field(
        default=100_000,
        description="Audit log capacity; the oldest entries are dropped when full",
    )
    audit_retention_seconds: int = Field(
        default=90 * 24 * 3600,
        description="Age after which the sweeper prunes audit entries (90 days)",
    )

    # Maintenance
    sweep_interval_seconds: float = Field(
        default=60.0,
        description="Interval of the optional expiry sweeper thread",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("audit_max_entries", "audit_retention_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("sweep_interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Sweep interval must be positive")
        return v

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",  # Prevent accidental extra fields
    }


def _env_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


def load_config_from_env() -> AccessCoreConfig:
    """Load runtime configuration from environment variables.

    Environment variables:
    - ACCESSCORE_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ACCESSCORE_LOG_JSON: Use JSON log format (true/false, default: false)
    - ACCESSCORE_SERVICE_NAME: Service name for log records
    - ACCESSCORE_AUDIT_ENABLED: Record mutations (default: true)
    - ACCESSCORE_AUDIT_CHECKS: Record permission checks (default: true)
    - ACCESSCORE_AUDIT_MAX_ENTRIES: Audit log capacity
    - ACCESSCORE_AUDIT_RETENTION_SECONDS: Audit retention window
    - ACCESSCORE_SWEEP_INTERVAL: Sweeper interval in seconds

    Returns:
        AccessCoreConfig instance with values from environment or defaults.
    """
    import os

    return AccessCoreConfig(
        log_level=os.getenv("ACCESSCORE_LOG_LEVEL", "INFO"),
        log_json=_env_bool(os.getenv("ACCESSCORE_LOG_JSON", "false")),
        service_name=os.getenv("ACCESSCORE_SERVICE_NAME"),
        audit_enabled=_env_bool(os.getenv("ACCESSCORE_AUDIT_ENABLED", "true")),
        audit_checks=_env_bool(os.getenv("ACCESSCORE_AUDIT_CHECKS", "true")),
        audit_max_entries=int(os.getenv("ACCESSCORE_AUDIT_MAX_ENTRIES", "100000")),
        audit_retention_seconds=int(os.getenv("ACCESSCORE_AUDIT_RETENTION_SECONDS", str(90 * 24 * 3600))),
        sweep_interval_seconds=float(os.getenv("ACCESSCORE_SWEEP_INTERVAL", "60")),
    )


# ── Seed tables ─────────────────────────────────────────


class RoleSeed(BaseModel):
    name: str
    display_name: str = ""
    description: str = ""
    priority: int = 0


class TemplateSeed(BaseModel):
    name: str
    display_name: str = ""
    description: str = ""
    permissions: list[str] = Field(default_factory=list)
    inherits_from: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)


class EngineConfig(BaseModel):
    """Everything an engine is seeded with at construction."""

    roles: list[RoleSeed] = Field(default_factory=list)
    matrix: dict[str, list[str]] = Field(default_factory=dict)
    permissions: list[str] = Field(default_factory=list)
    templates: list[TemplateSeed] = Field(default_factory=list)
    settings: AccessCoreConfig = Field(default_factory=AccessCoreConfig)


P = Permissions

_USER_PERMISSIONS = [
    P.STORAGE_READ, P.STORAGE_WRITE, P.STORAGE_DELETE, P.STORAGE_LIST,
    P.BUCKET_CREATE, P.BUCKET_DELETE, P.BUCKET_LIST, P.BUCKET_READ,
    P.USER_READ, P.USER_WRITE,
    P.PROFILE_READ, P.PROFILE_WRITE,
    P.APIKEY_CREATE, P.APIKEY_DELETE, P.APIKEY_LIST,
    P.AUTH_LOGIN, P.AUTH_LOGOUT,
    P.BILLING_READ, P.BILLING_UPDATE,
    P.QUOTA_READ,
]  # fmt: skip

_VIEWER_PERMISSIONS = [
    P.STORAGE_READ, P.STORAGE_LIST,
    P.BUCKET_LIST, P.BUCKET_READ,
    P.USER_READ,
    P.PROFILE_READ,
    P.APIKEY_LIST,
    P.AUTH_LOGIN, P.AUTH_LOGOUT,
    P.BILLING_READ,
    P.QUOTA_READ,
]  # fmt: skip

_GUEST_PERMISSIONS = [P.AUTH_LOGIN, P.AUTH_REGISTER]


def default_engine_config(settings: AccessCoreConfig | None = None) -> EngineConfig:
    """Build the default seed tables.

    System roles admin/user/viewer/guest, the built-in permission catalog,
    the static matrix (admin holds every built-in permission) and the
    developer/analyst/support/auditor templates.
    """
    roles = [
        RoleSeed(name=SystemRoles.ADMIN, display_name="Administrator", description="Full system access"),
        RoleSeed(name=SystemRoles.USER, display_name="User", description="Standard user access"),
        RoleSeed(name=SystemRoles.VIEWER, display_name="Viewer", description="Read-only access"),
        RoleSeed(name=SystemRoles.GUEST, display_name="Guest", description="Unauthenticated access"),
    ]
    for seed in roles:
        seed.priority = SystemRoles.PRIORITIES[seed.name]

    templates = [
        TemplateSeed(
            name="developer",
            display_name="Developer",
            description="Full access to development resources",
            permissions=[
                P.STORAGE_READ, P.STORAGE_WRITE, P.STORAGE_DELETE,
                P.BUCKET_CREATE, P.BUCKET_DELETE,
                P.APIKEY_CREATE, P.APIKEY_DELETE,
                P.USER_READ, P.PROFILE_READ, P.PROFILE_WRITE,
            ],  # fmt: skip
            inherits_from=[SystemRoles.USER],
            metadata={"department": "engineering", "level": "standard"},
        ),
        TemplateSeed(
            name="analyst",
            display_name="Data Analyst",
            description="Read access to data and reporting",
            permissions=[
                P.STORAGE_READ, P.STORAGE_LIST,
                "reports.read", "reports.generate",
                P.USER_READ, P.BILLING_READ, P.QUOTA_READ,
            ],  # fmt: skip
            inherits_from=[SystemRoles.VIEWER],
            metadata={"department": "analytics", "level": "standard"},
        ),
        TemplateSeed(
            name="support",
            display_name="Support Agent",
            description="Customer support access",
            permissions=[
                P.USER_READ, P.USER_WRITE,
                "ticket.manage", "ticket.view",
                P.STORAGE_READ, P.BUCKET_LIST,
                "activity.view",
            ],  # fmt: skip
            inherits_from=[SystemRoles.VIEWER],
            metadata={"department": "support", "level": "standard"},
        ),
        TemplateSeed(
            name="auditor",
            display_name="Security Auditor",
            description="Read-only access for compliance audits",
            permissions=[P.any_category("read"), "audit.view", "audit.export", "compliance.view"],
            inherits_from=[SystemRoles.VIEWER],
            metadata={"department": "security", "level": "elevated"},
        ),
    ]

    return EngineConfig(
        roles=roles,
        matrix={
            SystemRoles.ADMIN: list(P.all()),
            SystemRoles.USER: list(_USER_PERMISSIONS),
            SystemRoles.VIEWER: list(_VIEWER_PERMISSIONS),
            SystemRoles.GUEST: list(_GUEST_PERMISSIONS),
        },
        permissions=list(P.all()),
        templates=templates,
        settings=settings or AccessCoreConfig(),
    )


__all__ = [
    "AccessCoreConfig",
    "EngineConfig",
    "LogLevel",
    "RoleSeed",
    "TemplateSeed",
    "default_engine_config",
    "load_config_from_env",
]
