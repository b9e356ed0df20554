from .config import (
    AccessCoreConfig,
    EngineConfig,
    LogLevel,
    RoleSeed,
    TemplateSeed,
    default_engine_config,
    load_config_from_env,
)
from .exceptions import (
    AccessCoreError,
    AccessDeniedError,
    ConfigurationError,
    ConflictError,
    LockOrderError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    UnauthenticatedError,
    ValidationError,
)
from .permissions import (
    AlwaysTrue,
    AttributeAtLeast,
    AttributeEquals,
    AttributeIn,
    Custom,
    PermissionContext,
    Permissions,
    SystemRoles,
)
from .audit import AuditAction, AuditEntry, AuditQuery, PermissionStats
from .resolver import Decision, DecisionReason, GrantSource
from .templates import BulkApplyResult, RoleTemplate, RoleWithPermissions
from .engine import AccessEngine, EngineSnapshot
from .maintenance import ExpirySweeper
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    AccessCoreFormatter,
    DecisionLoggerAdapter,
    setup_logging,
    get_access_logger,
)

__all__ = [
    'AccessEngine',
    'EngineSnapshot',
    'ExpirySweeper',
    'AccessCoreConfig',
    'EngineConfig',
    'LogLevel',
    'RoleSeed',
    'TemplateSeed',
    'default_engine_config',
    'load_config_from_env',
    'AccessCoreError',
    'AccessDeniedError',
    'ConfigurationError',
    'ConflictError',
    'LockOrderError',
    'NotFoundError',
    'PermissionDeniedError',
    'StateError',
    'UnauthenticatedError',
    'ValidationError',
    'AlwaysTrue',
    'AttributeAtLeast',
    'AttributeEquals',
    'AttributeIn',
    'Custom',
    'PermissionContext',
    'Permissions',
    'SystemRoles',
    'AuditAction',
    'AuditEntry',
    'AuditQuery',
    'PermissionStats',
    'Decision',
    'DecisionReason',
    'GrantSource',
    'BulkApplyResult',
    'RoleTemplate',
    'RoleWithPermissions',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'AccessCoreFormatter',
    'DecisionLoggerAdapter',
    'setup_logging',
    'get_access_logger',
]
