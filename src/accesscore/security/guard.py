"""Request-boundary guard.

Provides:
- ``EnforcementMode`` — off / warn / enforce.
- ``GuardConfig`` — guard switches and the identity metadata key.
- ``GuardResult`` — outcome of a guarded check (allowed/blocked).
- ``AccessGuard`` — rejects missing identities before the resolver is
  consulted, then turns a False decision into a denial.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import grpc

from ..exceptions import PermissionDeniedError, UnauthenticatedError
from ..permissions.conditions import PermissionContext

if TYPE_CHECKING:
    from ..engine import AccessEngine

logger = logging.getLogger(__name__)

USER_ID_METADATA_KEY = "x-user-id"


# ── Configuration ────────────────────────────────────────────────


class EnforcementMode(str, Enum):
    """Three-state enforcement toggle.

    - ``off``     — identity is still required, permissions are not checked.
    - ``warn``    — check permissions, log denials as WARNING, but allow through.
    - ``enforce`` — check permissions, deny on failure (production).
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"


@dataclass
class GuardConfig:
    """Guard switches.

    Attributes:
        enforcement: See :class:`EnforcementMode`.
        user_id_key: gRPC metadata key carrying the verified caller id.
        skip_methods: gRPC method prefixes that bypass the guard (health, reflection).
        log_allowed: Log allowed checks at DEBUG.
    """

    enforcement: EnforcementMode = EnforcementMode.ENFORCE
    user_id_key: str = USER_ID_METADATA_KEY
    skip_methods: list[str] = field(default_factory=lambda: ["grpc.health.v1", "grpc.reflection.v1"])
    log_allowed: bool = False


# ── Guard Result ─────────────────────────────────────────────────


@dataclass
class GuardResult:
    """Result of a guarded permission check."""

    allowed: bool = True
    reason: str = ""
    user_id: str = ""
    permission: str = ""
    authenticated: bool = True
    processing_ms: float = 0.0

    @property
    def blocked(self) -> bool:
        return not self.allowed


def extract_user_id(metadata: Any, key: str = USER_ID_METADATA_KEY) -> Optional[str]:
    """Caller id from gRPC metadata (a servicer context or a metadata sequence).

    Returns None when absent or blank.
    """
    if hasattr(metadata, "invocation_metadata"):
        metadata = metadata.invocation_metadata()
    value = dict(metadata or ()).get(key, "")
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    value = value.strip()
    return value or None


# ── Access Guard ─────────────────────────────────────────────────


class AccessGuard:
    """Boundary contract between a request layer and the engine.

    The identity passed in is assumed to be already authenticated; the
    guard only checks that one is present.
    """

    def __init__(self, engine: AccessEngine, config: GuardConfig | None = None) -> None:
        self.engine = engine
        self._config = config or GuardConfig()

    @property
    def config(self) -> GuardConfig:
        return self._config

    def should_skip(self, method: str) -> bool:
        return any(prefix in method for prefix in self._config.skip_methods)

    def check(
        self,
        user_id: Optional[str],
        permission: str,
        context: PermissionContext | None = None,
    ) -> GuardResult:
        """Never raises. Missing identity is blocked without consulting the resolver."""
        start = time.monotonic()
        result = GuardResult(user_id=user_id or "", permission=permission)

        if not user_id:
            result.allowed = False
            result.authenticated = False
            result.reason = "missing caller identity"
        elif self._config.enforcement != EnforcementMode.OFF:
            decision = self.engine.explain(user_id, permission, context)
            if not decision.allowed:
                if self._config.enforcement == EnforcementMode.WARN:
                    logger.warning(
                        "WARN_DENIED %s for %s (%s), would block in enforce mode",
                        permission,
                        user_id,
                        decision.reason,
                    )
                else:
                    result.allowed = False
                    result.reason = f"missing permission: {permission} ({decision.reason})"
            elif self._config.log_allowed:
                logger.debug("ALLOWED %s for %s via %s", permission, user_id, decision.role)

        result.processing_ms = (time.monotonic() - start) * 1000
        return result

    def require(
        self,
        user_id: Optional[str],
        permission: str,
        context: PermissionContext | None = None,
    ) -> GuardResult:
        """Like :meth:`check` but raises on a blocked result.

        Raises:
            UnauthenticatedError: no caller identity.
            PermissionDeniedError: the check was denied.
        """
        result = self.check(user_id, permission, context)
        if not result.authenticated:
            raise UnauthenticatedError(permission=permission)
        if result.blocked:
            raise PermissionDeniedError(result.reason, permission=permission, user_id=result.user_id)
        return result

    def authorize_grpc(
        self,
        context: grpc.ServicerContext,
        permission: str,
        perm_context: PermissionContext | None = None,
    ) -> Optional[str]:
        """Check the caller of a gRPC handler.

        Aborts with ``UNAUTHENTICATED`` when the id is missing and
        ``PERMISSION_DENIED`` when the check fails.

        Returns:
            The caller's user id.
        """
        user_id = extract_user_id(context, self._config.user_id_key)
        result = self.check(user_id, permission, perm_context)
        if not result.authenticated:
            context.abort(grpc.StatusCode.UNAUTHENTICATED, "Missing caller identity")
            return None
        if result.blocked:
            context.abort(grpc.StatusCode.PERMISSION_DENIED, result.reason)
            return None
        return user_id


__all__ = [
    "AccessGuard",
    "EnforcementMode",
    "GuardConfig",
    "GuardResult",
    "USER_ID_METADATA_KEY",
    "extract_user_id",
]
