"""Error types raised by accesscore and their gRPC translation.

All engine failures derive from :class:`AccessCoreError` and carry a stable
``code`` string. Adapters map that code to a transport status through
``error_registry`` / :func:`get_grpc_status_code`, and admin RPCs can be
wrapped with :func:`grpc_error_handler`.

    from accesscore.exceptions import ConflictError, NotFoundError

Idempotent operations (re-assigning a held role, revoking an absent one,
removing a missing edge or grant) report success and do not raise.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar, cast

__all__ = [
    "AccessCoreError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StateError",
    "ConfigurationError",
    "LockOrderError",
    "AccessDeniedError",
    "UnauthenticatedError",
    "PermissionDeniedError",
    "ErrorRegistry",
    "error_registry",
    "register_error",
    "get_grpc_status_code",
    "grpc_error_handler",
]

logger = logging.getLogger(__name__)


# ── Hierarchy ──────────────────────────────────────────────────────────────


class AccessCoreError(Exception):
    """Root of every accesscore error.

    Attributes:
        code: Stable machine-readable code, e.g. ``"NOT_FOUND"``.
        message: Text shown to operators and returned to RPC callers.
        details: Keyword context (role, permission, user_id, ...).
    """

    code: str = "INTERNAL_ERROR"
    message: str = "Internal access-control failure"

    def __init__(self, message: str | None = None, code: str | None = None, **details: Any) -> None:
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details
        super().__init__(self.message)


class ValidationError(AccessCoreError):
    """Malformed role name, permission string, or template definition."""

    code: str = "VALIDATION_ERROR"
    message: str = "Invalid input"


class NotFoundError(AccessCoreError):
    """Unknown role, permission, template, or template version."""

    code: str = "NOT_FOUND"
    message: str = "Resource not found"


class ConflictError(AccessCoreError):
    """Duplicate registration or circular inheritance."""

    code: str = "CONFLICT"
    message: str = "Conflicting state"


class StateError(AccessCoreError):
    """Operation not allowed in the current state (e.g. deleting a system role)."""

    code: str = "STATE_ERROR"
    message: str = "Operation not allowed"


class ConfigurationError(AccessCoreError):
    """Invalid or missing seed configuration."""

    code: str = "CONFIGURATION_ERROR"


class LockOrderError(AccessCoreError):
    """A component lock was requested out of the global acquisition order."""

    code: str = "LOCK_ORDER_ERROR"


class AccessDeniedError(AccessCoreError):
    """Base for decisions surfaced as errors at the request boundary."""

    code: str = "ACCESS_DENIED"


class UnauthenticatedError(AccessDeniedError):
    """Caller identity missing; rejected before the resolver is consulted."""

    code: str = "UNAUTHENTICATED"
    message: str = "Missing caller identity"


class PermissionDeniedError(AccessDeniedError):
    """The resolver answered False for the requested permission."""

    code: str = "PERMISSION_DENIED"
    message: str = "Permission denied"


# ── Error registry ─────────────────────────────────────────────────────────

_E = TypeVar("_E", bound=type[AccessCoreError])


class ErrorRegistry:
    """Code → exception class lookup used by protocol adapters."""

    def __init__(self) -> None:
        self._by_code: dict[str, type[AccessCoreError]] = {}

    def register(self, code: str, error_cls: type[AccessCoreError]) -> None:
        previous = self._by_code.get(code)
        if previous is not None and previous is not error_cls:
            logger.warning("Error code %s rebound from %s to %s", code, previous.__name__, error_cls.__name__)
        self._by_code[code] = error_cls

    def get(self, code: str) -> type[AccessCoreError] | None:
        return self._by_code.get(code)

    def all(self) -> dict[str, type[AccessCoreError]]:
        return dict(self._by_code)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Class decorator adding an application error to ``error_registry``.

    Example::

        @register_error("QUOTA_ERROR")
        class QuotaError(AccessCoreError):
            code = "QUOTA_ERROR"
    """

    def _register(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], _register)


for _builtin in (
    AccessCoreError,
    ValidationError,
    NotFoundError,
    ConflictError,
    StateError,
    ConfigurationError,
    LockOrderError,
    AccessDeniedError,
    UnauthenticatedError,
    PermissionDeniedError,
):
    error_registry.register(_builtin.code, _builtin)


# ── gRPC mapping ───────────────────────────────────────────────────────────

# Values are grpc.StatusCode member names; grpc is imported on first use.
_STATUS_NAMES: dict[str, str] = {
    "VALIDATION_ERROR": "INVALID_ARGUMENT",
    "NOT_FOUND": "NOT_FOUND",
    "CONFLICT": "ALREADY_EXISTS",
    "STATE_ERROR": "FAILED_PRECONDITION",
    "CONFIGURATION_ERROR": "FAILED_PRECONDITION",
    "UNAUTHENTICATED": "UNAUTHENTICATED",
    "PERMISSION_DENIED": "PERMISSION_DENIED",
    "ACCESS_DENIED": "PERMISSION_DENIED",
}


def get_grpc_status_code(error: AccessCoreError) -> Any:
    """Translate an engine error into a ``grpc.StatusCode`` (INTERNAL if unmapped)."""
    import grpc

    return getattr(grpc.StatusCode, _STATUS_NAMES.get(error.code, "INTERNAL"))


def grpc_error_handler(method):
    """Wrap an async unary admin RPC so engine errors become gRPC aborts.

    The error code is also sent as ``error-code`` trailing metadata so
    clients can branch on it without parsing the message.

    Example::

        @grpc_error_handler
        async def AssignRole(self, request, context):
            ...
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            return await method(self, request, context)
        except AccessCoreError as exc:
            text = f"[{exc.code}] {exc.message}"
            logger.error(
                "%s rejected: %s",
                method.__name__,
                text,
                extra={"error_code": exc.code, "error_details": exc.details},
            )
            context.set_trailing_metadata([("error-code", exc.code)])
            await context.abort(get_grpc_status_code(exc), text)
        except Exception as exc:
            import grpc

            logger.exception("%s crashed", method.__name__)
            await context.abort(grpc.StatusCode.INTERNAL, f"{type(exc).__name__}: {exc}")

    return wrapper
