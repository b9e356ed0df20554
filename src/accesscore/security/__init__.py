"""Request-boundary helpers.

Usage (in a gRPC service)::

    from accesscore.security import AccessGuard, AccessInterceptor

    guard = AccessGuard(engine)
    server = grpc.aio.server(interceptors=[AccessInterceptor(guard, RPC_MAP)])

    # Or inside a handler:
    user_id = guard.authorize_grpc(context, "storage.read")
"""

from __future__ import annotations

from .guard import (
    USER_ID_METADATA_KEY,
    AccessGuard,
    EnforcementMode,
    GuardConfig,
    GuardResult,
    extract_user_id,
)
from .interceptors import AccessInterceptor

__all__ = [
    "AccessGuard",
    "AccessInterceptor",
    "EnforcementMode",
    "GuardConfig",
    "GuardResult",
    "USER_ID_METADATA_KEY",
    "extract_user_id",
]
