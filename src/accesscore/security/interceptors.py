"""gRPC server interceptor enforcing per-RPC permissions.

Each RPC name maps to the permission it requires. Unmapped RPCs are
denied (fail closed). Identity comes from request metadata and is assumed
to be verified upstream.
"""

from __future__ import annotations

import logging
from typing import Any

import grpc

from .guard import AccessGuard, EnforcementMode, extract_user_id

logger = logging.getLogger(__name__)


def _extract_rpc_name(full_method: str) -> str:
    """``/storage.StorageService/Upload`` → ``Upload``"""
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


class AccessInterceptor(grpc.aio.ServerInterceptor):
    """Server interceptor backed by an :class:`AccessGuard`.

    Args:
        guard: Guard wrapping the engine.
        rpc_permission_map: Mapping of RPC name → required permission.
        service_name: Name used in log and abort messages.

    Usage::

        server = grpc.aio.server(interceptors=[
            AccessInterceptor(AccessGuard(engine), {"Upload": "storage.write"}),
        ])
    """

    def __init__(
        self,
        guard: AccessGuard,
        rpc_permission_map: dict[str, str],
        *,
        service_name: str = "Service",
    ) -> None:
        self._guard = guard
        self._rpc_map = dict(rpc_permission_map)
        self._service_name = service_name

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        method = handler_call_details.method or ""
        if self._guard.should_skip(method):
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        user_id = extract_user_id(handler_call_details.invocation_metadata, self._guard.config.user_id_key)
        required = self._rpc_map.get(rpc_name)

        deny_code = grpc.StatusCode.PERMISSION_DENIED
        if required is None:
            deny_reason = "RPC not mapped to permission"
        else:
            result = self._guard.check(user_id, required)
            deny_reason = result.reason if result.blocked else ""
            if not result.authenticated:
                deny_code = grpc.StatusCode.UNAUTHENTICATED

        if not deny_reason:
            return await continuation(handler_call_details)

        if self._guard.config.enforcement == EnforcementMode.WARN and deny_code != grpc.StatusCode.UNAUTHENTICATED:
            logger.warning("%s WARN_DENIED '%s': %s", self._service_name, rpc_name, deny_reason)
            return await continuation(handler_call_details)

        logger.warning("%s DENIED '%s' for %s: %s", self._service_name, rpc_name, user_id or "anonymous", deny_reason)
        deny_msg = f"{self._service_name}: {rpc_name} denied ({deny_reason})"

        async def _denied(request, context):
            await context.abort(deny_code, deny_msg)

        return grpc.unary_unary_rpc_method_handler(_denied)


__all__ = [
    "AccessInterceptor",
]
