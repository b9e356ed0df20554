"""The permission decision function.

``Resolver.has_permission(user, permission, context)`` decides:

0. A permission missing from the catalog is denied (fail closed).
1. ``roles`` = the user's direct roles plus every inherited role.
2. A denial on any role in ``roles`` denies.
3. Otherwise allowed if any role in ``roles`` has the permission through
   the static matrix, a static grant or a live temporary grant, and, for a
   conditional permission, its condition holds for ``context``.
4. Otherwise denied.

The resolver only reads. It takes read locks on the components it touches
in global rank order and never evicts expired grants.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from pydantic import BaseModel

from .locking import ordered
from .permissions.conditions import ConditionRegistry, PermissionContext, evaluate_condition

if TYPE_CHECKING:
    from .permissions.catalog import PermissionCatalog
    from .permissions.grants import GrantOverlay
    from .roles.assignments import AssignmentStore
    from .roles.inheritance import InheritanceGraph
    from .roles.registry import RoleRegistry

logger = logging.getLogger(__name__)


class DecisionReason(str, Enum):
    GRANTED = "granted"
    UNKNOWN_PERMISSION = "unknown_permission"
    DENIED = "denied"
    CONDITION_FAILED = "condition_failed"
    NO_GRANT = "no_grant"


class GrantSource(str, Enum):
    MATRIX = "matrix"
    STATIC = "static"
    TEMPORARY = "temporary"


class Decision(BaseModel):
    """Outcome of a check with the path that produced it."""

    user_id: str
    permission: str
    allowed: bool
    reason: DecisionReason
    role: Optional[str] = None
    source: Optional[GrantSource] = None
    roles: list[str] = []

    model_config = {"use_enum_values": True}


class Resolver:
    """Combines assignments, inheritance, matrix and overlay into one answer."""

    def __init__(
        self,
        catalog: PermissionCatalog,
        registry: RoleRegistry,
        graph: InheritanceGraph,
        assignments: AssignmentStore,
        overlay: GrantOverlay,
        conditions: ConditionRegistry | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._catalog = catalog
        self._registry = registry
        self._graph = graph
        self._assignments = assignments
        self._overlay = overlay
        self._conditions = conditions or ConditionRegistry()
        self._clock = clock

    def _read_locks(self):
        return ordered(
            self._catalog.lock,
            self._registry.lock,
            self._graph.lock,
            self._assignments.lock,
            self._overlay.lock,
            mode="read",
        )

    def _expand(self, roles: Iterable[str]) -> list[str]:
        expanded: set[str] = set()
        for role in roles:
            expanded.add(role)
            expanded |= self._graph.get_inherited_roles(role)
        return sorted(expanded)

    def _source(self, role: str, permission: str, now: float) -> GrantSource | None:
        if self._registry.matrix_allows(role, permission):
            return GrantSource.MATRIX
        if self._overlay.has_static(role, permission):
            return GrantSource.STATIC
        if self._overlay.has_temporary(role, permission, now):
            return GrantSource.TEMPORARY
        return None

    def _decide(
        self,
        subject: str,
        permission: str,
        direct_roles: Callable[[], Iterable[str]],
        context: PermissionContext | None,
    ) -> Decision:
        now = self._clock()
        with self._read_locks():
            definition = self._catalog.find(permission)
            if definition is None:
                return Decision(
                    user_id=subject,
                    permission=permission,
                    allowed=False,
                    reason=DecisionReason.UNKNOWN_PERMISSION,
                )
            roles = self._expand(direct_roles())
            for role in roles:
                if self._overlay.is_denied(role, permission):
                    return Decision(
                        user_id=subject,
                        permission=permission,
                        allowed=False,
                        reason=DecisionReason.DENIED,
                        role=role,
                        roles=roles,
                    )
            matched: tuple[str, GrantSource] | None = None
            for role in roles:
                source = self._source(role, permission, now)
                if source is not None:
                    matched = (role, source)
                    break

        if matched is None:
            return Decision(
                user_id=subject,
                permission=permission,
                allowed=False,
                reason=DecisionReason.NO_GRANT,
                roles=roles,
            )
        role, source = matched
        # Predicates are caller code; evaluate them outside the locks.
        if definition.condition is not None and not evaluate_condition(
            definition.condition, context, self._conditions
        ):
            return Decision(
                user_id=subject,
                permission=permission,
                allowed=False,
                reason=DecisionReason.CONDITION_FAILED,
                role=role,
                source=source,
                roles=roles,
            )
        return Decision(
            user_id=subject,
            permission=permission,
            allowed=True,
            reason=DecisionReason.GRANTED,
            role=role,
            source=source,
            roles=roles,
        )

    # ── user checks ─────────────────────────────────────

    def explain(self, user_id: str, permission: str, context: PermissionContext | None = None) -> Decision:
        """Decide and report which path allowed or denied the check."""
        return self._decide(
            user_id,
            permission,
            lambda: self._assignments.get_user_roles(user_id),
            context,
        )

    def has_permission(self, user_id: str, permission: str, context: PermissionContext | None = None) -> bool:
        return self.explain(user_id, permission, context).allowed

    def has_all_permissions(
        self,
        user_id: str,
        permissions: Iterable[str],
        context: PermissionContext | None = None,
    ) -> bool:
        """True if every permission resolves allowed. An empty list is True."""
        return all(self.has_permission(user_id, p, context) for p in permissions)

    def has_any_permission(
        self,
        user_id: str,
        permissions: Iterable[str],
        context: PermissionContext | None = None,
    ) -> bool:
        return any(self.has_permission(user_id, p, context) for p in permissions)

    def role_has_permission(self, role: str, permission: str, context: PermissionContext | None = None) -> bool:
        """Decide for a role (and its ancestors) rather than a user."""
        return self._decide(f"role:{role}", permission, lambda: [role], context).allowed

    def effective_roles(self, user_id: str) -> list[str]:
        """Direct roles plus every inherited role, sorted."""
        with ordered(self._graph.lock, self._assignments.lock, mode="read"):
            return self._expand(self._assignments.get_user_roles(user_id))

    def effective_permissions(self, user_id: str, context: PermissionContext | None = None) -> list[str]:
        """Every registered permission that resolves allowed for ``user_id``."""
        now = self._clock()
        with self._read_locks():
            roles = self._expand(self._assignments.get_user_roles(user_id))
            candidates: set[str] = set()
            denied: set[str] = set()
            for role in roles:
                candidates |= self._registry.matrix_permissions(role)
                candidates |= self._overlay.granted_permissions(role, now)
                denied |= set(self._overlay.grants_for_role(role).denied)
            conditional = {}
            allowed = []
            for permission in sorted(candidates - denied):
                definition = self._catalog.find(permission)
                if definition is None:
                    continue
                if definition.condition is not None:
                    conditional[permission] = definition.condition
                else:
                    allowed.append(permission)
        for permission, condition in conditional.items():
            if evaluate_condition(condition, context, self._conditions):
                allowed.append(permission)
        return sorted(allowed)


__all__ = [
    "Decision",
    "DecisionReason",
    "GrantSource",
    "Resolver",
]
