"""AccessEngine: the composition root.

Wires catalog, role registry, inheritance graph, assignment store, grant
overlay, resolver, template engine and audit log together by explicit
composition. Every operation that spans components takes the component
locks in global rank order; mutations are recorded in the audit log after
the state change is committed.

Example::

    engine = AccessEngine()
    engine.assign_role("u-1", "viewer")
    engine.has_permission("u-1", Permissions.STORAGE_READ)  # True
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, Field

from .audit import AuditEntry, AuditLog, AuditQuery, PermissionStats
from .config import EngineConfig, default_engine_config
from .exceptions import AccessCoreError, ConfigurationError, NotFoundError, PermissionDeniedError, UnauthenticatedError
from .locking import ordered
from .permissions.catalog import PermissionCatalog, PermissionDefinition
from .permissions.conditions import ConditionRegistry, PermissionContext, Predicate
from .permissions.grants import GrantOverlay, PermissionGroup, RoleGrants
from .resolver import Decision, Resolver
from .roles.assignments import AssignmentStore, RoleAssignment
from .roles.inheritance import InheritanceEdge, InheritanceGraph
from .roles.registry import Role, RoleRegistry
from .templates import BulkApplyResult, RoleTemplate, RoleWithPermissions, TemplateEngine, TemplateHistory

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class EngineSnapshot(BaseModel):
    """Complete engine state as plain records, for an external store."""

    version: int = SNAPSHOT_VERSION
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    permissions: list[PermissionDefinition] = Field(default_factory=list)
    roles: list[Role] = Field(default_factory=list)
    matrix: dict[str, list[str]] = Field(default_factory=dict)
    edges: list[InheritanceEdge] = Field(default_factory=list)
    assignments: list[RoleAssignment] = Field(default_factory=list)
    grants: list[RoleGrants] = Field(default_factory=list)
    groups: list[PermissionGroup] = Field(default_factory=list)
    templates: list[TemplateHistory] = Field(default_factory=list)
    user_templates: dict[str, list[str]] = Field(default_factory=dict)
    audit: list[AuditEntry] = Field(default_factory=list)


def _context_fields(context: PermissionContext | None) -> dict[str, str]:
    if context is None:
        return {}
    fields = {k: v for k, v in (("resource_id", context.resource_id), ("action", context.action)) if v}
    fields.update(context.metadata)
    return fields


class AccessEngine:
    """Role/permission decision engine.

    Args:
        config: Seed tables and runtime settings. Defaults to
            :func:`default_engine_config`, freshly built per engine.
        clock: Wall-clock source in unix seconds, shared by every
            time-dependent component.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config if config is not None else default_engine_config()
        self.settings = self.config.settings
        self._clock = clock

        seeded_roles = {seed.name for seed in self.config.roles}
        unknown = sorted(set(self.config.matrix) - seeded_roles)
        if unknown:
            raise ConfigurationError(f"Permission matrix references unknown roles: {unknown}", roles=unknown)

        defaults = list(self.config.permissions)
        for perms in self.config.matrix.values():
            defaults.extend(perms)

        self.catalog = PermissionCatalog(defaults)
        self.roles = RoleRegistry(
            [
                Role(
                    name=seed.name,
                    display_name=seed.display_name or seed.name,
                    description=seed.description,
                    priority=seed.priority,
                    is_system=True,
                )
                for seed in self.config.roles
            ],
            self.config.matrix,
        )
        self.graph = InheritanceGraph()
        self.assignments = AssignmentStore(self.roles)
        self.overlay = GrantOverlay(self.catalog, clock=clock)
        self.conditions = ConditionRegistry()
        self.resolver = Resolver(
            self.catalog,
            self.roles,
            self.graph,
            self.assignments,
            self.overlay,
            self.conditions,
            clock=clock,
        )
        self.templates = TemplateEngine(
            self.catalog,
            self.roles,
            self.graph,
            self.assignments,
            self.overlay,
            on_grant=self._log_template_grant,
        )
        self.audit = AuditLog(
            self.settings.audit_max_entries,
            enabled=self.settings.audit_enabled,
            record_checks=self.settings.audit_checks,
            clock=clock,
        )
        for seed in self.config.templates:
            self.templates.register_template(seed)

        logger.info(
            "Access engine ready: %d roles, %d permissions, %d templates",
            len(self.roles),
            len(self.catalog),
            len(self.config.templates),
        )

    def _all_locks(self):
        return ordered(
            self.catalog.lock,
            self.roles.lock,
            self.graph.lock,
            self.assignments.lock,
            self.overlay.lock,
            self.templates.lock,
            self.audit.lock,
        )

    def _require_role(self, role: str) -> None:
        if not self.roles.exists(role):
            raise NotFoundError(f"Role {role} not found", role=role)

    # ── permission catalog ──────────────────────────────

    def register_permission(
        self,
        name: str,
        display_name: str | None = None,
        category: str | None = None,
        description: str = "",
    ) -> PermissionDefinition:
        return self.catalog.register(name, display_name, category, description)

    def register_conditional(
        self,
        name: str,
        condition: Any,
        display_name: str | None = None,
        category: str | None = None,
    ) -> PermissionDefinition:
        """Attach a condition to ``name`` (registering it if new).

        ``condition`` is a condition model or its dumped dict form.
        """
        return self.catalog.set_condition(name, condition, display_name, category)

    def register_predicate(self, name: str, predicate: Predicate, *, replace: bool = False) -> None:
        """Make ``predicate`` available to ``Custom(name=...)`` conditions."""
        self.conditions.register(name, predicate, replace=replace)

    def unregister_permission(self, name: str) -> bool:
        """Remove ``name`` from the catalog and drop every grant of it.

        Checks of ``name`` resolve False afterwards. Unregistering a
        permission that is already gone returns False.
        """
        with ordered(self.catalog.lock, self.overlay.lock):
            if not self.catalog.exists(name):
                return False
            self.catalog.unregister(name)
            removed = self.overlay.purge_permission(name)
        logger.info("Unregistered permission %s (%d grants dropped)", name, removed)
        return True

    def get_permission(self, name: str) -> PermissionDefinition:
        return self.catalog.get(name)

    def list_permissions(self, category: str | None = None) -> list[PermissionDefinition]:
        if category is None:
            return self.catalog.list_all()
        return self.catalog.list_by_category(category)

    # ── roles ───────────────────────────────────────────

    def create_role(
        self,
        name: str,
        display_name: str | None = None,
        *,
        priority: int = 0,
        description: str = "",
        inherits_from: Iterable[str] = (),
    ) -> Role:
        """Create a custom role, optionally inheriting from existing roles.

        The role and its edges are created together; if a parent is unknown
        or an edge would cycle nothing is created.
        """
        parents = list(inherits_from)
        with ordered(self.roles.lock, self.graph.lock):
            for parent in parents:
                self._require_role(parent)
            role = self.roles.create_role(name, display_name, priority=priority, description=description)
            try:
                self.graph.add_edges(name, parents)
            except AccessCoreError:
                self.roles.delete_role(name)
                raise
        return role

    def delete_role(self, name: str, performed_by: str | None = None) -> Role:
        """Delete a custom role along with its edges, assignments and grants."""
        with ordered(self.roles.lock, self.graph.lock, self.assignments.lock, self.overlay.lock):
            role = self.roles.delete_role(name)
            self.graph.remove_role(name)
            affected = self.assignments.remove_role(name)
            self.overlay.purge_role(name)
        self.templates.forget_role(name, affected)
        for user_id in affected:
            self.audit.log_role_change(user_id, performed_by, name, assigned=False)
        return role

    def rename_role(self, old: str, new: str) -> Role:
        with ordered(self.roles.lock, self.graph.lock, self.assignments.lock, self.overlay.lock):
            role = self.roles.rename_role(old, new)
            self.graph.rename_role(old, new)
            self.assignments.rename_role(old, new)
            self.overlay.rename_role(old, new)
        return role

    def get_role(self, name: str) -> Role:
        return self.roles.get(name)

    def list_roles(self) -> list[Role]:
        return self.roles.list_roles()

    # ── inheritance ─────────────────────────────────────

    def add_inheritance(self, child: str, parent: str) -> bool:
        """Make ``child`` inherit ``parent``. Both roles must exist."""
        with self.roles.lock.read(), self.graph.lock.write():
            self._require_role(child)
            self._require_role(parent)
            return self.graph.add_edge(child, parent)

    def remove_inheritance(self, child: str, parent: str) -> bool:
        return self.graph.remove_edge(child, parent)

    def get_inherited_roles(self, role: str) -> set[str]:
        return self.graph.get_inherited_roles(role)

    def get_role_depth(self, role: str) -> int:
        return self.graph.get_depth(role)

    def find_common_ancestor(self, a: str, b: str) -> str | None:
        return self.graph.find_common_ancestor(a, b)

    # ── assignments ─────────────────────────────────────

    def assign_role(self, user_id: str, role: str, performed_by: str | None = None) -> bool:
        """Assign ``role`` to ``user_id``. Assigning a held role returns False."""
        added = self.assignments.assign_role(user_id, role, granted_by=performed_by)
        if added:
            self.audit.log_role_change(user_id, performed_by, role, assigned=True)
        return added

    def revoke_role(self, user_id: str, role: str, performed_by: str | None = None) -> bool:
        """Revoke ``role``. Revoking a role the user lacks returns False."""
        removed = self.assignments.revoke_role(user_id, role)
        if removed:
            self.audit.log_role_change(user_id, performed_by, role, assigned=False)
        return removed

    def revoke_all_roles(self, user_id: str, performed_by: str | None = None) -> list[str]:
        roles = self.assignments.revoke_all_roles(user_id)
        self.templates.forget_user(user_id)
        for role in roles:
            self.audit.log_role_change(user_id, performed_by, role, assigned=False)
        return roles

    def get_user_roles(self, user_id: str) -> list[str]:
        return self.assignments.get_user_roles(user_id)

    def user_has_role(self, user_id: str, role: str) -> bool:
        return self.assignments.user_has_role(user_id, role)

    def get_highest_role(self, user_id: str) -> str | None:
        return self.assignments.get_highest_role(user_id)

    def get_users_with_role(self, role: str) -> list[str]:
        return self.assignments.get_users_with_role(role)

    # ── grants ──────────────────────────────────────────

    def _log_grant(self, role: str, permission: str, granted: bool, performed_by: str | None, **context: str) -> None:
        self.audit.log_grant_change("", performed_by, permission, granted, role=role, context=context)

    def _log_template_grant(self, role: str, permission: str, template: str, performed_by: str | None) -> None:
        self._log_grant(role, permission, True, performed_by, template=template)

    def grant_permission(self, role: str, permission: str, performed_by: str | None = None) -> bool:
        """Static grant of ``permission`` to ``role``. Idempotent."""
        with self.catalog.lock.read(), self.roles.lock.read(), self.overlay.lock.write():
            self._require_role(role)
            added = self.overlay.grant_static(role, permission)
        if added:
            self._log_grant(role, permission, True, performed_by)
        return added

    def revoke_permission(self, role: str, permission: str, performed_by: str | None = None) -> bool:
        removed = self.overlay.revoke_static(role, permission)
        if removed:
            self._log_grant(role, permission, False, performed_by)
        return removed

    def grant_temporary(
        self,
        role: str,
        permission: str,
        ttl_seconds: float,
        performed_by: str | None = None,
    ) -> float:
        """Grant until ``now + ttl_seconds``; returns the expiry timestamp."""
        with self.catalog.lock.read(), self.roles.lock.read(), self.overlay.lock.write():
            self._require_role(role)
            expiry = self.overlay.grant_temporary(role, permission, ttl_seconds)
        self._log_grant(role, permission, True, performed_by, ttl_seconds=str(ttl_seconds))
        return expiry

    def revoke_temporary(self, role: str, permission: str, performed_by: str | None = None) -> bool:
        removed = self.overlay.revoke_temporary(role, permission)
        if removed:
            self._log_grant(role, permission, False, performed_by, grant="temporary")
        return removed

    def get_remaining_ttl(self, role: str, permission: str) -> int:
        return self.overlay.get_remaining_ttl(role, permission)

    def deny_permission(self, role: str, permission: str, performed_by: str | None = None) -> bool:
        """Deny ``permission`` for ``role`` and every role inheriting it."""
        with self.roles.lock.read(), self.overlay.lock.write():
            self._require_role(role)
            added = self.overlay.deny(role, permission)
        if added:
            self._log_grant(role, permission, False, performed_by, grant="denial")
        return added

    def undeny_permission(self, role: str, permission: str, performed_by: str | None = None) -> bool:
        removed = self.overlay.undeny(role, permission)
        if removed:
            self._log_grant(role, permission, True, performed_by, grant="denial_lifted")
        return removed

    def grant_group(
        self,
        role: str,
        group_name: str,
        permissions: Iterable[str],
        performed_by: str | None = None,
    ) -> list[str]:
        with self.catalog.lock.read(), self.roles.lock.read(), self.overlay.lock.write():
            self._require_role(role)
            added = self.overlay.grant_group(role, group_name, permissions)
        for permission in added:
            self._log_grant(role, permission, True, performed_by, group=group_name)
        return added

    def get_role_grants(self, role: str) -> RoleGrants:
        return self.overlay.grants_for_role(role)

    # ── decisions ───────────────────────────────────────

    def explain(self, user_id: str, permission: str, context: PermissionContext | None = None) -> Decision:
        decision = self.resolver.explain(user_id, permission, context)
        audit_context = _context_fields(context)
        audit_context["reason"] = str(decision.reason)
        self.audit.log_check(
            user_id,
            permission,
            decision.allowed,
            context=audit_context,
            resource=context.resource_id if context is not None else None,
        )
        return decision

    def has_permission(self, user_id: str, permission: str, context: PermissionContext | None = None) -> bool:
        return self.explain(user_id, permission, context).allowed

    def has_all_permissions(
        self,
        user_id: str,
        permissions: Iterable[str],
        context: PermissionContext | None = None,
    ) -> bool:
        return all(self.has_permission(user_id, p, context) for p in permissions)

    def has_any_permission(
        self,
        user_id: str,
        permissions: Iterable[str],
        context: PermissionContext | None = None,
    ) -> bool:
        return any(self.has_permission(user_id, p, context) for p in permissions)

    def require(self, user_id: Optional[str], permission: str, context: PermissionContext | None = None) -> Decision:
        """Raise unless ``user_id`` is present and allowed ``permission``.

        Raises:
            UnauthenticatedError: no caller identity (the resolver is not consulted).
            PermissionDeniedError: the check resolved False.
        """
        if not user_id:
            raise UnauthenticatedError(permission=permission)
        decision = self.explain(user_id, permission, context)
        if not decision.allowed:
            raise PermissionDeniedError(
                f"Permission denied: {permission}",
                permission=permission,
                user_id=user_id,
                reason=str(decision.reason),
            )
        return decision

    def role_has_permission(self, role: str, permission: str, context: PermissionContext | None = None) -> bool:
        return self.resolver.role_has_permission(role, permission, context)

    def effective_roles(self, user_id: str) -> list[str]:
        return self.resolver.effective_roles(user_id)

    def effective_permissions(self, user_id: str, context: PermissionContext | None = None) -> list[str]:
        return self.resolver.effective_permissions(user_id, context)

    # ── templates ───────────────────────────────────────

    def register_template(self, template: RoleTemplate | BaseModel | dict) -> RoleTemplate:
        return self.templates.register_template(template)

    def get_template(self, name: str) -> RoleTemplate:
        return self.templates.get_template(name)

    def get_template_version(self, name: str) -> int:
        return self.templates.get_template_version(name)

    def list_templates(self) -> list[RoleTemplate]:
        return self.templates.list_templates()

    def update_template(self, name: str, definition: RoleTemplate | BaseModel | dict) -> RoleTemplate:
        return self.templates.update_template(name, definition)

    def revert_template(self, name: str, version: int) -> RoleTemplate:
        return self.templates.revert_template(name, version)

    def combine_templates(self, new_name: str, names: Iterable[str]) -> RoleTemplate:
        return self.templates.combine_templates(new_name, names)

    def create_role_from_template(self, name: str, performed_by: str | None = None) -> RoleWithPermissions:
        return self.templates.create_role_from_template(name, performed_by=performed_by)

    def apply_template_to_role(self, role: str, template_name: str, performed_by: str | None = None) -> list[str]:
        return self.templates.apply_template_to_role(role, template_name, performed_by=performed_by)

    def bulk_apply_template(
        self,
        template_name: str,
        user_ids: Iterable[str],
        performed_by: str | None = None,
    ) -> list[BulkApplyResult]:
        results = self.templates.bulk_apply_template(template_name, user_ids, granted_by=performed_by)
        for result in results:
            if result.success:
                self.audit.log_role_change(result.user_id, performed_by, template_name, assigned=True)
        return results

    def user_has_template(self, user_id: str, template_name: str) -> bool:
        return self.templates.user_has_template(user_id, template_name)

    # ── audit ───────────────────────────────────────────

    def query_audit(self, query: AuditQuery | None = None) -> list[AuditEntry]:
        return self.audit.query(query)

    def permission_stats(self, permission: str) -> PermissionStats:
        return self.audit.stats(permission)

    # ── maintenance ─────────────────────────────────────

    def evict_expired(self) -> int:
        """Reclaim memory held by expired temporary grants."""
        return self.overlay.evict_expired()

    def prune_audit(self, retention: float | timedelta | None = None) -> int:
        """Prune audit entries older than ``retention`` (default from settings)."""
        if retention is None:
            retention = self.settings.audit_retention_seconds
        return self.audit.prune(retention)

    # ── snapshot / restore ──────────────────────────────

    def snapshot(self) -> EngineSnapshot:
        """Consistent copy of every component, taken under all read locks."""
        with ordered(
            self.catalog.lock,
            self.roles.lock,
            self.graph.lock,
            self.assignments.lock,
            self.overlay.lock,
            self.templates.lock,
            self.audit.lock,
            mode="read",
        ):
            grants, groups = self.overlay.dump()
            templates, user_templates = self.templates.dump()
            return EngineSnapshot(
                permissions=self.catalog.dump(),
                roles=self.roles.list_roles(),
                matrix=self.roles.matrix(),
                edges=self.graph.dump(),
                assignments=self.assignments.dump(),
                grants=grants,
                groups=groups,
                templates=templates,
                user_templates=user_templates,
                audit=self.audit.dump(),
            )

    def restore(self, snapshot: EngineSnapshot | dict) -> None:
        """Replace all state with ``snapshot``.

        The snapshot is validated (version, acyclic edges, known roles)
        before any component is touched.
        """
        snap = snapshot if isinstance(snapshot, EngineSnapshot) else EngineSnapshot.model_validate(snapshot)
        if snap.version != SNAPSHOT_VERSION:
            raise ConfigurationError(f"Unsupported snapshot version {snap.version}", version=snap.version)
        role_names = {r.name for r in snap.roles}
        referenced = {e.child for e in snap.edges} | {e.parent for e in snap.edges} | {a.role for a in snap.assignments}
        dangling = sorted(referenced - role_names)
        if dangling:
            raise ConfigurationError(f"Snapshot references unknown roles: {dangling}", roles=dangling)
        for history in snap.templates:
            if history.current not in {t.version for t in history.versions}:
                raise ConfigurationError(
                    f"Template {history.name} has no version {history.current}",
                    template=history.name,
                )
        InheritanceGraph().load(snap.edges)

        with self._all_locks():
            self.catalog.load(snap.permissions)
            self.roles.load(snap.roles, snap.matrix)
            self.graph.load(snap.edges)
            self.assignments.load(snap.assignments)
            self.overlay.load(snap.grants, snap.groups)
            self.templates.load(snap.templates, snap.user_templates)
            self.audit.load(snap.audit)
        logger.info(
            "Restored snapshot taken at %s (%d roles, %d assignments)",
            snap.taken_at.isoformat(),
            len(snap.roles),
            len(snap.assignments),
        )


__all__ = [
    "AccessEngine",
    "EngineSnapshot",
    "SNAPSHOT_VERSION",
]
