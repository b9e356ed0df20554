"""Versioned role templates.

A template is a named bundle of permissions plus inheritance declarations
that can be instantiated as a role. Permission entries may be wildcards
(``storage.*``, ``*.read``); they are expanded against the catalog at the
moment a template is applied, so permissions registered later are not
granted retroactively.

History is immutable. Every update stores a new version; a revert stores
yet another version whose content equals the requested one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from pydantic import BaseModel, Field, field_validator

from .exceptions import AccessCoreError, ConflictError, NotFoundError, ValidationError
from .locking import LockRank, RWLock, ordered
from .naming import is_wildcard, validate_permission_entry, validate_role_name
from .roles.registry import Role

if TYPE_CHECKING:
    from .permissions.catalog import PermissionCatalog
    from .permissions.grants import GrantOverlay
    from .roles.assignments import AssignmentStore
    from .roles.inheritance import InheritanceGraph
    from .roles.registry import RoleRegistry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RoleTemplate(BaseModel):
    name: str
    display_name: str = ""
    description: str = ""
    permissions: list[str] = Field(default_factory=list)
    inherits_from: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    version: int = 1
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_role_name(v)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: list[str]) -> list[str]:
        return [validate_permission_entry(p) for p in dict.fromkeys(v)]

    @field_validator("inherits_from")
    @classmethod
    def validate_parents(cls, v: list[str]) -> list[str]:
        return [validate_role_name(r) for r in dict.fromkeys(v)]


class RoleWithPermissions(BaseModel):
    """Result of instantiating a template."""

    role: Role
    permissions: list[str] = Field(default_factory=list)
    inherits_from: list[str] = Field(default_factory=list)
    template_version: int = 0


class BulkApplyResult(BaseModel):
    user_id: str
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None


class TemplateHistory(BaseModel):
    """Every stored version of one template (snapshot record)."""

    name: str
    current: int
    versions: list[RoleTemplate] = Field(default_factory=list)


def _as_template(definition: RoleTemplate | BaseModel | dict, **overrides) -> RoleTemplate:
    if isinstance(definition, BaseModel):
        data = definition.model_dump()
    else:
        data = dict(definition)
    data.update(overrides)
    return RoleTemplate.model_validate(data)


class TemplateEngine:
    """Stores templates and applies them to roles and users.

    Writes into the catalog, role registry, inheritance graph and grant
    overlay. Multi-component writes hold all their locks at once, taken in
    global rank order.

    Args:
        on_grant: Called as ``on_grant(role, permission, template, performed_by)``
            for every static grant a template application actually adds,
            after all locks are released.
    """

    def __init__(
        self,
        catalog: PermissionCatalog,
        registry: RoleRegistry,
        graph: InheritanceGraph,
        assignments: AssignmentStore,
        overlay: GrantOverlay,
        on_grant: Optional[Callable[[str, str, str, Optional[str]], None]] = None,
    ) -> None:
        self.lock = RWLock("templates", LockRank.TEMPLATES)
        self._on_grant = on_grant
        self._catalog = catalog
        self._registry = registry
        self._graph = graph
        self._assignments = assignments
        self._overlay = overlay
        self._current: dict[str, int] = {}
        self._versions: dict[str, dict[int, RoleTemplate]] = {}
        self._user_templates: dict[str, list[str]] = {}

    # ── registry of templates ───────────────────────────

    def register_template(self, template: RoleTemplate | BaseModel | dict) -> RoleTemplate:
        """Store a new template as version 1.

        Raises:
            ValidationError: bad template or role names, or malformed permission entries.
            ConflictError: a template with this name exists.
        """
        now = _utc_now()
        try:
            stored = _as_template(template, version=1, created_at=now, updated_at=now)
        except ValueError as e:
            raise ValidationError(f"Invalid template: {e}") from e
        with self.lock.write():
            if stored.name in self._versions:
                raise ConflictError(f"Template {stored.name} already exists", template=stored.name)
            self._versions[stored.name] = {1: stored}
            self._current[stored.name] = 1
        logger.info("Registered template %s", stored.name)
        return stored.model_copy(deep=True)

    def get_template(self, name: str) -> RoleTemplate:
        with self.lock.read():
            if name not in self._current:
                raise NotFoundError(f"Template {name} not found", template=name)
            return self._versions[name][self._current[name]].model_copy(deep=True)

    def get_template_at(self, name: str, version: int) -> RoleTemplate:
        with self.lock.read():
            versions = self._versions.get(name)
            if versions is None:
                raise NotFoundError(f"Template {name} not found", template=name)
            if version not in versions:
                raise NotFoundError(f"Version {version} not found for template {name}", template=name, version=version)
            return versions[version].model_copy(deep=True)

    def get_template_version(self, name: str) -> int:
        """Current version number, 0 for an unknown template."""
        with self.lock.read():
            return self._current.get(name, 0)

    def list_versions(self, name: str) -> list[int]:
        with self.lock.read():
            return sorted(self._versions.get(name, ()))

    def list_templates(self) -> list[RoleTemplate]:
        with self.lock.read():
            return [self._versions[n][self._current[n]].model_copy(deep=True) for n in sorted(self._current)]

    def update_template(self, name: str, definition: RoleTemplate | BaseModel | dict) -> RoleTemplate:
        """Store ``definition`` as the next version of ``name``.

        The name and creation time are kept from the existing template.
        """
        with self.lock.write():
            if name not in self._current:
                raise NotFoundError(f"Template {name} not found", template=name)
            current = self._versions[name][self._current[name]]
            try:
                stored = _as_template(
                    definition,
                    name=name,
                    version=current.version + 1,
                    created_at=current.created_at,
                    updated_at=_utc_now(),
                )
            except ValueError as e:
                raise ValidationError(f"Invalid template: {e}") from e
            self._versions[name][stored.version] = stored
            self._current[name] = stored.version
        logger.info("Updated template %s to version %d", name, stored.version)
        return stored.model_copy(deep=True)

    def revert_template(self, name: str, version: int) -> RoleTemplate:
        """Store a copy of ``version`` as a new, higher version.

        Raises:
            NotFoundError: unknown template or version.
        """
        with self.lock.write():
            versions = self._versions.get(name)
            if versions is None:
                raise NotFoundError(f"Template {name} not found", template=name)
            previous = versions.get(version)
            if previous is None:
                raise NotFoundError(f"Version {version} not found for template {name}", template=name, version=version)
            revert = previous.model_copy(
                deep=True,
                update={"version": self._current[name] + 1, "updated_at": _utc_now()},
            )
            versions[revert.version] = revert
            self._current[name] = revert.version
        logger.info("Reverted template %s to content of version %d (now version %d)", name, version, revert.version)
        return revert.model_copy(deep=True)

    def delete_template(self, name: str) -> None:
        with self.lock.write():
            if self._current.pop(name, None) is None:
                raise NotFoundError(f"Template {name} not found", template=name)
            del self._versions[name]
            for templates in self._user_templates.values():
                if name in templates:
                    templates.remove(name)

    def combine_templates(self, new_name: str, names: Iterable[str]) -> RoleTemplate:
        """Union of the permissions and parents of ``names``, in first-seen order.

        Unknown names are skipped. The result is not stored; pass it to
        :meth:`register_template` to keep it.
        """
        permissions: dict[str, None] = {}
        parents: dict[str, None] = {}
        with self.lock.read():
            for name in names:
                if name not in self._current:
                    logger.debug("Skipping unknown template %s while combining", name)
                    continue
                template = self._versions[name][self._current[name]]
                permissions.update(dict.fromkeys(template.permissions))
                parents.update(dict.fromkeys(template.inherits_from))
        parents.pop(new_name, None)
        return RoleTemplate(
            name=new_name,
            display_name=new_name,
            permissions=list(permissions),
            inherits_from=list(parents),
        )

    # ── applying templates ──────────────────────────────

    def expand_permissions(self, entries: Iterable[str]) -> list[str]:
        """Resolve template entries to registered names, wildcards included."""
        expanded: dict[str, None] = {}
        for entry in entries:
            expanded.update(dict.fromkeys(self._catalog.match(entry)))
        return list(expanded)

    def _grant_all(self, role: str, template: RoleTemplate) -> tuple[list[str], list[str]]:
        """Grant every expanded entry. Returns (all permissions, newly granted)."""
        for entry in template.permissions:
            if not is_wildcard(entry):
                self._catalog.ensure(entry)
        permissions = self.expand_permissions(template.permissions)
        added = [p for p in permissions if self._overlay.grant_static(role, p)]
        return permissions, added

    def _notify(self, role: str, template_name: str, added: list[str], performed_by: str | None) -> None:
        if self._on_grant is None:
            return
        for permission in added:
            self._on_grant(role, permission, template_name, performed_by)

    def _write_locks(self):
        return ordered(
            self._catalog.lock,
            self._registry.lock,
            self._graph.lock,
            self._overlay.lock,
            self.lock,
        )

    def create_role_from_template(self, name: str, performed_by: str | None = None) -> RoleWithPermissions:
        """Create (or refresh) role ``name`` from the template of the same name.

        Parents must already exist. Inheritance edges are wired all-or-nothing:
        if any would cycle, the call fails and nothing is created or granted.

        Raises:
            NotFoundError: unknown template or parent role.
            ConflictError: an inheritance edge would create a cycle.
        """
        with self._write_locks():
            template = self.get_template(name)
            for parent in template.inherits_from:
                # a self-parent is rejected as a cycle by add_edges below
                if parent != name and not self._registry.exists(parent):
                    raise NotFoundError(f"Parent role {parent} not found", role=parent, template=name)
            created = not self._registry.exists(name)
            role = self._registry.upsert_role(name, template.display_name, description=template.description)
            try:
                self._graph.add_edges(name, template.inherits_from)
            except ConflictError:
                if created:
                    self._registry.delete_role(name)
                raise
            permissions, added = self._grant_all(name, template)
        self._notify(name, name, added, performed_by)
        logger.info("Instantiated template %s v%d (%d permissions)", name, template.version, len(permissions))
        return RoleWithPermissions(
            role=role,
            permissions=sorted(permissions),
            inherits_from=list(template.inherits_from),
            template_version=template.version,
        )

    def apply_template_to_role(self, role: str, template_name: str, performed_by: str | None = None) -> list[str]:
        """Grant a template's permissions to an existing role (no inheritance changes).

        Returns:
            The expanded permission names.
        """
        with self._write_locks():
            template = self.get_template(template_name)
            if not self._registry.exists(role):
                raise NotFoundError(f"Role {role} not found", role=role)
            permissions, added = self._grant_all(role, template)
        self._notify(role, template_name, added, performed_by)
        return sorted(permissions)

    def bulk_apply_template(
        self,
        template_name: str,
        user_ids: Iterable[str],
        granted_by: str | None = None,
    ) -> list[BulkApplyResult]:
        """Instantiate the template's role once, then assign it to each user.

        Users are handled independently; one failure neither stops nor
        rolls back the others. If the role cannot be instantiated every
        result carries that same error and no assignment is touched.
        """
        users = list(user_ids)
        try:
            role = self.create_role_from_template(template_name, performed_by=granted_by).role.name
        except AccessCoreError as e:
            logger.warning("Bulk apply of template %s failed: %s", template_name, e.message)
            return [BulkApplyResult(user_id=u, success=False, error=e.message, code=e.code) for u in users]

        results: list[BulkApplyResult] = []
        for user_id in users:
            try:
                self._assignments.assign_role(user_id, role, granted_by=granted_by)
            except AccessCoreError as e:
                results.append(BulkApplyResult(user_id=user_id, success=False, error=e.message, code=e.code))
                continue
            with self.lock.write():
                held = self._user_templates.setdefault(user_id, [])
                if template_name not in held:
                    held.append(template_name)
            results.append(BulkApplyResult(user_id=user_id, success=True))
        return results

    def user_has_template(self, user_id: str, template_name: str) -> bool:
        with self.lock.read():
            return template_name in self._user_templates.get(user_id, ())

    def forget_user(self, user_id: str) -> None:
        with self.lock.write():
            self._user_templates.pop(user_id, None)

    def forget_role(self, role: str, user_ids: Iterable[str]) -> None:
        """Drop the template record of users who no longer hold the role ``role``."""
        with self.lock.write():
            for user_id in user_ids:
                held = self._user_templates.get(user_id)
                if held and role in held:
                    held.remove(role)
                    if not held:
                        del self._user_templates[user_id]

    # ── snapshot support ────────────────────────────────

    def dump(self) -> tuple[list[TemplateHistory], dict[str, list[str]]]:
        with self.lock.read():
            histories = [
                TemplateHistory(
                    name=name,
                    current=self._current[name],
                    versions=[self._versions[name][v].model_copy(deep=True) for v in sorted(self._versions[name])],
                )
                for name in sorted(self._current)
            ]
            users = {u: list(t) for u, t in self._user_templates.items()}
        return histories, users

    def load(self, histories: Iterable[TemplateHistory], user_templates: dict[str, list[str]] | None = None) -> None:
        with self.lock.write():
            self._current = {}
            self._versions = {}
            for history in histories:
                versions = {t.version: t.model_copy(deep=True) for t in history.versions}
                if history.current not in versions:
                    raise ValidationError(
                        f"Template {history.name} has no version {history.current}",
                        template=history.name,
                    )
                self._versions[history.name] = versions
                self._current[history.name] = history.current
            self._user_templates = {u: list(t) for u, t in (user_templates or {}).items()}


__all__ = [
    "BulkApplyResult",
    "RoleTemplate",
    "RoleWithPermissions",
    "TemplateEngine",
    "TemplateHistory",
]
