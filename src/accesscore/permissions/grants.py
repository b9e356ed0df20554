"""Permission grants layered on top of role membership.

Three flavours per (role, permission) pair:

- **static** — always-on grant, no expiry.
- **temporary** — grant with an expiry timestamp; absent once ``now >= expiry``.
  Expiry is observed lazily at read time. :meth:`GrantOverlay.evict_expired`
  reclaims memory but is never needed for correct answers.
- **denial** — explicit negative that beats every positive grant.

Every grant/revoke is idempotent: granting twice keeps one entry, revoking
an absent grant succeeds silently.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable, Iterable

from pydantic import BaseModel, Field

from ..exceptions import NotFoundError, ValidationError
from ..locking import LockRank, RWLock

if TYPE_CHECKING:
    from .catalog import PermissionCatalog

logger = logging.getLogger(__name__)


class RoleGrants(BaseModel):
    """Plain record of every grant held by one role."""

    role: str
    static: list[str] = Field(default_factory=list)
    temporary: dict[str, float] = Field(default_factory=dict)  # permission -> expiry (unix)
    denied: list[str] = Field(default_factory=list)


class PermissionGroup(BaseModel):
    name: str
    permissions: list[str] = Field(default_factory=list)


class GrantOverlay:
    """Static, temporary and denied grants keyed by role name.

    Args:
        catalog: When given, grants of unregistered permissions are rejected
            with ``NotFoundError``.
        clock: Wall-clock source in unix seconds (``time.time`` by default).
    """

    def __init__(
        self,
        catalog: PermissionCatalog | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.lock = RWLock("overlay", LockRank.OVERLAY)
        self._catalog = catalog
        self._clock = clock
        self._static: dict[str, set[str]] = {}
        self._temporary: dict[str, dict[str, float]] = {}
        self._denied: dict[str, set[str]] = {}
        self._groups: dict[str, list[str]] = {}

    def _require_registered(self, permission: str) -> None:
        if self._catalog is not None and not self._catalog.exists(permission):
            raise NotFoundError(f"Permission {permission} not registered", permission=permission)

    @staticmethod
    def _discard(table: dict[str, set[str]], role: str, permission: str) -> bool:
        perms = table.get(role)
        if not perms or permission not in perms:
            return False
        perms.discard(permission)
        if not perms:
            del table[role]
        return True

    # ── static grants ───────────────────────────────────

    def grant_static(self, role: str, permission: str) -> bool:
        """Grant ``permission`` to ``role``. Returns False if already granted."""
        self._require_registered(permission)
        with self.lock.write():
            perms = self._static.setdefault(role, set())
            if permission in perms:
                return False
            perms.add(permission)
        logger.debug("Granted %s to role %s", permission, role)
        return True

    def revoke_static(self, role: str, permission: str) -> bool:
        """Remove a static grant. Returns False if there was none (not an error)."""
        with self.lock.write():
            return self._discard(self._static, role, permission)

    def has_static(self, role: str, permission: str) -> bool:
        with self.lock.read():
            return permission in self._static.get(role, ())

    def grant_group(self, role: str, group_name: str, permissions: Iterable[str]) -> list[str]:
        """Grant a named bundle.

        Every permission is validated before anything is written, so an
        unknown name leaves the role untouched. Each individual grant is
        idempotent, which makes a retried call safe.

        Returns:
            Permissions that were newly granted.
        """
        if not group_name:
            raise ValidationError("Permission group name required")
        bundle = list(dict.fromkeys(permissions))
        for permission in bundle:
            self._require_registered(permission)
        added: list[str] = []
        with self.lock.write():
            self._groups[group_name] = bundle
            perms = self._static.setdefault(role, set())
            for permission in bundle:
                if permission not in perms:
                    perms.add(permission)
                    added.append(permission)
            if not perms:
                del self._static[role]
        logger.debug("Granted group %s (%d permissions) to role %s", group_name, len(bundle), role)
        return added

    def get_group(self, group_name: str) -> list[str]:
        with self.lock.read():
            if group_name not in self._groups:
                raise NotFoundError(f"Permission group {group_name} not found", group=group_name)
            return list(self._groups[group_name])

    # ── temporary grants ────────────────────────────────

    def grant_temporary(self, role: str, permission: str, ttl_seconds: float) -> float:
        """Grant ``permission`` until ``now + ttl_seconds``.

        Overwrites any earlier temporary grant for the same pair.

        Returns:
            The expiry timestamp (unix seconds).
        """
        if ttl_seconds <= 0:
            raise ValidationError(f"TTL must be positive, got {ttl_seconds}", ttl_seconds=ttl_seconds)
        self._require_registered(permission)
        expiry = self._clock() + float(ttl_seconds)
        with self.lock.write():
            self._temporary.setdefault(role, {})[permission] = expiry
        logger.debug("Granted %s to role %s for %ss", permission, role, ttl_seconds)
        return expiry

    def revoke_temporary(self, role: str, permission: str) -> bool:
        with self.lock.write():
            grants = self._temporary.get(role)
            if not grants or grants.pop(permission, None) is None:
                return False
            if not grants:
                del self._temporary[role]
            return True

    def has_temporary(self, role: str, permission: str, now: float | None = None) -> bool:
        """True while the grant exists and ``now < expiry``. Never mutates."""
        t = self._clock() if now is None else now
        with self.lock.read():
            expiry = self._temporary.get(role, {}).get(permission)
            return expiry is not None and t < expiry

    def get_remaining_ttl(self, role: str, permission: str) -> int:
        """Whole seconds left on a temporary grant; 0 if absent or expired."""
        with self.lock.read():
            expiry = self._temporary.get(role, {}).get(permission)
        if expiry is None:
            return 0
        remaining = expiry - self._clock()
        return int(remaining) if remaining > 0 else 0

    def evict_expired(self, now: float | None = None) -> int:
        """Drop temporary grants that have already expired.

        Maintenance only; readers already treat these entries as absent.

        Returns:
            Number of evicted grants.
        """
        t = self._clock() if now is None else now
        evicted = 0
        with self.lock.write():
            for role in list(self._temporary):
                grants = self._temporary[role]
                for permission in [p for p, expiry in grants.items() if t >= expiry]:
                    del grants[permission]
                    evicted += 1
                if not grants:
                    del self._temporary[role]
        if evicted:
            logger.debug("Evicted %d expired temporary grants", evicted)
        return evicted

    # ── denials ─────────────────────────────────────────

    def deny(self, role: str, permission: str) -> bool:
        """Explicitly deny ``permission`` for ``role`` (beats every grant)."""
        with self.lock.write():
            perms = self._denied.setdefault(role, set())
            if permission in perms:
                return False
            perms.add(permission)
        logger.debug("Denied %s for role %s", permission, role)
        return True

    def undeny(self, role: str, permission: str) -> bool:
        with self.lock.write():
            return self._discard(self._denied, role, permission)

    def is_denied(self, role: str, permission: str) -> bool:
        with self.lock.read():
            return permission in self._denied.get(role, ())

    # ── bulk views ──────────────────────────────────────

    def grants_for_role(self, role: str) -> RoleGrants:
        with self.lock.read():
            return RoleGrants(
                role=role,
                static=sorted(self._static.get(role, ())),
                temporary=dict(self._temporary.get(role, {})),
                denied=sorted(self._denied.get(role, ())),
            )

    def granted_permissions(self, role: str, now: float | None = None) -> set[str]:
        """Static plus live temporary grants of ``role`` (denials not applied)."""
        t = self._clock() if now is None else now
        with self.lock.read():
            perms = set(self._static.get(role, ()))
            perms.update(p for p, expiry in self._temporary.get(role, {}).items() if t < expiry)
            return perms

    def purge_permission(self, permission: str) -> int:
        """Remove every grant and denial referencing ``permission``."""
        removed = 0
        with self.lock.write():
            for table in (self._static, self._denied):
                for role in list(table):
                    removed += int(self._discard(table, role, permission))
            for role in list(self._temporary):
                if self._temporary[role].pop(permission, None) is not None:
                    removed += 1
                    if not self._temporary[role]:
                        del self._temporary[role]
            for name, bundle in self._groups.items():
                if permission in bundle:
                    self._groups[name] = [p for p in bundle if p != permission]
        return removed

    def purge_role(self, role: str) -> None:
        with self.lock.write():
            self._static.pop(role, None)
            self._temporary.pop(role, None)
            self._denied.pop(role, None)

    def rename_role(self, old: str, new: str) -> None:
        with self.lock.write():
            for table in (self._static, self._temporary, self._denied):
                if old in table:
                    table[new] = table.pop(old)

    # ── snapshot support ────────────────────────────────

    def dump(self) -> tuple[list[RoleGrants], list[PermissionGroup]]:
        with self.lock.read():
            roles = sorted(set(self._static) | set(self._temporary) | set(self._denied))
            grants = [self.grants_for_role(role) for role in roles]
            groups = [PermissionGroup(name=n, permissions=list(p)) for n, p in sorted(self._groups.items())]
        return grants, groups

    def load(self, grants: Iterable[RoleGrants], groups: Iterable[PermissionGroup] = ()) -> None:
        with self.lock.write():
            self._static.clear()
            self._temporary.clear()
            self._denied.clear()
            self._groups.clear()
            for record in grants:
                if record.static:
                    self._static[record.role] = set(record.static)
                if record.temporary:
                    self._temporary[record.role] = dict(record.temporary)
                if record.denied:
                    self._denied[record.role] = set(record.denied)
            for group in groups:
                self._groups[group.name] = list(group.permissions)


__all__ = [
    "GrantOverlay",
    "PermissionGroup",
    "RoleGrants",
]
