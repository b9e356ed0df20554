"""Named roles and the built-in static permission matrix."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from pydantic import BaseModel

from ..exceptions import ConflictError, NotFoundError, StateError
from ..locking import LockRank, RWLock
from ..naming import validate_role_name

logger = logging.getLogger(__name__)


class Role(BaseModel):
    """A named, prioritised role.

    System roles are seeded from configuration and cannot be deleted or
    renamed. Priority breaks ties in "highest role" queries.
    """

    name: str
    display_name: str = ""
    description: str = ""
    priority: int = 0
    is_system: bool = False


class RoleRegistry:
    """System and custom roles plus the static role → permission matrix.

    Args:
        roles: Seed roles (typically the system roles from configuration).
        matrix: Static permission matrix, ``role -> permissions``. Copied on
            construction; the caller's mapping is never shared.
    """

    def __init__(
        self,
        roles: Iterable[Role] = (),
        matrix: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self.lock = RWLock("roles", LockRank.ROLES)
        self._roles: dict[str, Role] = {}
        self._matrix: dict[str, frozenset[str]] = {}
        for role in roles:
            validate_role_name(role.name)
            if role.name in self._roles:
                raise ConflictError(f"Role {role.name} defined twice", role=role.name)
            self._roles[role.name] = role.model_copy()
        for role_name, perms in (matrix or {}).items():
            self._matrix[role_name] = frozenset(perms)

    def create_role(
        self,
        name: str,
        display_name: str | None = None,
        *,
        priority: int = 0,
        description: str = "",
    ) -> Role:
        """Create a custom role.

        Raises:
            ValidationError: malformed name.
            ConflictError: a role with this name exists.
        """
        validate_role_name(name)
        role = Role(
            name=name,
            display_name=display_name or name,
            description=description,
            priority=priority,
            is_system=False,
        )
        with self.lock.write():
            if name in self._roles:
                raise ConflictError(f"Role {name} already exists", role=name)
            self._roles[name] = role
        logger.info("Created role %s (priority=%d)", name, priority)
        return role.model_copy()

    def upsert_role(self, name: str, display_name: str | None = None, *, description: str = "") -> Role:
        """Create ``name`` if absent; otherwise refresh its display fields.

        System roles keep their display fields.
        """
        validate_role_name(name)
        with self.lock.write():
            role = self._roles.get(name)
            if role is None:
                role = Role(name=name, display_name=display_name or name, description=description)
                self._roles[name] = role
                logger.info("Created role %s", name)
            elif not role.is_system:
                role.display_name = display_name or role.display_name
                role.description = description or role.description
            return role.model_copy()

    def delete_role(self, name: str) -> Role:
        """Remove a custom role.

        Raises:
            NotFoundError: unknown role.
            StateError: ``name`` is a system role.
        """
        with self.lock.write():
            role = self._roles.get(name)
            if role is None:
                raise NotFoundError(f"Role {name} not found", role=name)
            if role.is_system:
                raise StateError(f"Cannot delete system role {name}", role=name)
            del self._roles[name]
        logger.info("Deleted role %s", name)
        return role

    def rename_role(self, old: str, new: str) -> Role:
        """Rename a custom role.

        Raises:
            NotFoundError: ``old`` unknown.
            StateError: ``old`` is a system role.
            ConflictError: ``new`` already taken.
        """
        validate_role_name(new)
        with self.lock.write():
            role = self._roles.get(old)
            if role is None:
                raise NotFoundError(f"Role {old} not found", role=old)
            if role.is_system:
                raise StateError(f"Cannot rename system role {old}", role=old)
            if new in self._roles:
                raise ConflictError(f"Role {new} already exists", role=new)
            del self._roles[old]
            role.name = new
            self._roles[new] = role
            if old in self._matrix:
                self._matrix[new] = self._matrix.pop(old)
        logger.info("Renamed role %s to %s", old, new)
        return role.model_copy()

    def set_priority(self, name: str, priority: int) -> Role:
        with self.lock.write():
            role = self._roles.get(name)
            if role is None:
                raise NotFoundError(f"Role {name} not found", role=name)
            if role.is_system:
                raise StateError(f"Cannot change priority of system role {name}", role=name)
            role.priority = priority
            return role.model_copy()

    def exists(self, name: str) -> bool:
        with self.lock.read():
            return name in self._roles

    def get(self, name: str) -> Role:
        with self.lock.read():
            role = self._roles.get(name)
            if role is None:
                raise NotFoundError(f"Role {name} not found", role=name)
            return role.model_copy()

    def priority(self, name: str) -> int | None:
        with self.lock.read():
            role = self._roles.get(name)
            return role.priority if role is not None else None

    def is_system(self, name: str) -> bool:
        with self.lock.read():
            role = self._roles.get(name)
            return role is not None and role.is_system

    def list_roles(self) -> list[Role]:
        """All roles, highest priority first, then by name."""
        with self.lock.read():
            return [r.model_copy() for r in sorted(self._roles.values(), key=lambda r: (-r.priority, r.name))]

    def matrix_allows(self, role: str, permission: str) -> bool:
        with self.lock.read():
            return permission in self._matrix.get(role, ())

    def matrix_permissions(self, role: str) -> frozenset[str]:
        with self.lock.read():
            return self._matrix.get(role, frozenset())

    def matrix(self) -> dict[str, list[str]]:
        """Copy of the static matrix."""
        with self.lock.read():
            return {role: sorted(perms) for role, perms in self._matrix.items()}

    def __len__(self) -> int:
        with self.lock.read():
            return len(self._roles)

    # ── snapshot support ────────────────────────────────

    def load(self, roles: Iterable[Role], matrix: Mapping[str, Iterable[str]]) -> None:
        with self.lock.write():
            self._roles = {r.name: r.model_copy() for r in roles}
            self._matrix = {name: frozenset(perms) for name, perms in matrix.items()}


__all__ = [
    "Role",
    "RoleRegistry",
]
