"""User → role assignments (direct membership only).

Inheritance is not expanded here; the resolver does that. Assigning a role
the user already holds and revoking one they do not hold both succeed
without changing anything.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from ..exceptions import NotFoundError, ValidationError
from ..locking import LockRank, RWLock, ordered
from .registry import RoleRegistry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RoleAssignment(BaseModel):
    user_id: str
    role: str
    granted_at: datetime = Field(default_factory=_utc_now)
    granted_by: Optional[str] = None


class AssignmentStore:
    """Many-to-many relation between users and role names.

    Args:
        registry: Role registry used to reject unknown roles on assignment.
    """

    def __init__(self, registry: RoleRegistry) -> None:
        self.lock = RWLock("assignments", LockRank.ASSIGNMENTS)
        self._registry = registry
        self._by_user: dict[str, dict[str, RoleAssignment]] = {}

    def assign_role(self, user_id: str, role: str, granted_by: str | None = None) -> bool:
        """Give ``user_id`` the role ``role``.

        Returns:
            True if newly assigned, False if the user already held it.

        Raises:
            ValidationError: empty user id.
            NotFoundError: ``role`` is not registered.
        """
        if not user_id:
            raise ValidationError("User ID required")
        with self._registry.lock.read(), self.lock.write():
            if not self._registry.exists(role):
                raise NotFoundError(f"Role {role} not found", role=role)
            roles = self._by_user.setdefault(user_id, {})
            if role in roles:
                return False
            roles[role] = RoleAssignment(user_id=user_id, role=role, granted_by=granted_by)
        logger.debug("Assigned role %s to user %s", role, user_id)
        return True

    def revoke_role(self, user_id: str, role: str) -> bool:
        """Remove a role. Returns False if the user did not hold it."""
        with self.lock.write():
            roles = self._by_user.get(user_id)
            if not roles or role not in roles:
                return False
            del roles[role]
            if not roles:
                del self._by_user[user_id]
        logger.debug("Revoked role %s from user %s", role, user_id)
        return True

    def revoke_all_roles(self, user_id: str) -> list[str]:
        with self.lock.write():
            roles = self._by_user.pop(user_id, {})
        return sorted(roles)

    def get_user_roles(self, user_id: str) -> list[str]:
        with self.lock.read():
            return sorted(self._by_user.get(user_id, ()))

    def user_has_role(self, user_id: str, role: str) -> bool:
        with self.lock.read():
            return role in self._by_user.get(user_id, ())

    def get_assignment(self, user_id: str, role: str) -> RoleAssignment:
        with self.lock.read():
            assignment = self._by_user.get(user_id, {}).get(role)
            if assignment is None:
                raise NotFoundError(f"User {user_id} does not hold role {role}", user_id=user_id, role=role)
            return assignment.model_copy()

    def get_highest_role(self, user_id: str) -> str | None:
        """Direct role with the greatest priority; ties go to the smaller name."""
        with ordered(self._registry.lock, self.lock, mode="read"):
            best: tuple[int, str] | None = None
            for role in self._by_user.get(user_id, ()):
                priority = self._registry.priority(role)
                if priority is None:
                    continue
                key = (-priority, role)
                if best is None or key < best:
                    best = key
            return best[1] if best is not None else None

    def get_users_with_role(self, role: str) -> list[str]:
        with self.lock.read():
            return sorted(user for user, roles in self._by_user.items() if role in roles)

    def count_users_with_role(self, role: str) -> int:
        with self.lock.read():
            return sum(1 for roles in self._by_user.values() if role in roles)

    def users(self) -> list[str]:
        with self.lock.read():
            return sorted(self._by_user)

    def remove_role(self, role: str) -> list[str]:
        """Strip ``role`` from every user. Returns the affected users."""
        affected: list[str] = []
        with self.lock.write():
            for user in list(self._by_user):
                roles = self._by_user[user]
                if roles.pop(role, None) is not None:
                    affected.append(user)
                    if not roles:
                        del self._by_user[user]
        return sorted(affected)

    def rename_role(self, old: str, new: str) -> None:
        with self.lock.write():
            for roles in self._by_user.values():
                assignment = roles.pop(old, None)
                if assignment is not None:
                    assignment.role = new
                    roles[new] = assignment

    # ── snapshot support ────────────────────────────────

    def dump(self) -> list[RoleAssignment]:
        with self.lock.read():
            return [
                self._by_user[user][role].model_copy()
                for user in sorted(self._by_user)
                for role in sorted(self._by_user[user])
            ]

    def load(self, assignments: Iterable[RoleAssignment]) -> None:
        with self.lock.write():
            self._by_user = {}
            for assignment in assignments:
                self._by_user.setdefault(assignment.user_id, {})[assignment.role] = assignment.model_copy()


__all__ = [
    "AssignmentStore",
    "RoleAssignment",
]
