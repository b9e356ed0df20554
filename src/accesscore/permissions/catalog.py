"""Registry of known permissions, indexed by category."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from ..exceptions import ConflictError, NotFoundError
from ..locking import LockRank, RWLock
from ..naming import compile_pattern, extract_category, is_wildcard, validate_permission_name
from .conditions import Condition, parse_condition

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PermissionDefinition(BaseModel):
    """A catalog entry. ``condition`` is None for unconditional permissions."""

    name: str
    display_name: str = ""
    category: str = ""
    description: str = ""
    condition: Optional[Condition] = None
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def conditional(self) -> bool:
        return self.condition is not None


class PermissionCatalog:
    """Permission registry supporting runtime registration.

    Seeded with the built-in names passed to the constructor; custom
    permissions are added with :meth:`register`. Entries are returned as
    copies so callers never mutate catalog state.
    """

    def __init__(self, defaults: Iterable[str] = ()) -> None:
        self.lock = RWLock("catalog", LockRank.CATALOG)
        self._permissions: dict[str, PermissionDefinition] = {}
        self._categories: dict[str, list[str]] = {}
        for name in defaults:
            if name not in self._permissions:
                self._add(PermissionDefinition(name=validate_permission_name(name), display_name=name, category=extract_category(name)))

    def _add(self, definition: PermissionDefinition) -> None:
        self._permissions[definition.name] = definition
        self._categories.setdefault(definition.category, []).append(definition.name)

    def _remove_from_category(self, definition: PermissionDefinition) -> None:
        names = self._categories.get(definition.category)
        if names and definition.name in names:
            names.remove(definition.name)
            if not names:
                del self._categories[definition.category]

    def register(
        self,
        name: str,
        display_name: str | None = None,
        category: str | None = None,
        description: str = "",
    ) -> PermissionDefinition:
        """Register a new permission.

        Raises:
            ValidationError: ``name`` is not of the ``category.action`` form.
            ConflictError: ``name`` is already registered.
        """
        validate_permission_name(name)
        definition = PermissionDefinition(
            name=name,
            display_name=display_name or name,
            category=category or extract_category(name),
            description=description,
        )
        with self.lock.write():
            if name in self._permissions:
                raise ConflictError(f"Permission {name} already registered", permission=name)
            self._add(definition)
        logger.debug("Registered permission %s (category=%s)", name, definition.category)
        return definition.model_copy()

    def ensure(self, name: str, display_name: str | None = None, category: str | None = None) -> bool:
        """Register ``name`` unless present. Returns True if it was added."""
        validate_permission_name(name)
        with self.lock.write():
            if name in self._permissions:
                return False
            self._add(
                PermissionDefinition(
                    name=name,
                    display_name=display_name or name,
                    category=category or extract_category(name),
                )
            )
            return True

    def unregister(self, name: str) -> PermissionDefinition:
        """Remove a permission and its category index entry.

        Raises:
            NotFoundError: ``name`` is not registered.
        """
        with self.lock.write():
            definition = self._permissions.pop(name, None)
            if definition is None:
                raise NotFoundError(f"Permission {name} not found", permission=name)
            self._remove_from_category(definition)
        logger.debug("Unregistered permission %s", name)
        return definition

    def set_condition(
        self,
        name: str,
        condition: Any,
        display_name: str | None = None,
        category: str | None = None,
    ) -> PermissionDefinition:
        """Attach or replace the condition on ``name``, registering it if needed.

        ``condition=None`` makes the permission unconditional again.
        """
        validate_permission_name(name)
        parsed = parse_condition(condition) if condition is not None else None
        with self.lock.write():
            current = self._permissions.get(name)
            if current is None:
                current = PermissionDefinition(
                    name=name,
                    display_name=display_name or name,
                    category=category or extract_category(name),
                )
                self._add(current)
            elif category and category != current.category:
                self._remove_from_category(current)
                current.category = category
                self._categories.setdefault(category, []).append(name)
            if display_name:
                current.display_name = display_name
            current.condition = parsed
            return current.model_copy()

    def exists(self, name: str) -> bool:
        with self.lock.read():
            return name in self._permissions

    def get(self, name: str) -> PermissionDefinition:
        """Return a copy of the entry.

        Raises:
            NotFoundError: ``name`` is not registered.
        """
        with self.lock.read():
            definition = self._permissions.get(name)
            if definition is None:
                raise NotFoundError(f"Permission {name} not found", permission=name)
            return definition.model_copy()

    def find(self, name: str) -> PermissionDefinition | None:
        """Like :meth:`get` but returns None instead of raising."""
        with self.lock.read():
            definition = self._permissions.get(name)
            return definition.model_copy() if definition is not None else None

    def list_by_category(self, category: str) -> list[PermissionDefinition]:
        with self.lock.read():
            return [self._permissions[n].model_copy() for n in self._categories.get(category, ())]

    def list_all(self) -> list[PermissionDefinition]:
        with self.lock.read():
            return [self._permissions[n].model_copy() for n in sorted(self._permissions)]

    def names(self) -> list[str]:
        with self.lock.read():
            return sorted(self._permissions)

    def categories(self) -> list[str]:
        with self.lock.read():
            return sorted(self._categories)

    def match(self, pattern: str) -> list[str]:
        """Expand a template entry against currently-registered names.

        A plain name matches itself only if registered. Wildcards are
        evaluated now; later registrations are not picked up.
        """
        with self.lock.read():
            if not is_wildcard(pattern):
                return [pattern] if pattern in self._permissions else []
            regex = compile_pattern(pattern)
            return sorted(n for n in self._permissions if regex.match(n))

    def __len__(self) -> int:
        with self.lock.read():
            return len(self._permissions)

    # ── snapshot support ────────────────────────────────

    def dump(self) -> list[PermissionDefinition]:
        return self.list_all()

    def load(self, definitions: Iterable[PermissionDefinition]) -> None:
        with self.lock.write():
            self._permissions.clear()
            self._categories.clear()
            for definition in definitions:
                self._add(definition.model_copy())


__all__ = [
    "PermissionCatalog",
    "PermissionDefinition",
]
