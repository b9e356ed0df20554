"""Permission constants and built-in role names.

Provides:
- ``Permissions`` — built-in permission string constants (``category.action`` format).
- ``SystemRoles`` — names and priorities of the seeded system roles.
"""

from __future__ import annotations


class Permissions:
    """Built-in permission constants.

    Format: ``{category}.{action}``

    Two modes of use:

    1. **Static constants** — the default catalog::

        engine.has_permission(user_id, Permissions.STORAGE_READ)

    2. **Builders** — for categories registered at runtime::

        Permissions.service("reports", "generate")  → "reports.generate"
        Permissions.wildcard("storage")             → "storage.*"
        Permissions.any_category("read")            → "*.read"
    """

    # ── Storage ─────────────────────────────────────────
    STORAGE_READ = "storage.read"
    STORAGE_WRITE = "storage.write"
    STORAGE_DELETE = "storage.delete"
    STORAGE_LIST = "storage.list"

    # ── Buckets ─────────────────────────────────────────
    BUCKET_CREATE = "bucket.create"
    BUCKET_DELETE = "bucket.delete"
    BUCKET_LIST = "bucket.list"
    BUCKET_READ = "bucket.read"

    # ── Users & Profiles ────────────────────────────────
    USER_READ = "user.read"
    USER_WRITE = "user.write"
    USER_DELETE = "user.delete"
    PROFILE_READ = "profile.read"
    PROFILE_WRITE = "profile.write"

    # ── API Keys ────────────────────────────────────────
    APIKEY_CREATE = "apikey.create"
    APIKEY_DELETE = "apikey.delete"
    APIKEY_LIST = "apikey.list"

    # ── Admin ───────────────────────────────────────────
    ADMIN_USERS = "admin.users"
    ADMIN_BILLING = "admin.billing"
    ADMIN_SYSTEM = "admin.system"
    ADMIN_REPORTS = "admin.reports"

    # ── Auth ────────────────────────────────────────────
    AUTH_LOGIN = "auth.login"
    AUTH_REGISTER = "auth.register"
    AUTH_LOGOUT = "auth.logout"

    # ── Billing & Quota ─────────────────────────────────
    BILLING_READ = "billing.read"
    BILLING_UPDATE = "billing.update"
    QUOTA_READ = "quota.read"
    QUOTA_UPDATE = "quota.update"

    # ── Builders ────────────────────────────────────────

    @staticmethod
    def service(category: str, action: str) -> str:
        """Build a permission string from category and action.

        Returns:
            Permission string like ``"reports.generate"``
        """
        return f"{category}.{action}"

    @staticmethod
    def wildcard(category: str) -> str:
        """Template wildcard matching every action in ``category``."""
        return f"{category}.*"

    @staticmethod
    def any_category(action: str) -> str:
        """Template wildcard matching ``action`` in every category.

        Example::

            Permissions.any_category("read")  # "*.read": every read permission
        """
        return f"*.{action}"

    @classmethod
    def all(cls) -> tuple[str, ...]:
        """All built-in permission constants, sorted."""
        return tuple(
            sorted(
                value
                for attr, value in vars(cls).items()
                if attr.isupper() and isinstance(value, str)
            )
        )


class SystemRoles:
    """Seeded system roles.

    System roles cannot be deleted or renamed. Priorities break ties in
    "highest role" queries: higher wins.
    """

    ADMIN = "admin"
    USER = "user"
    VIEWER = "viewer"
    GUEST = "guest"

    PRIORITIES = {
        "admin": 100,
        "user": 50,
        "viewer": 20,
        "guest": 10,
    }

    ALL = frozenset({"admin", "user", "viewer", "guest"})


__all__ = [
    "Permissions",
    "SystemRoles",
]
