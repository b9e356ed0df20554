"""Name validation for roles, permissions and template wildcards."""

from __future__ import annotations

import re

from .exceptions import ValidationError

ROLE_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]{2,31}$")

_SEGMENT = r"[a-z0-9_-]+"
PERMISSION_NAME_RE = re.compile(rf"^{_SEGMENT}(?:\.{_SEGMENT})+$")
PERMISSION_PATTERN_RE = re.compile(rf"^(?:{_SEGMENT}|\*)(?:\.(?:{_SEGMENT}|\*))+$")

DEFAULT_CATEGORY = "general"


def is_valid_role_name(name: str) -> bool:
    """3–32 chars, lowercase letters/digits/hyphen/underscore, starting with a letter."""
    return isinstance(name, str) and ROLE_NAME_RE.match(name) is not None


def validate_role_name(name: str) -> str:
    if not is_valid_role_name(name):
        raise ValidationError(
            f"Invalid role name: {name!r} (3-32 chars, lowercase letters, digits, '-' or '_', starting with a letter)",
            role=name,
        )
    return name


def is_valid_permission_name(name: str) -> bool:
    """Check the ``category.action`` shape.

    Segments are lowercase letters, digits, ``_`` and ``-``. Rejects empty
    strings, names without a dot, leading/trailing/doubled dots, uppercase
    and ``*`` (wildcards are only legal in templates).
    """
    return isinstance(name, str) and PERMISSION_NAME_RE.match(name) is not None


def validate_permission_name(name: str) -> str:
    if not is_valid_permission_name(name):
        raise ValidationError(f"Invalid permission name: {name!r}", permission=name)
    return name


def is_wildcard(entry: str) -> bool:
    return "*" in entry.split(".")


def validate_permission_entry(entry: str) -> str:
    """Validate a template permission entry (plain name or wildcard pattern)."""
    if not isinstance(entry, str) or PERMISSION_PATTERN_RE.match(entry) is None:
        raise ValidationError(f"Invalid permission entry: {entry!r}", permission=entry)
    if entry.split(".") == ["*"] * len(entry.split(".")):
        raise ValidationError(f"Wildcard must name a category or an action: {entry!r}", permission=entry)
    return entry


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a wildcard pattern; each ``*`` matches one or more segments.

    ``storage.*`` matches ``storage.read`` and ``storage.large.upload``;
    ``*.read`` matches every name ending in ``.read``.
    """
    parts = [r"[^.]+(?:\.[^.]+)*" if seg == "*" else re.escape(seg) for seg in pattern.split(".")]
    return re.compile("^" + r"\.".join(parts) + "$")


def matches_pattern(pattern: str, name: str) -> bool:
    if not is_wildcard(pattern):
        return pattern == name
    return compile_pattern(pattern).match(name) is not None


def extract_category(name: str) -> str:
    """Substring before the first dot (``"general"`` when there is none)."""
    head, sep, _ = name.partition(".")
    return head if sep and head else DEFAULT_CATEGORY


__all__ = [
    "DEFAULT_CATEGORY",
    "compile_pattern",
    "extract_category",
    "is_valid_permission_name",
    "is_valid_role_name",
    "is_wildcard",
    "matches_pattern",
    "validate_permission_entry",
    "validate_permission_name",
    "validate_role_name",
]
