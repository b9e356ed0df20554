"""Permission catalog, conditions and grant overlay.

Defines:
- Permissions: built-in permission string constants (category.action format)
- SystemRoles: seeded system role names and priorities
- PermissionCatalog: registry of known permissions, indexed by category
- Conditions: inspectable predicates evaluated against a PermissionContext
- GrantOverlay: static, temporary and denied grants per role
"""

from .catalog import PermissionCatalog, PermissionDefinition
from .conditions import (
    AlwaysTrue,
    AttributeAtLeast,
    AttributeEquals,
    AttributeIn,
    Condition,
    ConditionRegistry,
    Custom,
    PermissionContext,
    evaluate_condition,
    parse_condition,
)
from .constants import Permissions, SystemRoles
from .grants import GrantOverlay, PermissionGroup, RoleGrants

__all__ = [
    "AlwaysTrue",
    "AttributeAtLeast",
    "AttributeEquals",
    "AttributeIn",
    "Condition",
    "ConditionRegistry",
    "Custom",
    "GrantOverlay",
    "PermissionCatalog",
    "PermissionContext",
    "PermissionDefinition",
    "PermissionGroup",
    "Permissions",
    "RoleGrants",
    "SystemRoles",
    "evaluate_condition",
    "parse_condition",
]
