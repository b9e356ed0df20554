"""Roles, role inheritance and user assignments."""

from .assignments import AssignmentStore, RoleAssignment
from .inheritance import InheritanceEdge, InheritanceGraph
from .registry import Role, RoleRegistry

__all__ = [
    "AssignmentStore",
    "InheritanceEdge",
    "InheritanceGraph",
    "Role",
    "RoleAssignment",
    "RoleRegistry",
]
