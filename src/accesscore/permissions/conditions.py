"""Inspectable conditions for conditional permissions.

Conditions are data, not closures: a tagged variant discriminated on
``kind`` that round-trips through ``model_dump()`` and is evaluated by
``evaluate_condition()`` against a request-time ``PermissionContext``.

Provides:
- ``PermissionContext`` — the request-time attribute bag.
- ``AlwaysTrue``, ``AttributeEquals``, ``AttributeIn``, ``AttributeAtLeast``,
  ``Custom`` — condition variants.
- ``ConditionRegistry`` — named predicates referenced by ``Custom``.
- ``evaluate_condition()`` — the interpreter.
"""

from __future__ import annotations

import logging
import threading
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class PermissionContext(BaseModel):
    """Request-time facts a condition may inspect.

    Example::

        ctx = PermissionContext(user_id="u-1", user_tier="premium",
                                attributes={"storage_gb": 120})
    """

    user_id: str = ""
    user_tier: str = ""
    resource_id: str = ""
    action: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)

    def lookup(self, key: str) -> Any:
        """Resolve ``key``: own fields, then ``attributes``, then ``metadata``.

        Empty own fields count as missing. Returns None when absent.
        """
        if key in ("user_id", "user_tier", "resource_id", "action"):
            value = getattr(self, key)
            if value:
                return value
        if key in self.attributes:
            return self.attributes[key]
        return self.metadata.get(key)


# ── Condition variants ──────────────────────────────────


class AlwaysTrue(BaseModel):
    """Passes whenever a context is supplied."""

    kind: Literal["always"] = "always"


class AttributeEquals(BaseModel):
    kind: Literal["attribute_equals"] = "attribute_equals"
    key: str
    value: Any


class AttributeIn(BaseModel):
    kind: Literal["attribute_in"] = "attribute_in"
    key: str
    values: list[Any] = Field(default_factory=list)


class AttributeAtLeast(BaseModel):
    """Numeric ``>=`` comparison, or tier comparison when ``order`` is given.

    Example::

        # numeric: attributes["seats"] >= 10
        AttributeAtLeast(key="seats", threshold=10)

        # ordered tiers: user_tier at or above "pro"
        AttributeAtLeast(key="user_tier", threshold="pro",
                         order=["free", "pro", "enterprise"])
    """

    kind: Literal["attribute_at_least"] = "attribute_at_least"
    key: str
    threshold: Union[float, str]
    order: list[str] = Field(default_factory=list)


class Custom(BaseModel):
    """Delegates to a predicate registered under ``name``."""

    kind: Literal["custom"] = "custom"
    name: str


Condition = Annotated[
    Union[AlwaysTrue, AttributeEquals, AttributeIn, AttributeAtLeast, Custom],
    Field(discriminator="kind"),
]

_condition_adapter: TypeAdapter[Any] = TypeAdapter(Condition)


def parse_condition(data: Any) -> Any:
    """Build a condition from its dumped form (``{"kind": ..., ...}``)."""
    if isinstance(data, (AlwaysTrue, AttributeEquals, AttributeIn, AttributeAtLeast, Custom)):
        return data
    try:
        return _condition_adapter.validate_python(data)
    except Exception as e:
        raise ValidationError(f"Invalid condition: {e}", condition=data) from e


# ── Named predicates ────────────────────────────────────

Predicate = Callable[[PermissionContext], bool]


class ConditionRegistry:
    """Per-engine registry of named predicates for ``Custom`` conditions.

    Predicates are code and therefore not persisted; only their names are.
    Thread-safe.
    """

    def __init__(self) -> None:
        self._predicates: dict[str, Predicate] = {}
        self._lock = threading.Lock()

    def register(self, name: str, predicate: Predicate, *, replace: bool = False) -> None:
        if not name:
            raise ValidationError("Predicate name required")
        with self._lock:
            if name in self._predicates and not replace:
                raise ConflictError(f"Predicate {name} already registered", predicate=name)
            self._predicates[name] = predicate

    def unregister(self, name: str) -> None:
        with self._lock:
            if self._predicates.pop(name, None) is None:
                raise NotFoundError(f"Predicate {name} not found", predicate=name)

    def get(self, name: str) -> Predicate | None:
        with self._lock:
            return self._predicates.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._predicates)


# ── Interpreter ─────────────────────────────────────────


def _at_least(value: Any, condition: AttributeAtLeast) -> bool:
    if condition.order:
        try:
            return condition.order.index(str(value)) >= condition.order.index(str(condition.threshold))
        except ValueError:
            return False
    try:
        return float(value) >= float(condition.threshold)
    except (TypeError, ValueError):
        return False


def evaluate_condition(
    condition: Any,
    context: PermissionContext | None,
    registry: ConditionRegistry | None = None,
) -> bool:
    """Evaluate ``condition`` against ``context``.

    A missing context is always ``False``, as is an unknown ``Custom`` name.
    A custom predicate that raises is logged and treated as ``False``.
    """
    if context is None:
        return False

    if isinstance(condition, AlwaysTrue):
        return True

    if isinstance(condition, AttributeEquals):
        value = context.lookup(condition.key)
        return value is not None and value == condition.value

    if isinstance(condition, AttributeIn):
        value = context.lookup(condition.key)
        return value is not None and value in condition.values

    if isinstance(condition, AttributeAtLeast):
        value = context.lookup(condition.key)
        return value is not None and _at_least(value, condition)

    if isinstance(condition, Custom):
        predicate = registry.get(condition.name) if registry is not None else None
        if predicate is None:
            logger.warning("Unknown condition predicate %r, denying", condition.name)
            return False
        try:
            return bool(predicate(context))
        except Exception as e:
            logger.error("Condition predicate %r failed: %s", condition.name, e)
            return False

    logger.warning("Unsupported condition type %s, denying", type(condition).__name__)
    return False


__all__ = [
    "AlwaysTrue",
    "AttributeAtLeast",
    "AttributeEquals",
    "AttributeIn",
    "Condition",
    "ConditionRegistry",
    "Custom",
    "PermissionContext",
    "Predicate",
    "evaluate_condition",
    "parse_condition",
]
