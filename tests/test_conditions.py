"""Tests for condition variants and their interpreter."""

from __future__ import annotations

import logging

import pytest

from accesscore import ConflictError, NotFoundError, ValidationError
from accesscore.permissions import (
    AlwaysTrue,
    AttributeAtLeast,
    AttributeEquals,
    AttributeIn,
    ConditionRegistry,
    Custom,
    PermissionContext,
    evaluate_condition,
    parse_condition,
)

TIERS = ["free", "pro", "enterprise"]


class TestPermissionContext:
    """Tests for PermissionContext.lookup."""

    def test_own_fields_first(self) -> None:
        ctx = PermissionContext(user_tier="pro", attributes={"user_tier": "free"})
        assert ctx.lookup("user_tier") == "pro"

    def test_empty_own_field_falls_through(self) -> None:
        ctx = PermissionContext(attributes={"user_tier": "free"})
        assert ctx.lookup("user_tier") == "free"

    def test_attributes_then_metadata(self) -> None:
        ctx = PermissionContext(attributes={"seats": 3}, metadata={"region": "eu"})
        assert ctx.lookup("seats") == 3
        assert ctx.lookup("region") == "eu"
        assert ctx.lookup("missing") is None


class TestEvaluateCondition:
    """Tests for evaluate_condition."""

    def test_missing_context_is_false(self) -> None:
        """No context never raises and never passes."""
        assert evaluate_condition(AlwaysTrue(), None) is False
        assert evaluate_condition(AttributeEquals(key="user_tier", value="pro"), None) is False

    def test_always(self) -> None:
        assert evaluate_condition(AlwaysTrue(), PermissionContext()) is True

    def test_attribute_equals(self) -> None:
        cond = AttributeEquals(key="user_tier", value="premium")
        assert evaluate_condition(cond, PermissionContext(user_tier="premium"))
        assert not evaluate_condition(cond, PermissionContext(user_tier="free"))
        assert not evaluate_condition(cond, PermissionContext())

    def test_attribute_in(self) -> None:
        cond = AttributeIn(key="region", values=["eu", "us"])
        assert evaluate_condition(cond, PermissionContext(metadata={"region": "eu"}))
        assert not evaluate_condition(cond, PermissionContext(metadata={"region": "apac"}))

    def test_attribute_at_least_numeric(self) -> None:
        cond = AttributeAtLeast(key="seats", threshold=10)
        assert evaluate_condition(cond, PermissionContext(attributes={"seats": 10}))
        assert evaluate_condition(cond, PermissionContext(attributes={"seats": "12"}))
        assert not evaluate_condition(cond, PermissionContext(attributes={"seats": 9}))
        assert not evaluate_condition(cond, PermissionContext(attributes={"seats": "many"}))

    def test_attribute_at_least_ordered(self) -> None:
        """With an order list, tiers compare by position."""
        cond = AttributeAtLeast(key="user_tier", threshold="pro", order=TIERS)
        assert evaluate_condition(cond, PermissionContext(user_tier="pro"))
        assert evaluate_condition(cond, PermissionContext(user_tier="enterprise"))
        assert not evaluate_condition(cond, PermissionContext(user_tier="free"))
        assert not evaluate_condition(cond, PermissionContext(user_tier="platinum"))

    def test_custom_predicate(self) -> None:
        registry = ConditionRegistry()
        registry.register("owns_resource", lambda ctx: ctx.resource_id.startswith(ctx.user_id))
        cond = Custom(name="owns_resource")
        assert evaluate_condition(cond, PermissionContext(user_id="u1", resource_id="u1/file"), registry)
        assert not evaluate_condition(cond, PermissionContext(user_id="u1", resource_id="u2/file"), registry)

    def test_unknown_custom_is_false(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert evaluate_condition(Custom(name="nope"), PermissionContext(), ConditionRegistry()) is False
        assert "nope" in caplog.text

    def test_raising_predicate_is_false(self) -> None:
        registry = ConditionRegistry()

        def broken(ctx: PermissionContext) -> bool:
            raise RuntimeError("boom")

        registry.register("broken", broken)
        assert evaluate_condition(Custom(name="broken"), PermissionContext(), registry) is False


class TestParseCondition:
    """Tests for condition (de)serialization."""

    def test_dump_and_parse(self) -> None:
        """Conditions are plain data and survive model_dump()."""
        cond = AttributeAtLeast(key="user_tier", threshold="pro", order=TIERS)
        parsed = parse_condition(cond.model_dump())
        assert parsed == cond

    def test_parse_discriminates_on_kind(self) -> None:
        assert isinstance(parse_condition({"kind": "always"}), AlwaysTrue)
        assert isinstance(parse_condition({"kind": "custom", "name": "x"}), Custom)

    def test_parse_invalid(self) -> None:
        with pytest.raises(ValidationError):
            parse_condition({"kind": "lambda", "code": "True"})


class TestConditionRegistry:
    """Tests for ConditionRegistry."""

    def test_duplicate_conflicts(self) -> None:
        registry = ConditionRegistry()
        registry.register("p", lambda ctx: True)
        with pytest.raises(ConflictError):
            registry.register("p", lambda ctx: False)
        registry.register("p", lambda ctx: False, replace=True)
        assert registry.names() == ["p"]

    def test_unregister(self) -> None:
        registry = ConditionRegistry()
        registry.register("p", lambda ctx: True)
        registry.unregister("p")
        assert registry.get("p") is None
        with pytest.raises(NotFoundError):
            registry.unregister("p")
