"""Tests for AccessCoreConfig and the seed tables."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from accesscore import (
    AccessCoreConfig,
    AccessEngine,
    EngineConfig,
    LogLevel,
    Permissions,
    SystemRoles,
    default_engine_config,
    load_config_from_env,
)


class TestAccessCoreConfig:
    """Tests for AccessCoreConfig model."""

    def test_create_default_config(self) -> None:
        """Test creating an AccessCoreConfig with defaults."""
        config = AccessCoreConfig()
        assert config.log_level == LogLevel.INFO
        assert config.log_json is False
        assert config.service_name is None
        assert config.audit_enabled is True
        assert config.audit_checks is True
        assert config.audit_max_entries == 100_000
        assert config.audit_retention_seconds == 90 * 24 * 3600
        assert config.sweep_interval_seconds == 60.0

    def test_log_level_from_string(self) -> None:
        """Test creating config with log level as string."""
        config = AccessCoreConfig(log_level="debug")
        assert config.log_level == LogLevel.DEBUG

    def test_log_level_invalid(self) -> None:
        """Test creating config with invalid log level."""
        with pytest.raises(ValueError, match="Invalid log level"):
            AccessCoreConfig(log_level="INVALID")

    def test_non_positive_values_rejected(self) -> None:
        """Test that capacities and intervals must be positive."""
        with pytest.raises(ValueError, match="must be positive"):
            AccessCoreConfig(audit_max_entries=0)
        with pytest.raises(ValueError, match="must be positive"):
            AccessCoreConfig(audit_retention_seconds=-5)
        with pytest.raises(ValueError, match="Sweep interval must be positive"):
            AccessCoreConfig(sweep_interval_seconds=0)

    def test_extra_fields_forbidden(self) -> None:
        """Test that unknown settings are rejected."""
        with pytest.raises(ValueError):
            AccessCoreConfig(redis_url="redis://localhost")  # type: ignore[call-arg]


class TestLoadConfigFromEnv:
    """Tests for load_config_from_env."""

    def test_defaults_without_env(self) -> None:
        """Test loading with no ACCESSCORE_* variables set."""
        env = {k: v for k, v in os.environ.items() if not k.startswith("ACCESSCORE_")}
        with patch.dict(os.environ, env, clear=True):
            config = load_config_from_env()
        assert config == AccessCoreConfig()

    def test_reads_every_variable(self) -> None:
        """Test that each variable maps onto its field."""
        with patch.dict(
            os.environ,
            {
                "ACCESSCORE_LOG_LEVEL": "WARNING",
                "ACCESSCORE_LOG_JSON": "true",
                "ACCESSCORE_SERVICE_NAME": "billing-api",
                "ACCESSCORE_AUDIT_ENABLED": "no",
                "ACCESSCORE_AUDIT_CHECKS": "0",
                "ACCESSCORE_AUDIT_MAX_ENTRIES": "500",
                "ACCESSCORE_AUDIT_RETENTION_SECONDS": "3600",
                "ACCESSCORE_SWEEP_INTERVAL": "2.5",
            },
        ):
            config = load_config_from_env()
        assert config.log_level == LogLevel.WARNING
        assert config.log_json is True
        assert config.service_name == "billing-api"
        assert config.audit_enabled is False
        assert config.audit_checks is False
        assert config.audit_max_entries == 500
        assert config.audit_retention_seconds == 3600
        assert config.sweep_interval_seconds == 2.5

    def test_invalid_value(self) -> None:
        """Test that a bad variable fails loudly."""
        with patch.dict(os.environ, {"ACCESSCORE_LOG_LEVEL": "LOUD"}):
            with pytest.raises(ValueError):
                load_config_from_env()


class TestSeedTables:
    """Tests for default_engine_config."""

    def test_system_roles(self) -> None:
        """Test that the four system roles are seeded with priorities."""
        config = default_engine_config()
        assert {r.name: r.priority for r in config.roles} == SystemRoles.PRIORITIES

    def test_admin_holds_every_builtin(self) -> None:
        """Test that admin's matrix row is the whole built-in catalog."""
        config = default_engine_config()
        assert set(config.matrix[SystemRoles.ADMIN]) == set(Permissions.all())

    def test_fresh_copy_per_call(self) -> None:
        """Test that mutating one seed does not leak into the next."""
        first = default_engine_config()
        first.matrix[SystemRoles.GUEST].append(Permissions.ADMIN_SYSTEM)
        second = default_engine_config()
        assert Permissions.ADMIN_SYSTEM not in second.matrix[SystemRoles.GUEST]

    def test_settings_passed_through(self) -> None:
        """Test that runtime settings reach the engine."""
        settings = AccessCoreConfig(audit_checks=False)
        engine = AccessEngine(default_engine_config(settings))
        engine.has_permission("u1", Permissions.STORAGE_READ)
        assert engine.query_audit() == []

    def test_round_trips_as_dict(self) -> None:
        """Test that a dumped config seeds an equivalent engine."""
        data = default_engine_config().model_dump()
        engine = AccessEngine(EngineConfig.model_validate(data))
        assert [t.name for t in engine.list_templates()] == ["analyst", "auditor", "developer", "support"]
