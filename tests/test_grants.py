"""Tests for the grant overlay (static, temporary, denied, groups)."""

from __future__ import annotations

import pytest

from accesscore import NotFoundError, Permissions, ValidationError
from accesscore.permissions import GrantOverlay, PermissionCatalog

from conftest import FakeClock


@pytest.fixture
def overlay(clock: FakeClock) -> GrantOverlay:
    catalog = PermissionCatalog(Permissions.all())
    catalog.register("feature.beta")
    return GrantOverlay(catalog, clock=clock)


class TestStaticGrants:
    """Tests for static grants."""

    def test_grant_and_revoke(self, overlay: GrantOverlay) -> None:
        assert overlay.grant_static("developer", "feature.beta") is True
        assert overlay.has_static("developer", "feature.beta")
        assert overlay.revoke_static("developer", "feature.beta") is True
        assert not overlay.has_static("developer", "feature.beta")

    def test_idempotent(self, overlay: GrantOverlay) -> None:
        overlay.grant_static("developer", "feature.beta")
        assert overlay.grant_static("developer", "feature.beta") is False
        assert overlay.grants_for_role("developer").static == ["feature.beta"]
        overlay.revoke_static("developer", "feature.beta")
        assert overlay.revoke_static("developer", "feature.beta") is False

    def test_unregistered_permission_rejected(self, overlay: GrantOverlay) -> None:
        with pytest.raises(NotFoundError):
            overlay.grant_static("developer", "feature.unknown")


class TestTemporaryGrants:
    """Tests for TTL grants."""

    def test_expires_lazily(self, overlay: GrantOverlay, clock: FakeClock) -> None:
        overlay.grant_temporary("developer", "feature.beta", ttl_seconds=60)
        assert overlay.has_temporary("developer", "feature.beta")
        clock.advance(60)
        assert not overlay.has_temporary("developer", "feature.beta")
        # observed, not evicted
        assert "feature.beta" in overlay.grants_for_role("developer").temporary

    def test_remaining_ttl(self, overlay: GrantOverlay, clock: FakeClock) -> None:
        overlay.grant_temporary("developer", "feature.beta", ttl_seconds=60)
        clock.advance(15)
        assert overlay.get_remaining_ttl("developer", "feature.beta") == 45
        clock.advance(100)
        assert overlay.get_remaining_ttl("developer", "feature.beta") == 0
        assert overlay.get_remaining_ttl("developer", Permissions.USER_READ) == 0

    def test_regrant_overwrites_expiry(self, overlay: GrantOverlay, clock: FakeClock) -> None:
        overlay.grant_temporary("developer", "feature.beta", ttl_seconds=10)
        overlay.grant_temporary("developer", "feature.beta", ttl_seconds=100)
        clock.advance(50)
        assert overlay.has_temporary("developer", "feature.beta")

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_rejected(self, overlay: GrantOverlay, ttl: float) -> None:
        with pytest.raises(ValidationError):
            overlay.grant_temporary("developer", "feature.beta", ttl_seconds=ttl)

    def test_evict_expired(self, overlay: GrantOverlay, clock: FakeClock) -> None:
        overlay.grant_temporary("developer", "feature.beta", ttl_seconds=5)
        overlay.grant_temporary("developer", Permissions.USER_READ, ttl_seconds=500)
        clock.advance(10)
        assert overlay.evict_expired() == 1
        assert overlay.grants_for_role("developer").temporary.keys() == {Permissions.USER_READ}

    def test_granted_permissions_excludes_expired(self, overlay: GrantOverlay, clock: FakeClock) -> None:
        overlay.grant_static("developer", Permissions.USER_READ)
        overlay.grant_temporary("developer", "feature.beta", ttl_seconds=5)
        assert overlay.granted_permissions("developer") == {Permissions.USER_READ, "feature.beta"}
        clock.advance(5)
        assert overlay.granted_permissions("developer") == {Permissions.USER_READ}


class TestDenialsAndGroups:
    """Tests for denials, groups, and purging."""

    def test_deny_undeny(self, overlay: GrantOverlay) -> None:
        assert overlay.deny("developer", "feature.beta") is True
        assert overlay.deny("developer", "feature.beta") is False
        assert overlay.is_denied("developer", "feature.beta")
        assert overlay.undeny("developer", "feature.beta") is True
        assert overlay.undeny("developer", "feature.beta") is False

    def test_grant_group(self, overlay: GrantOverlay) -> None:
        bundle = [Permissions.STORAGE_READ, Permissions.STORAGE_WRITE]
        overlay.grant_static("developer", Permissions.STORAGE_READ)
        added = overlay.grant_group("developer", "storage-rw", bundle)
        assert added == [Permissions.STORAGE_WRITE]
        assert overlay.get_group("storage-rw") == bundle
        # retry is safe
        assert overlay.grant_group("developer", "storage-rw", bundle) == []

    def test_grant_group_validates_first(self, overlay: GrantOverlay) -> None:
        """An unknown member leaves the role untouched."""
        with pytest.raises(NotFoundError):
            overlay.grant_group("developer", "mixed", [Permissions.STORAGE_READ, "feature.unknown"])
        assert overlay.grants_for_role("developer").static == []
        with pytest.raises(NotFoundError):
            overlay.get_group("mixed")

    def test_purge_permission(self, overlay: GrantOverlay) -> None:
        overlay.grant_static("developer", "feature.beta")
        overlay.grant_temporary("tester", "feature.beta", ttl_seconds=60)
        overlay.deny("guest", "feature.beta")
        assert overlay.purge_permission("feature.beta") == 3
        assert overlay.dump()[0] == []

    def test_dump_and_load(self, overlay: GrantOverlay, clock: FakeClock) -> None:
        overlay.grant_static("developer", "feature.beta")
        overlay.grant_temporary("developer", Permissions.USER_READ, ttl_seconds=60)
        overlay.deny("guest", Permissions.USER_READ)
        overlay.grant_group("developer", "g", [Permissions.STORAGE_READ])
        grants, groups = overlay.dump()

        restored = GrantOverlay(clock=clock)
        restored.load(grants, groups)
        assert restored.has_static("developer", "feature.beta")
        assert restored.has_temporary("developer", Permissions.USER_READ)
        assert restored.is_denied("guest", Permissions.USER_READ)
        assert restored.get_group("g") == [Permissions.STORAGE_READ]
