"""Unit tests for rbac/service.py and rbac/seed.py -- authenticate/register flow.

Covers:
- authenticate() returns user, token and the grants embedded in the token
- every credential failure collapses to None
- register() never exposes the credential hash
- listing validation and counts
- independent service instances do not share state
"""

from __future__ import annotations

import pytest

from core.config import Settings
from rbac.errors import ConflictError, ValidationError
from rbac.seed import seed_defaults
from rbac.service import RBACService


class TestAuthenticate:
    def test_admin_login_embeds_roles_and_permissions(self, seeded) -> None:
        """Admin login returns a token whose claims match the resolved grants."""
        service, ids = seeded
        result = service.authenticate("admin", "password")
        assert result is not None
        assert result.user.id == ids["admin"]
        assert result.user.hashed_password is None
        assert [r.name for r in result.roles] == ["admin"]
        assert len(result.permissions) == 19

        claims = service.tokens.verify_token(result.token)
        assert claims.user_id == ids["admin"]
        assert claims.email == "admin@example.com"
        assert claims.roles == ("admin",)
        assert set(claims.permissions) == {p.name for p in result.permissions}

    @pytest.mark.parametrize(
        "username, password",
        [("admin", "wrong-password"), ("nobody", "password"), ("", ""), ("admin", 123), ("admin", None)],
    )
    def test_failures_are_indistinguishable(self, seeded, username, password) -> None:
        """Wrong password, unknown user, empty or wrong-typed input all return None."""
        service, _ = seeded
        assert service.authenticate(username, password) is None

    def test_inactive_account_cannot_log_in(self, seeded) -> None:
        """Deactivated accounts get None like any other failure."""
        service, ids = seeded
        service.identities.update_identity(ids["user1"], is_active=False)
        assert service.authenticate("user1", "password") is None

    def test_inactive_role_not_in_token(self, seeded) -> None:
        """A deactivated role contributes nothing to a new token."""
        service, ids = seeded
        service.catalog.update_role(service.catalog.find_role("user").id, is_active=False)
        result = service.authenticate("user1", "password")
        assert result.roles == []
        assert service.tokens.verify_token(result.token).permissions == ()


class TestRegister:
    def test_register_returns_public_active_user(self, service) -> None:
        """register() creates an active, role-less user and hides the hash."""
        user = service.register("carol", "carol@example.com", "secret123")
        assert user.is_active is True
        assert user.hashed_password is None
        assert service.authenticate("carol", "secret123").roles == []

    def test_register_duplicate_conflicts(self, service) -> None:
        """Registering a taken username -> ConflictError."""
        service.register("carol", "carol@example.com", "secret123")
        with pytest.raises(ConflictError):
            service.register("carol", "carol2@example.com", "secret123")


class TestListing:
    def test_counts_after_seed(self, seeded) -> None:
        """The default seed creates 2 users, 3 roles and 19 permissions."""
        service, _ = seeded
        assert service.counts() == {"users": 2, "roles": 3, "permissions": 19}

    def test_list_users_hides_hashes(self, seeded) -> None:
        """Listed users never carry a credential hash."""
        service, _ = seeded
        users = service.list_users(limit=10)
        assert {u.username for u in users} == {"admin", "user1"}
        assert all(u.hashed_password is None for u in users)

    @pytest.mark.parametrize("limit, offset", [(0, 0), (101, 0), (10, -1)])
    def test_bad_page_rejected(self, service, limit, offset) -> None:
        """limit outside 1-100 or a negative offset -> ValidationError."""
        with pytest.raises(ValidationError):
            service.list_roles(limit=limit, offset=offset)


def test_seed_is_not_idempotent(seeded) -> None:
    """Seeding twice -> ConflictError on the first duplicate."""
    service, _ = seeded
    with pytest.raises(ConflictError):
        seed_defaults(service)


def test_instances_are_isolated(db_url_factory, secret) -> None:
    """Two services on separate stores do not see each other's data."""
    settings_a = Settings(secret_key=secret, database_url=db_url_factory())
    settings_b = Settings(secret_key=secret, database_url=db_url_factory())
    a = RBACService.from_settings(settings_a)
    b = RBACService.from_settings(settings_b)
    try:
        a.register("carol", "carol@example.com", "secret123")
        assert b.identities.find_by_username("carol") is None
        assert b.counts()["users"] == 0
    finally:
        a.close()
        b.close()
