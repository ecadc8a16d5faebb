"""Unit tests for rbac/identity.py -- credential storage and verification.

Covers:
- create_identity() hashes the password and never returns the hash
- duplicate username / email -> ConflictError
- malformed input -> ValidationError with field detail
- verify_credentials() collapses unknown user, wrong password and inactive
  account into the same None result
- update_identity() re-hashes a new password and updates fields independently
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from rbac import identity as identity_module
from rbac.errors import ConflictError, NotFoundError, ValidationError
from rbac.identity import IdentityDirectory, hash_password, verify_password


@pytest.fixture
def directory(store) -> IdentityDirectory:
    return IdentityDirectory(store)


class TestPasswordHashing:
    def test_hash_is_not_plaintext_and_verifies(self) -> None:
        """hash_password output is a bcrypt hash that verifies only the exact plaintext."""
        hashed = hash_password("password")
        assert hashed != "password"
        assert verify_password("password", hashed)
        assert not verify_password("Password", hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        """A stored value that is not a bcrypt hash must verify as False, not raise."""
        assert verify_password("password", "not-a-bcrypt-hash") is False


class TestCreateIdentity:
    def test_returns_public_record(self, directory, store) -> None:
        """The returned user has no hash; the stored row holds a bcrypt hash."""
        user = directory.create_identity("alice", "alice@example.com", "secret123")
        assert user.id is not None
        assert user.username == "alice"
        assert user.hashed_password is None
        assert "hashed_password" not in user.to_dict()
        stored = store.get_user(user.id)
        assert stored.hashed_password.startswith("$2")
        assert verify_password("secret123", stored.hashed_password)

    def test_duplicate_username_conflicts(self, directory) -> None:
        """A second account with the same username -> ConflictError."""
        directory.create_identity("alice", "alice@example.com", "secret123")
        with pytest.raises(ConflictError):
            directory.create_identity("alice", "other@example.com", "secret123")

    def test_duplicate_email_conflicts(self, directory) -> None:
        """A second account with the same email -> ConflictError."""
        directory.create_identity("alice", "alice@example.com", "secret123")
        with pytest.raises(ConflictError):
            directory.create_identity("alice2", "alice@example.com", "secret123")

    def test_invalid_fields_reported_together(self, directory) -> None:
        """Every invalid field appears in ValidationError.fields, not just the first."""
        with pytest.raises(ValidationError) as exc_info:
            directory.create_identity("ab", "not-an-email", "123")
        assert set(exc_info.value.fields) == {"username", "email", "password"}

    def test_password_over_bcrypt_limit_rejected(self, directory) -> None:
        """Passwords over 72 bytes are rejected instead of silently truncated."""
        with pytest.raises(ValidationError) as exc_info:
            directory.create_identity("alice", "alice@example.com", "x" * 73)
        assert "password" in exc_info.value.fields


class TestVerifyCredentials:
    def test_correct_password_returns_user_without_hash(self, directory) -> None:
        """Valid credentials return the public record."""
        directory.create_identity("admin", "admin@example.com", "password")
        user = directory.verify_credentials("admin", "password")
        assert user is not None
        assert user.username == "admin"
        assert user.hashed_password is None

    def test_wrong_password_returns_none(self, directory) -> None:
        """A wrong password for an existing user -> None."""
        directory.create_identity("admin", "admin@example.com", "password")
        assert directory.verify_credentials("admin", "wrong-password") is None

    def test_inactive_account_returns_none(self, directory) -> None:
        """Correct password on a deactivated account is still a failure."""
        directory.create_identity("admin", "admin@example.com", "password", is_active=False)
        assert directory.verify_credentials("admin", "password") is None

    def test_unknown_username_returns_none(self, directory) -> None:
        """An unknown username -> None, same as a wrong password."""
        assert directory.verify_credentials("ghost", "password") is None

    def test_username_is_case_sensitive(self, directory) -> None:
        """Username lookup is exact -- ADMIN does not match admin."""
        directory.create_identity("admin", "admin@example.com", "password")
        assert directory.verify_credentials("ADMIN", "password") is None

    @pytest.mark.parametrize("password", [123, None, b"password", ["password"]])
    def test_non_string_password_returns_none(self, directory, password) -> None:
        """A password of the wrong type is a failed login."""
        directory.create_identity("admin", "admin@example.com", "password")
        assert directory.verify_credentials("admin", password) is None

    def test_non_string_password_still_runs_bcrypt(self, directory) -> None:
        """A wrong-typed password takes the same bcrypt path as a wrong one."""
        directory.create_identity("admin", "admin@example.com", "password")
        with patch.object(identity_module, "verify_password", wraps=identity_module.verify_password) as spy:
            assert directory.verify_credentials("admin", 123) is None
        spy.assert_called_once()
        assert spy.call_args.args[0] == ""

    def test_unknown_username_still_runs_bcrypt(self, directory) -> None:
        """Timing equalization: bcrypt must run even when the user does not exist."""
        with patch.object(identity_module, "verify_password", wraps=identity_module.verify_password) as spy:
            assert directory.verify_credentials("ghost", "password") is None
        spy.assert_called_once()
        assert spy.call_args.args[1] == identity_module._DUMMY_HASH


class TestUpdateIdentity:
    def test_new_password_is_rehashed(self, directory, store) -> None:
        """A new password replaces the hash; the old password stops working."""
        user = directory.create_identity("alice", "alice@example.com", "secret123")
        old_hash = store.get_user(user.id).hashed_password
        directory.update_identity(user.id, password="newsecret")
        new_hash = store.get_user(user.id).hashed_password
        assert new_hash != old_hash
        assert directory.verify_credentials("alice", "newsecret") is not None
        assert directory.verify_credentials("alice", "secret123") is None

    def test_other_fields_leave_password_untouched(self, directory, store) -> None:
        """Updating email alone keeps username and hash as they were."""
        user = directory.create_identity("alice", "alice@example.com", "secret123")
        old_hash = store.get_user(user.id).hashed_password
        updated = directory.update_identity(user.id, email="new@example.com")
        assert updated.email == "new@example.com"
        assert updated.username == "alice"
        assert store.get_user(user.id).hashed_password == old_hash

    def test_deactivate(self, directory) -> None:
        """is_active=False blocks further logins."""
        user = directory.create_identity("alice", "alice@example.com", "secret123")
        assert directory.update_identity(user.id, is_active=False).is_active is False
        assert directory.verify_credentials("alice", "secret123") is None

    def test_unknown_user_raises_not_found(self, directory) -> None:
        """Updating an unknown user id -> NotFoundError."""
        with pytest.raises(NotFoundError):
            directory.update_identity(999, email="x@example.com")

    def test_taken_username_conflicts(self, directory) -> None:
        """Renaming onto another user's username -> ConflictError."""
        directory.create_identity("alice", "alice@example.com", "secret123")
        bob = directory.create_identity("bob", "bob@example.com", "secret123")
        with pytest.raises(ConflictError):
            directory.update_identity(bob.id, username="alice")

    def test_unknown_field_rejected(self, directory) -> None:
        """The hash column cannot be written directly through update_identity."""
        user = directory.create_identity("alice", "alice@example.com", "secret123")
        with pytest.raises(ValidationError):
            directory.update_identity(user.id, hashed_password="x")


def test_delete_identity(directory) -> None:
    """Deleted users are gone; deleting again -> NotFoundError."""
    user = directory.create_identity("alice", "alice@example.com", "secret123")
    directory.delete_identity(user.id)
    assert directory.get_identity(user.id) is None
    with pytest.raises(NotFoundError):
        directory.delete_identity(user.id)
