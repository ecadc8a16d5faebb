"""
rbac/identity.py -- Identity Directory: credential storage and verification.

Passwords: bcrypt, used directly (no passlib wrapper). bcrypt's cost factor
makes brute force expensive, and bcrypt.checkpw compares in constant time.

Enumeration: verify_credentials() returns None for an unknown username, an
inactive account and a wrong password alike, and it runs bcrypt in all three
cases. Unknown usernames are checked against _DUMMY_HASH so response time
does not reveal whether the account exists.

Every record returned from this module has passed through User.public().
"""

from __future__ import annotations

import logging
import re

import bcrypt

from rbac.errors import ConflictError, NotFoundError, ValidationError
from rbac.models import User
from rbac.store import RBACStore

logger = logging.getLogger("rbac.identity")

USERNAME_MIN, USERNAME_MAX = 3, 50
PASSWORD_MIN = 6
# bcrypt only looks at the first 72 bytes; longer inputs are rejected rather
# than silently truncated.
PASSWORD_MAX_BYTES = 72
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at import so the first login attempt is not measurably slower
# than later ones.
_DUMMY_HASH: str = hash_password("rbac_timing_dummy")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _username_error(username) -> str | None:
    if not isinstance(username, str) or not username.strip():
        return "Username is required."
    if not USERNAME_MIN <= len(username) <= USERNAME_MAX:
        return f"Username must be {USERNAME_MIN}-{USERNAME_MAX} characters."
    return None


def _email_error(email) -> str | None:
    if not isinstance(email, str) or not _EMAIL_PATTERN.match(email):
        return "A valid email address is required."
    return None


def _password_error(password) -> str | None:
    if not isinstance(password, str) or len(password) < PASSWORD_MIN:
        return f"Password must be at least {PASSWORD_MIN} characters."
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        return f"Password must be at most {PASSWORD_MAX_BYTES} bytes."
    return None


def _raise_if_invalid(errors: dict[str, str | None]) -> None:
    fields = {name: reason for name, reason in errors.items() if reason}
    if fields:
        raise ValidationError("Invalid identity data.", fields=fields)


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class IdentityDirectory:
    """User accounts and their credentials."""

    def __init__(self, store: RBACStore) -> None:
        self._store = store

    def create_identity(self, username: str, email: str, password: str, is_active: bool = True) -> User:
        """Create a user with a hashed password and return the public record.

        Raises ValidationError on malformed input and ConflictError if the
        username or email is taken. The store's unique indexes back up the
        pre-check, so a concurrent registration that slips past it still
        surfaces as ConflictError.
        """
        _raise_if_invalid(
            {
                "username": _username_error(username),
                "email": _email_error(email),
                "password": _password_error(password),
            }
        )
        if self._store.get_user_by_username(username) is not None:
            raise ConflictError("Username already exists.")
        if self._store.get_user_by_email(email) is not None:
            raise ConflictError("Email already exists.")

        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password),
            is_active=is_active,
        )
        user_id = self._store.create_user(user)
        logger.info("Identity created (user_id=%s)", user_id)
        return self._store.get_user(user_id).public()

    def verify_credentials(self, username: str, password: str) -> User | None:
        """Return the public user if the credentials are valid, else None.

        Always runs bcrypt whether or not the user exists:
        - Unknown username: bcrypt runs against _DUMMY_HASH
        - Wrong password or inactive account: bcrypt runs against the real hash
        """
        if not isinstance(password, str):
            password = ""
        user = self._store.get_user_by_username(username) if isinstance(username, str) else None
        if user is None or not user.hashed_password:
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, user.hashed_password):
            return None
        if not user.is_active:
            return None
        return user.public()

    def update_identity(self, user_id: int, **fields) -> User:
        """Update username, email, password and/or is_active independently.

        A supplied password is re-hashed; the plaintext is never stored.
        Raises NotFoundError for an unknown user_id.
        """
        unknown = set(fields) - {"username", "email", "password", "is_active"}
        if unknown:
            raise ValidationError("Unknown fields.", fields={name: "Field cannot be updated." for name in unknown})

        errors: dict[str, str | None] = {}
        if "username" in fields:
            errors["username"] = _username_error(fields["username"])
        if "email" in fields:
            errors["email"] = _email_error(fields["email"])
        if "password" in fields:
            errors["password"] = _password_error(fields["password"])
        _raise_if_invalid(errors)

        current = self._store.get_user(user_id)
        if current is None:
            raise NotFoundError(f"User {user_id} not found.")

        if "username" in fields and fields["username"] != current.username:
            if self._store.get_user_by_username(fields["username"]) is not None:
                raise ConflictError("Username already exists.")
        if "email" in fields and fields["email"] != current.email:
            if self._store.get_user_by_email(fields["email"]) is not None:
                raise ConflictError("Email already exists.")

        changes = {key: value for key, value in fields.items() if key != "password"}
        if "password" in fields:
            changes["hashed_password"] = hash_password(fields["password"])
        if changes and not self._store.update_user(user_id, **changes):
            raise NotFoundError(f"User {user_id} not found.")
        return self._store.get_user(user_id).public()

    def get_identity(self, user_id: int) -> User | None:
        user = self._store.get_user(user_id)
        return user.public() if user is not None else None

    def find_by_username(self, username: str) -> User | None:
        user = self._store.get_user_by_username(username)
        return user.public() if user is not None else None

    def delete_identity(self, user_id: int) -> None:
        """Delete a user and its role assignments. NotFoundError if unknown."""
        if not self._store.delete_user(user_id):
            raise NotFoundError(f"User {user_id} not found.")
        logger.info("Identity deleted (user_id=%s)", user_id)

    def list_identities(self, limit: int = 10, offset: int = 0) -> list[User]:
        return [u.public() for u in self._store.list_users(limit, offset)]

    def count_identities(self) -> int:
        return self._store.count_users()
