"""
rbac/models.py -- Domain dataclasses for RBAC entities.

Pattern: Data class (pure data containers). The store maps rows into these;
services and the gate do the work. PermissionCheck is the one exception with
a little behaviour: it owns the canonical resource:action format so nothing
else in the package has to parse permission names.

Layer rule: no imports from other rbac/ modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

PERMISSION_SEPARATOR = ":"
# Accepted on input for compatibility, rewritten to PERMISSION_SEPARATOR.
LEGACY_PERMISSION_SEPARATOR = "."


@dataclass
class User:
    """A principal that can authenticate.

    hashed_password is a bcrypt hash. It leaves the store only on the way into
    the credential check; every record handed outward goes through public()
    first.
    """

    username: str
    email: str
    id: int | None = None
    hashed_password: str | None = field(default=None, repr=False)
    is_active: bool = True
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""

    def public(self) -> User:
        """Return a copy with the credential hash removed."""
        return replace(self, hashed_password=None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Role:
    """A named, flat bundle of permissions. Inactive roles grant nothing."""

    name: str
    id: int | None = None
    description: str | None = None
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Permission:
    """A grant on one (resource, action) pair.

    name is always the canonical "resource:action" form; the catalog derives
    it, callers never choose it freely.
    """

    resource: str
    action: str
    name: str = ""
    id: int | None = None
    description: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = f"{self.resource}{PERMISSION_SEPARATOR}{self.action}"

    @property
    def check(self) -> PermissionCheck:
        return PermissionCheck(self.resource, self.action)


@dataclass
class UserRoleAssignment:
    user_id: int
    role_id: int
    assigned_by: int | None = None
    assigned_at: str = ""
    id: int | None = None


@dataclass
class RolePermissionAssignment:
    role_id: int
    permission_id: int
    assigned_by: int | None = None
    assigned_at: str = ""
    id: int | None = None


@dataclass(frozen=True)
class PermissionCheck:
    """Canonical (resource, action) identity of a permission.

    Frozen and hashable: sets of PermissionCheck are how the resolver
    deduplicates and how the gate matches.
    """

    resource: str
    action: str

    @property
    def name(self) -> str:
        return f"{self.resource}{PERMISSION_SEPARATOR}{self.action}"

    @classmethod
    def parse(cls, name: str) -> PermissionCheck | None:
        """Parse "resource:action" (or legacy "resource.action").

        Returns None when the value has no separator or an empty half. The
        colon form wins when both separators appear, so "a.b:c" is
        ("a.b", "c").
        """
        if not isinstance(name, str):
            return None
        if PERMISSION_SEPARATOR in name:
            resource, _, action = name.partition(PERMISSION_SEPARATOR)
        elif LEGACY_PERMISSION_SEPARATOR in name:
            resource, _, action = name.partition(LEGACY_PERMISSION_SEPARATOR)
        else:
            return None
        if not resource or not action:
            return None
        return cls(resource, action)


@dataclass(frozen=True)
class TokenClaims:
    """Identity and grants snapshot carried by a signed token.

    roles and permissions are names exactly as issued. issued_at and
    expires_at are filled in by the token service.
    """

    user_id: int
    username: str
    email: str
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()
    issued_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class IdentityContext:
    """Authenticated identity threaded through the authorization pipeline.

    Built once per request from verified TokenClaims and never mutated.
    permissions holds canonical pairs only; legacy names were normalized on
    the way in.
    """

    user_id: int
    username: str
    email: str
    roles: frozenset[str] = frozenset()
    permissions: frozenset[PermissionCheck] = frozenset()
    expires_at: datetime | None = None

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> IdentityContext:
        checks = (PermissionCheck.parse(name) for name in claims.permissions)
        return cls(
            user_id=claims.user_id,
            username=claims.username,
            email=claims.email,
            roles=frozenset(claims.roles),
            permissions=frozenset(c for c in checks if c is not None),
            expires_at=claims.expires_at,
        )


@dataclass
class AuthResult:
    """Successful login: public user, freshly minted token and the grants in it."""

    user: User
    token: str
    roles: list[Role] = field(default_factory=list)
    permissions: list[Permission] = field(default_factory=list)
