"""
rbac/gate.py -- Authorization Gate: allow/deny decisions for protected operations.

Two stages, never conflated:
  1. identify(): bearer token -> IdentityContext, or None. No identity means
     UNAUTHENTICATED and the pipeline stops there -- no resolver queries run.
  2. Requirement.evaluate(): IdentityContext -> allow, or FORBIDDEN.

Requirements are plain values built by the require_* factories and can be
declared once at import time and evaluated on every request.

Grant sources:
  snapshot (default) -- the roles/permissions embedded in the token. Cheap,
      but stale until the token is re-issued.
  live -- the gate re-resolves roles and permissions through the
      PermissionResolver on every decision, so revocations and deactivations
      take effect immediately.

The gate never raises across its boundary. A failure during live resolution
is logged and returned as a deny with ErrorKind.INTERNAL.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace

from rbac.errors import ErrorKind
from rbac.models import IdentityContext, PermissionCheck
from rbac.resolver import PermissionResolver
from rbac.tokens import TokenService

logger = logging.getLogger("rbac.gate")

ADMIN_ROLE = "admin"

PermissionLike = PermissionCheck | str | Mapping[str, str]


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check. error is None iff allowed."""

    allowed: bool
    error: ErrorKind | None = None
    message: str = ""
    identity: IdentityContext | None = None

    @classmethod
    def allow(cls, identity: IdentityContext) -> Decision:
        return cls(allowed=True, identity=identity)

    @classmethod
    def unauthenticated(cls, message: str = "Authentication required.") -> Decision:
        return cls(allowed=False, error=ErrorKind.UNAUTHENTICATED, message=message)

    @classmethod
    def forbidden(cls, identity: IdentityContext, message: str) -> Decision:
        return cls(allowed=False, error=ErrorKind.FORBIDDEN, message=message, identity=identity)


def as_check(value: PermissionLike) -> PermissionCheck:
    """Normalize a permission argument to its canonical (resource, action) pair.

    Accepts a PermissionCheck, a "resource:action" / "resource.action" string,
    or a mapping with "resource" and "action" keys. Raises ValueError for
    anything else; requirements are declared in code, so a bad one is a
    programming error caught at declaration time.
    """
    if isinstance(value, PermissionCheck):
        return value
    if isinstance(value, str):
        check = PermissionCheck.parse(value)
        if check is None:
            raise ValueError(f"Not a permission name: {value!r}")
        return check
    if isinstance(value, Mapping):
        resource, action = value.get("resource"), value.get("action")
        if isinstance(resource, str) and isinstance(action, str) and resource and action:
            return PermissionCheck(resource, action)
    raise ValueError(f"Not a permission check: {value!r}")


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Requirement:
    """A declared access rule: a predicate over an identity plus a denial message."""

    description: str
    predicate: Callable[[IdentityContext], bool]

    def evaluate(self, identity: IdentityContext | None) -> Decision:
        if identity is None:
            return Decision.unauthenticated()
        if self.predicate(identity):
            return Decision.allow(identity)
        return Decision.forbidden(identity, f"Access denied: {self.description} required.")


def require_role(name: str) -> Requirement:
    return Requirement(f"role {name!r}", lambda identity: name in identity.roles)


def require_permission(check: PermissionLike) -> Requirement:
    wanted = as_check(check)
    return Requirement(f"permission {wanted.name!r}", lambda identity: wanted in identity.permissions)


def require_any_role(names: Iterable[str]) -> Requirement:
    wanted = tuple(names)
    return Requirement(
        f"one of roles {', '.join(wanted)}",
        lambda identity: any(name in identity.roles for name in wanted),
    )


def require_any_permission(checks: Iterable[PermissionLike]) -> Requirement:
    wanted = tuple(as_check(c) for c in checks)
    return Requirement(
        f"one of permissions {', '.join(c.name for c in wanted)}",
        lambda identity: any(c in identity.permissions for c in wanted),
    )


def require_admin_or_permission(check: PermissionLike, admin_role: str = ADMIN_ROLE) -> Requirement:
    """Pass for the admin role regardless of permissions, else require the permission."""
    wanted = as_check(check)
    return Requirement(
        f"role {admin_role!r} or permission {wanted.name!r}",
        lambda identity: admin_role in identity.roles or wanted in identity.permissions,
    )


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class AuthorizationGate:
    """Turns bearer tokens into decisions.

    Usage:
        gate = AuthorizationGate(tokens)                      # snapshot mode
        gate = AuthorizationGate(tokens, resolver, live=True) # live mode
        decision = gate.authorize(token, require_role("admin"))
    """

    def __init__(
        self,
        tokens: TokenService,
        resolver: PermissionResolver | None = None,
        live: bool = False,
    ) -> None:
        if live and resolver is None:
            raise ValueError("Live mode needs a PermissionResolver.")
        self._tokens = tokens
        self._resolver = resolver
        self.live = live

    def identify(self, token: str | None) -> IdentityContext | None:
        """Verify the token and build the identity context. None if absent or invalid."""
        claims = self._tokens.verify_token(token) if token else None
        if claims is None:
            return None
        return IdentityContext.from_claims(claims)

    def check(self, identity: IdentityContext | None, requirement: Requirement) -> Decision:
        """Evaluate a requirement for an already-identified caller."""
        if identity is None:
            return Decision.unauthenticated()
        if self.live:
            try:
                identity = self._refresh(identity)
            except Exception:
                logger.exception("Live grant resolution failed (user_id=%s)", identity.user_id)
                return Decision(
                    allowed=False,
                    error=ErrorKind.INTERNAL,
                    message="Authorization could not be evaluated.",
                    identity=identity,
                )
            if identity is None:
                return Decision.unauthenticated("Account is no longer active.")
        decision = requirement.evaluate(identity)
        if not decision.allowed:
            logger.info("Access denied (user_id=%s): %s", identity.user_id, requirement.description)
        return decision

    def authorize(self, token: str | None, requirement: Requirement) -> Decision:
        """Full pipeline: identify, then check. Short-circuits on a bad token."""
        identity = self.identify(token)
        if identity is None:
            return Decision.unauthenticated()
        return self.check(identity, requirement)

    def _refresh(self, identity: IdentityContext) -> IdentityContext | None:
        """Replace snapshot grants with the user's current ones."""
        if not self._resolver.is_active_user(identity.user_id):
            return None
        roles, permissions = self._resolver.get_grants(identity.user_id)
        return replace(
            identity,
            roles=frozenset(role.name for role in roles),
            permissions=frozenset(p.check for p in permissions),
        )
