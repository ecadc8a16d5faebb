"""
rbac/service.py -- RBACService: the entry points the transport layer calls.

Wires the components around one explicitly constructed RBACStore:

    IdentityDirectory  -- users and credentials
    Catalog            -- roles and permissions
    RoleGraph          -- user<->role and role<->permission edges
    PermissionResolver -- effective grants
    TokenService       -- signed identity tokens
    AuthorizationGate  -- allow/deny decisions

Usage:
    service = RBACService.from_settings(get_settings())
    result = service.authenticate("admin", "password")   # AuthResult | None
    decision = service.gate.authorize(result.token, require_role("admin"))
    service.close()

Several services with separate stores can coexist in one process; nothing
here is global.
"""

from __future__ import annotations

import logging

from core.config import Settings
from rbac.catalog import Catalog
from rbac.errors import ValidationError
from rbac.gate import AuthorizationGate
from rbac.graph import RoleGraph
from rbac.identity import IdentityDirectory
from rbac.models import AuthResult, Permission, Role, TokenClaims, User
from rbac.resolver import PermissionResolver
from rbac.store import RBACStore
from rbac.tokens import TokenService

logger = logging.getLogger("rbac.service")

MAX_PAGE_SIZE = 100


def _check_page(limit: int, offset: int) -> None:
    fields = {}
    if not 1 <= limit <= MAX_PAGE_SIZE:
        fields["limit"] = f"Limit must be between 1 and {MAX_PAGE_SIZE}."
    if offset < 0:
        fields["offset"] = "Offset must not be negative."
    if fields:
        raise ValidationError("Invalid pagination.", fields=fields)


class RBACService:
    def __init__(
        self,
        store: RBACStore,
        tokens: TokenService,
        resolver_max_workers: int = 4,
        live_authorization: bool = False,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.identities = IdentityDirectory(store)
        self.catalog = Catalog(store)
        self.graph = RoleGraph(store)
        self.resolver = PermissionResolver(store, max_workers=resolver_max_workers)
        self.gate = AuthorizationGate(tokens, self.resolver, live=live_authorization)

    @classmethod
    def from_settings(cls, settings: Settings, live_authorization: bool = False) -> RBACService:
        return cls(
            store=RBACStore(settings.database_url),
            tokens=TokenService(settings.secret_key, settings.token_expire_seconds),
            resolver_max_workers=settings.resolver_max_workers,
            live_authorization=live_authorization,
        )

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, username: str, password: str) -> AuthResult | None:
        """Verify credentials and mint a token carrying the current grants.

        Returns None for every kind of credential failure; the log line does
        not say which one either.
        """
        user = self.identities.verify_credentials(username, password)
        if user is None:
            logger.info("Authentication failed")
            return None

        roles, permissions = self.resolver.get_grants(user.id)
        token = self.tokens.issue_token(
            TokenClaims(
                user_id=user.id,
                username=user.username,
                email=user.email,
                roles=tuple(role.name for role in roles),
                permissions=tuple(p.name for p in permissions),
            )
        )
        logger.info("Authentication succeeded (user_id=%s roles=%d)", user.id, len(roles))
        return AuthResult(user=user, token=token, roles=roles, permissions=permissions)

    def register(self, username: str, email: str, password: str) -> User:
        """Create an active account with no roles. The result never carries the hash."""
        return self.identities.create_identity(username, email, password, is_active=True)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_users(self, limit: int = 10, offset: int = 0) -> list[User]:
        _check_page(limit, offset)
        return self.identities.list_identities(limit, offset)

    def list_roles(self, limit: int = 10, offset: int = 0) -> list[Role]:
        _check_page(limit, offset)
        return self.catalog.list_roles(limit, offset)

    def list_permissions(self, limit: int = 10, offset: int = 0) -> list[Permission]:
        _check_page(limit, offset)
        return self.catalog.list_permissions(limit, offset)

    def counts(self) -> dict[str, int]:
        return {
            "users": self.identities.count_identities(),
            "roles": self.catalog.count_roles(),
            "permissions": self.catalog.count_permissions(),
        }

    def close(self) -> None:
        self.store.close()
