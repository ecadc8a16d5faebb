"""
rbac/resolver.py -- Permission Resolver: a user's effective grants.

Effective permissions are the union of the permissions of the user's active
roles, deduplicated by (resource, action) identity. Two roles may grant the
same permission row; the pair, not object equality, decides what counts as a
duplicate.

Per-role lookups are independent and run on a thread pool when the user has
more than one role. executor.map() yields results in submission order, so the
merged list is always in role-assignment order followed by each role's
permission-assignment order, whichever lookup finishes first.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from rbac.models import Permission, PermissionCheck, Role
from rbac.store import RBACStore

logger = logging.getLogger("rbac.resolver")


def merge_permissions(groups: list[list[Permission]]) -> list[Permission]:
    """Flatten per-role permission lists, keeping the first of each pair."""
    seen: set[PermissionCheck] = set()
    merged: list[Permission] = []
    for group in groups:
        for permission in group:
            if permission.check in seen:
                continue
            seen.add(permission.check)
            merged.append(permission)
    return merged


class PermissionResolver:
    def __init__(self, store: RBACStore, max_workers: int = 4) -> None:
        self._store = store
        self._max_workers = max(1, max_workers)

    def get_user_roles(self, user_id: int) -> list[Role]:
        return self._store.get_active_user_roles(user_id)

    def get_user_permissions(self, user_id: int) -> list[Permission]:
        roles = self._store.get_active_user_roles(user_id)
        return self._permissions_for(roles)

    def has_permission(self, user_id: int, check: PermissionCheck) -> bool:
        """Exact, case-sensitive match on both resource and action."""
        return any(p.check == check for p in self.get_user_permissions(user_id))

    def has_role(self, user_id: int, role_name: str) -> bool:
        return self._store.user_has_active_role(user_id, role_name)

    def is_active_user(self, user_id: int) -> bool:
        user = self._store.get_user(user_id)
        return user is not None and user.is_active

    def get_grants(self, user_id: int) -> tuple[list[Role], list[Permission]]:
        """Active roles and effective permissions from one role fetch."""
        roles = self._store.get_active_user_roles(user_id)
        return roles, self._permissions_for(roles)

    def _permissions_for(self, roles: list[Role]) -> list[Permission]:
        role_ids = [role.id for role in roles]
        if len(role_ids) <= 1 or self._max_workers == 1:
            groups = [self._store.get_active_role_permissions(role_id) for role_id in role_ids]
        else:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(role_ids))) as pool:
                groups = list(pool.map(self._store.get_active_role_permissions, role_ids))
        merged = merge_permissions(groups)
        logger.debug("Resolved %d permissions from %d roles", len(merged), len(role_ids))
        return merged
