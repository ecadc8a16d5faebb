"""
rbac/graph.py -- Role-Permission Graph: the user<->role and role<->permission edges.

Each assign/remove call touches exactly one junction row.

Re-assigning an existing edge is an error, not a no-op: both junctions raise
ConflictError and leave the graph unchanged. The unique constraints in the
store are what enforce this under concurrency; there is no check-then-insert
race to lose.

Read queries apply the active filter of the joined entity. An edge to an
inactive role stays in the table (get_*_assignments still shows it) but is
invisible to every "effective grant" query.
"""

from __future__ import annotations

import logging

from rbac.errors import ConflictError, NotFoundError
from rbac.models import Permission, PermissionCheck, Role, RolePermissionAssignment, User, UserRoleAssignment
from rbac.store import RBACStore

logger = logging.getLogger("rbac.graph")


class RoleGraph:
    def __init__(self, store: RBACStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def assign_role(self, user_id: int, role_id: int, assigned_by: int | None = None) -> UserRoleAssignment:
        """Grant role_id to user_id.

        Raises NotFoundError if either endpoint is unknown and ConflictError
        if the edge already exists.
        """
        if self._store.get_user(user_id) is None:
            raise NotFoundError(f"User {user_id} not found.")
        if self._store.get_role(role_id) is None:
            raise NotFoundError(f"Role {role_id} not found.")
        try:
            edge_id = self._store.insert_user_role(user_id, role_id, assigned_by)
        except ConflictError:
            raise ConflictError(f"User {user_id} already holds role {role_id}.") from None
        logger.info("Role assigned (user_id=%s role_id=%s by=%s)", user_id, role_id, assigned_by)
        edge = self._store.get_user_role_row(edge_id)
        if edge is None:
            # Removed concurrently between insert and read-back.
            raise NotFoundError(f"Assignment of role {role_id} to user {user_id} no longer exists.")
        return edge

    def remove_role(self, user_id: int, role_id: int) -> bool:
        """Remove the edge. Returns False if it did not exist."""
        removed = self._store.delete_user_role(user_id, role_id)
        if removed:
            logger.info("Role removed (user_id=%s role_id=%s)", user_id, role_id)
        return removed

    def assign_permission(
        self, role_id: int, permission_id: int, assigned_by: int | None = None
    ) -> RolePermissionAssignment:
        """Grant permission_id to role_id. Same error contract as assign_role()."""
        if self._store.get_role(role_id) is None:
            raise NotFoundError(f"Role {role_id} not found.")
        if self._store.get_permission(permission_id) is None:
            raise NotFoundError(f"Permission {permission_id} not found.")
        try:
            edge_id = self._store.insert_role_permission(role_id, permission_id, assigned_by)
        except ConflictError:
            raise ConflictError(f"Role {role_id} already grants permission {permission_id}.") from None
        logger.info("Permission assigned (role_id=%s permission_id=%s by=%s)", role_id, permission_id, assigned_by)
        edge = self._store.get_role_permission_row(edge_id)
        if edge is None:
            raise NotFoundError(f"Grant of permission {permission_id} to role {role_id} no longer exists.")
        return edge

    def remove_permission(self, role_id: int, permission_id: int) -> bool:
        removed = self._store.delete_role_permission(role_id, permission_id)
        if removed:
            logger.info("Permission removed (role_id=%s permission_id=%s)", role_id, permission_id)
        return removed

    # ------------------------------------------------------------------
    # Active-filtered reads
    # ------------------------------------------------------------------

    def get_user_roles(self, user_id: int) -> list[Role]:
        return self._store.get_active_user_roles(user_id)

    def get_role_users(self, role_id: int) -> list[User]:
        return [u.public() for u in self._store.get_active_role_users(role_id)]

    def get_role_permissions(self, role_id: int) -> list[Permission]:
        return self._store.get_active_role_permissions(role_id)

    def get_permission_roles(self, permission_id: int) -> list[Role]:
        return self._store.get_active_permission_roles(permission_id)

    def user_has_role(self, user_id: int, role_name: str) -> bool:
        return self._store.user_has_active_role(user_id, role_name)

    def role_has_permission(self, role_id: int, permission_name: str) -> bool:
        """Existence check by permission name; "resource.action" is normalized first."""
        check = PermissionCheck.parse(permission_name)
        if check is None:
            return False
        return self._store.role_has_active_permission(role_id, check.name)

    # ------------------------------------------------------------------
    # Raw edges
    # ------------------------------------------------------------------

    def get_user_role_assignments(self, user_id: int) -> list[UserRoleAssignment]:
        return self._store.get_user_role_rows(user_id)

    def get_role_permission_assignments(self, role_id: int) -> list[RolePermissionAssignment]:
        return self._store.get_role_permission_rows(role_id)
