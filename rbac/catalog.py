"""
rbac/catalog.py -- Role and permission definitions.

Permission names are canonical: the catalog derives "resource:action" from
the pair and rejects a supplied name that disagrees with it. A legacy
"resource.action" name is accepted and rewritten, so only the colon form is
ever stored.
"""

from __future__ import annotations

import logging

from rbac.errors import ConflictError, NotFoundError, ValidationError
from rbac.models import Permission, PermissionCheck, Role
from rbac.store import RBACStore

logger = logging.getLogger("rbac.catalog")

NAME_MAX = 100


def _token_error(value, label: str) -> str | None:
    """Resource, action and role names: non-empty, no whitespace, bounded."""
    if not isinstance(value, str) or not value:
        return f"{label} is required."
    if len(value) > NAME_MAX:
        return f"{label} must be at most {NAME_MAX} characters."
    if any(ch.isspace() for ch in value):
        return f"{label} must not contain whitespace."
    return None


def _permission_part_error(value, label: str) -> str | None:
    error = _token_error(value, label)
    if error is None and ":" in value:
        return f"{label} must not contain ':'."
    return error


class Catalog:
    """CRUD for roles and permissions."""

    def __init__(self, store: RBACStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None, is_active: bool = True) -> Role:
        error = _token_error(name, "Role name")
        if error:
            raise ValidationError("Invalid role.", fields={"name": error})
        if self._store.get_role_by_name(name) is not None:
            raise ConflictError(f"Role {name!r} already exists.")
        role_id = self._store.create_role(Role(name=name, description=description, is_active=is_active))
        logger.info("Role created (role_id=%s name=%s)", role_id, name)
        return self._store.get_role(role_id)

    def get_role(self, role_id: int) -> Role | None:
        return self._store.get_role(role_id)

    def find_role(self, name: str) -> Role | None:
        return self._store.get_role_by_name(name)

    def update_role(self, role_id: int, **fields) -> Role:
        """Update name, description and/or is_active.

        Deactivating a role keeps its assignment rows; it simply stops
        granting anything until reactivated.
        """
        unknown = set(fields) - {"name", "description", "is_active"}
        if unknown:
            raise ValidationError("Unknown fields.", fields={name: "Field cannot be updated." for name in unknown})
        if "name" in fields:
            error = _token_error(fields["name"], "Role name")
            if error:
                raise ValidationError("Invalid role.", fields={"name": error})
            existing = self._store.get_role_by_name(fields["name"])
            if existing is not None and existing.id != role_id:
                raise ConflictError(f"Role {fields['name']!r} already exists.")
        if not self._store.update_role(role_id, **fields):
            raise NotFoundError(f"Role {role_id} not found.")
        return self._store.get_role(role_id)

    def delete_role(self, role_id: int) -> None:
        if not self._store.delete_role(role_id):
            raise NotFoundError(f"Role {role_id} not found.")
        logger.info("Role deleted (role_id=%s)", role_id)

    def list_roles(self, limit: int = 10, offset: int = 0) -> list[Role]:
        return self._store.list_roles(limit, offset)

    def count_roles(self) -> int:
        return self._store.count_roles()

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(
        self,
        resource: str,
        action: str,
        description: str | None = None,
        name: str | None = None,
    ) -> Permission:
        errors = {
            "resource": _permission_part_error(resource, "Resource"),
            "action": _permission_part_error(action, "Action"),
        }
        fields = {key: reason for key, reason in errors.items() if reason}
        if fields:
            raise ValidationError("Invalid permission.", fields=fields)
        check = PermissionCheck(resource, action)
        if name is not None and PermissionCheck.parse(name) != check:
            raise ValidationError(
                "Invalid permission.",
                fields={"name": f"Name must be {check.name!r} for this resource and action."},
            )
        if self._store.get_permission_by_pair(resource, action) is not None:
            raise ConflictError(f"Permission {check.name!r} already exists.")

        permission_id = self._store.create_permission(
            Permission(resource=resource, action=action, name=check.name, description=description)
        )
        logger.info("Permission created (permission_id=%s name=%s)", permission_id, check.name)
        return self._store.get_permission(permission_id)

    def get_permission(self, permission_id: int) -> Permission | None:
        return self._store.get_permission(permission_id)

    def find_permission(self, resource: str, action: str) -> Permission | None:
        return self._store.get_permission_by_pair(resource, action)

    def update_permission(self, permission_id: int, **fields) -> Permission:
        """Update resource, action and/or description; name follows the pair."""
        unknown = set(fields) - {"resource", "action", "description"}
        if unknown:
            raise ValidationError("Unknown fields.", fields={name: "Field cannot be updated." for name in unknown})
        current = self._store.get_permission(permission_id)
        if current is None:
            raise NotFoundError(f"Permission {permission_id} not found.")

        resource = fields.get("resource", current.resource)
        action = fields.get("action", current.action)
        errors = {
            "resource": _permission_part_error(resource, "Resource"),
            "action": _permission_part_error(action, "Action"),
        }
        invalid = {key: reason for key, reason in errors.items() if reason}
        if invalid:
            raise ValidationError("Invalid permission.", fields=invalid)

        check = PermissionCheck(resource, action)
        if check != current.check:
            existing = self._store.get_permission_by_pair(resource, action)
            if existing is not None and existing.id != permission_id:
                raise ConflictError(f"Permission {check.name!r} already exists.")
            fields = {**fields, "name": check.name}
        if not self._store.update_permission(permission_id, **fields):
            raise NotFoundError(f"Permission {permission_id} not found.")
        return self._store.get_permission(permission_id)

    def delete_permission(self, permission_id: int) -> None:
        if not self._store.delete_permission(permission_id):
            raise NotFoundError(f"Permission {permission_id} not found.")
        logger.info("Permission deleted (permission_id=%s)", permission_id)

    def list_permissions(self, limit: int = 10, offset: int = 0) -> list[Permission]:
        return self._store.list_permissions(limit, offset)

    def count_permissions(self) -> int:
        return self._store.count_permissions()
