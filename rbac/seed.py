"""
rbac/seed.py -- Default roles, permissions and accounts.

Permission matrix:
  users, roles, permissions: create, read, update, delete, manage
  content:                   create, read, update, delete

Role grants:
  admin   -- all 19 permissions
  manager -- every content permission plus users:read
  user    -- content:read

Accounts: "admin" (role admin) and "user1" (role user). Both passwords are
parameters; production deployments pass their own.
"""

from __future__ import annotations

import logging

from rbac.models import PermissionCheck
from rbac.service import RBACService

logger = logging.getLogger("rbac.seed")

CRUD_ACTIONS = ("create", "read", "update", "delete")

PERMISSION_MATRIX: dict[str, tuple[str, ...]] = {
    "users": CRUD_ACTIONS + ("manage",),
    "roles": CRUD_ACTIONS + ("manage",),
    "permissions": CRUD_ACTIONS + ("manage",),
    "content": CRUD_ACTIONS,
}

ROLES: dict[str, str] = {
    "admin": "System administrator",
    "user": "Regular user",
    "manager": "Manager",
}


def _role_grants(role_name: str, check: PermissionCheck) -> bool:
    if role_name == "admin":
        return True
    if role_name == "manager":
        return check.resource == "content" or check == PermissionCheck("users", "read")
    return check == PermissionCheck("content", "read")


def seed_defaults(
    service: RBACService,
    admin_password: str = "password",
    user_password: str = "password",
) -> dict[str, int]:
    """Populate an empty store. Returns the ids of the created accounts by username.

    Not idempotent: running it twice raises ConflictError on the first
    duplicate, leaving the existing data untouched.
    """
    permissions = [
        service.catalog.create_permission(resource, action, description=f"{action.capitalize()} {resource}")
        for resource, actions in PERMISSION_MATRIX.items()
        for action in actions
    ]
    roles = {name: service.catalog.create_role(name, description) for name, description in ROLES.items()}

    admin = service.identities.create_identity("admin", "admin@example.com", admin_password)
    user1 = service.identities.create_identity("user1", "user1@example.com", user_password)

    for role_name, role in roles.items():
        for permission in permissions:
            if _role_grants(role_name, permission.check):
                service.graph.assign_permission(role.id, permission.id, assigned_by=admin.id)

    service.graph.assign_role(admin.id, roles["admin"].id, assigned_by=admin.id)
    service.graph.assign_role(user1.id, roles["user"].id, assigned_by=admin.id)

    logger.info("Seeded %d permissions, %d roles, 2 accounts", len(permissions), len(roles))
    return {"admin": admin.id, "user1": user1.id}
