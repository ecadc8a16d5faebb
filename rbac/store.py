"""
rbac/store.py -- SQLAlchemy Core persistence layer for RBAC entities.

Pattern: Repository + Data Mapper. RBACStore is the repository (one clean
interface per entity and junction); the _row_to_* functions are the mappers.
Service code never touches SQL directly.

Uses SQLAlchemy Core (not ORM) so the dataclasses in rbac/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Security: all queries use bound parameters. No f-strings in SQL.

Integrity:
  UNIQUE(user_id, role_id) and UNIQUE(role_id, permission_id) are the only
  arbiters of duplicate edges. Two concurrent identical assignments both pass
  any pre-check; the database rejects the second insert and the caller sees
  ConflictError.

  Junction foreign keys declare ON DELETE CASCADE, and delete_* also removes
  dependent rows explicitly inside the same transaction so the cascade holds
  on backends where foreign key enforcement is off.

Error translation: IntegrityError -> ConflictError, any other
SQLAlchemyError -> InternalError. Lookups return None for absence.

Usage:
    store = RBACStore("sqlite:///rbac.db")
    role_id = store.create_role(Role(name="admin"))
    roles = store.get_active_user_roles(user_id)
    store.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from rbac.errors import ConflictError, InternalError
from rbac.models import Permission, Role, RolePermissionAssignment, User, UserRoleAssignment

logger = logging.getLogger("rbac.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),  # canonical resource:action
    Column("resource", String(100), nullable=False),
    Column("action", String(100), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("resource", "action", name="uq_permission_pair"),
)

_user_roles = Table(
    "user_roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("assigned_by", Integer),  # user id of the grantor, NULL for seeds
    Column("assigned_at", String(32), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    Column("assigned_by", Integer),
    Column("assigned_at", String(32), nullable=False),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
)

_USER_FIELDS = {"username", "email", "hashed_password", "is_active"}
_ROLE_FIELDS = {"name", "description", "is_active"}
_PERMISSION_FIELDS = {"name", "resource", "action", "description"}


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on every new SQLite connection.

    SQLite PRAGMAs are per-connection and not inherited from the pool, so
    this runs on the engine's "connect" event.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_fields(fields: dict, allowed: set[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {sorted(unknown)!r}")


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map driver-level failures onto the RBAC error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        logger.info("%s rejected by constraint: %s", operation, exc.orig)
        raise ConflictError(f"{operation}: duplicate or conflicting record") from exc
    except SQLAlchemyError as exc:
        logger.exception("%s failed", operation)
        raise InternalError(f"{operation}: storage failure") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RBACStore:
    """Repository for users, roles, permissions and their two junctions.

    Each public method opens its own connection from the engine pool, so one
    store may be shared across threads.
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a user and return its ID. ConflictError on duplicate username/email."""
        now = _now_iso()
        with _translate_errors("create_user"), self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_user(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        """Exact, case-sensitive username lookup."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable user columns. Returns False if user_id was not found.

        Accepted fields: username, email, hashed_password, is_active (bool).
        """
        _check_fields(fields, _USER_FIELDS)
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with _translate_errors("update_user"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and its role assignments. Returns False if not found."""
        with _translate_errors("delete_user"), self.engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def list_users(self, limit: int = 10, offset: int = 0) -> list[User]:
        """Return one page of users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .order_by(_users.c.created_at.desc(), _users.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        now = _now_iso()
        with _translate_errors("create_role"), self.engine.begin() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    is_active=1 if role.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def update_role(self, role_id: int, **fields) -> bool:
        """Accepted fields: name, description, is_active (bool)."""
        _check_fields(fields, _ROLE_FIELDS)
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with _translate_errors("update_role"), self.engine.begin() as conn:
            result = conn.execute(
                _roles.update().where(_roles.c.id == role_id).values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def delete_role(self, role_id: int) -> bool:
        """Delete a role together with both kinds of edges that reference it."""
        with _translate_errors("delete_role"), self.engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.role_id == role_id))
            conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
        return result.rowcount > 0

    def list_roles(self, limit: int = 10, offset: int = 0) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _roles.select()
                .order_by(_roles.c.created_at.desc(), _roles.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).fetchall()
        return [_row_to_role(r) for r in rows]

    def count_roles(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_roles)).scalar() or 0

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> int:
        now = _now_iso()
        with _translate_errors("create_permission"), self.engine.begin() as conn:
            result = conn.execute(
                _permissions.insert().values(
                    name=permission.name,
                    resource=permission.resource,
                    action=permission.action,
                    description=permission.description,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_pair(self, resource: str, action: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _permissions.select().where((_permissions.c.resource == resource) & (_permissions.c.action == action))
            ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def update_permission(self, permission_id: int, **fields) -> bool:
        """Accepted fields: name, resource, action, description.

        The caller keeps name consistent with (resource, action).
        """
        _check_fields(fields, _PERMISSION_FIELDS)
        with _translate_errors("update_permission"), self.engine.begin() as conn:
            result = conn.execute(
                _permissions.update()
                .where(_permissions.c.id == permission_id)
                .values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def delete_permission(self, permission_id: int) -> bool:
        with _translate_errors("delete_permission"), self.engine.begin() as conn:
            conn.execute(_role_permissions.delete().where(_role_permissions.c.permission_id == permission_id))
            result = conn.execute(_permissions.delete().where(_permissions.c.id == permission_id))
        return result.rowcount > 0

    def list_permissions(self, limit: int = 10, offset: int = 0) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _permissions.select()
                .order_by(_permissions.c.created_at.desc(), _permissions.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def count_permissions(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_permissions)).scalar() or 0

    # ------------------------------------------------------------------
    # user_roles junction
    # ------------------------------------------------------------------

    def insert_user_role(self, user_id: int, role_id: int, assigned_by: int | None) -> int:
        """Insert one user->role edge. ConflictError if the pair already exists."""
        with _translate_errors("assign_role"), self.engine.begin() as conn:
            result = conn.execute(
                _user_roles.insert().values(
                    user_id=user_id,
                    role_id=role_id,
                    assigned_by=assigned_by,
                    assigned_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def delete_user_role(self, user_id: int, role_id: int) -> bool:
        with _translate_errors("remove_role"), self.engine.begin() as conn:
            result = conn.execute(
                _user_roles.delete().where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            )
        return result.rowcount > 0

    def get_active_user_roles(self, user_id: int) -> list[Role]:
        """Active roles held by a user, in assignment order."""
        query = (
            select(_roles)
            .select_from(_user_roles.join(_roles, _user_roles.c.role_id == _roles.c.id))
            .where((_user_roles.c.user_id == user_id) & (_roles.c.is_active == 1))
            .order_by(_user_roles.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_active_role_users(self, role_id: int) -> list[User]:
        """Active users holding a role, in assignment order."""
        query = (
            select(_users)
            .select_from(_user_roles.join(_users, _user_roles.c.user_id == _users.c.id))
            .where((_user_roles.c.role_id == role_id) & (_users.c.is_active == 1))
            .order_by(_user_roles.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def user_has_active_role(self, user_id: int, role_name: str) -> bool:
        query = (
            select(_user_roles.c.id)
            .select_from(_user_roles.join(_roles, _user_roles.c.role_id == _roles.c.id))
            .where((_user_roles.c.user_id == user_id) & (_roles.c.name == role_name) & (_roles.c.is_active == 1))
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(query).first() is not None

    def get_user_role_rows(self, user_id: int) -> list[UserRoleAssignment]:
        """Raw edges for a user, including edges to inactive roles."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _user_roles.select().where(_user_roles.c.user_id == user_id).order_by(_user_roles.c.id)
            ).fetchall()
        return [_row_to_user_role(r) for r in rows]

    def get_user_role_row(self, edge_id: int) -> UserRoleAssignment | None:
        with self.engine.connect() as conn:
            row = conn.execute(_user_roles.select().where(_user_roles.c.id == edge_id)).fetchone()
        return _row_to_user_role(row) if row is not None else None

    # ------------------------------------------------------------------
    # role_permissions junction
    # ------------------------------------------------------------------

    def insert_role_permission(self, role_id: int, permission_id: int, assigned_by: int | None) -> int:
        """Insert one role->permission edge. ConflictError if the pair already exists."""
        with _translate_errors("assign_permission"), self.engine.begin() as conn:
            result = conn.execute(
                _role_permissions.insert().values(
                    role_id=role_id,
                    permission_id=permission_id,
                    assigned_by=assigned_by,
                    assigned_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def delete_role_permission(self, role_id: int, permission_id: int) -> bool:
        with _translate_errors("remove_permission"), self.engine.begin() as conn:
            result = conn.execute(
                _role_permissions.delete().where(
                    (_role_permissions.c.role_id == role_id) & (_role_permissions.c.permission_id == permission_id)
                )
            )
        return result.rowcount > 0

    def get_active_role_permissions(self, role_id: int) -> list[Permission]:
        """Permissions granted by a role, in assignment order. Empty if the role is inactive."""
        query = (
            select(_permissions)
            .select_from(
                _role_permissions.join(_permissions, _role_permissions.c.permission_id == _permissions.c.id).join(
                    _roles, _role_permissions.c.role_id == _roles.c.id
                )
            )
            .where((_role_permissions.c.role_id == role_id) & (_roles.c.is_active == 1))
            .order_by(_role_permissions.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_active_permission_roles(self, permission_id: int) -> list[Role]:
        """Active roles that grant a permission, in assignment order."""
        query = (
            select(_roles)
            .select_from(_role_permissions.join(_roles, _role_permissions.c.role_id == _roles.c.id))
            .where((_role_permissions.c.permission_id == permission_id) & (_roles.c.is_active == 1))
            .order_by(_role_permissions.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def role_has_active_permission(self, role_id: int, permission_name: str) -> bool:
        query = (
            select(_role_permissions.c.id)
            .select_from(
                _role_permissions.join(_permissions, _role_permissions.c.permission_id == _permissions.c.id).join(
                    _roles, _role_permissions.c.role_id == _roles.c.id
                )
            )
            .where(
                (_role_permissions.c.role_id == role_id)
                & (_permissions.c.name == permission_name)
                & (_roles.c.is_active == 1)
            )
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(query).first() is not None

    def get_role_permission_rows(self, role_id: int) -> list[RolePermissionAssignment]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _role_permissions.select()
                .where(_role_permissions.c.role_id == role_id)
                .order_by(_role_permissions.c.id)
            ).fetchall()
        return [_row_to_role_permission(r) for r in rows]

    def get_role_permission_row(self, edge_id: int) -> RolePermissionAssignment | None:
        with self.engine.connect() as conn:
            row = conn.execute(_role_permissions.select().where(_role_permissions.c.id == edge_id)).fetchone()
        return _row_to_role_permission(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        resource=row.resource,
        action=row.action,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_user_role(row) -> UserRoleAssignment:
    return UserRoleAssignment(
        id=row.id,
        user_id=row.user_id,
        role_id=row.role_id,
        assigned_by=row.assigned_by,
        assigned_at=row.assigned_at,
    )


def _row_to_role_permission(row) -> RolePermissionAssignment:
    return RolePermissionAssignment(
        id=row.id,
        role_id=row.role_id,
        permission_id=row.permission_id,
        assigned_by=row.assigned_by,
        assigned_at=row.assigned_at,
    )
