"""Unit tests for rbac/catalog.py -- role and permission definitions."""

from __future__ import annotations

import pytest

from rbac.catalog import Catalog
from rbac.errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def catalog(store) -> Catalog:
    return Catalog(store)


class TestPermissions:
    def test_name_is_derived_canonically(self, catalog) -> None:
        """Permission name is always resource:action, derived from the pair."""
        permission = catalog.create_permission("users", "create", description="Create users")
        assert permission.name == "users:create"
        assert (permission.resource, permission.action) == ("users", "create")

    def test_legacy_dot_name_is_rewritten(self, catalog) -> None:
        """A supplied content.read name is stored as content:read."""
        permission = catalog.create_permission("content", "read", name="content.read")
        assert permission.name == "content:read"

    def test_mismatched_name_rejected(self, catalog) -> None:
        """A supplied name that disagrees with the pair -> ValidationError on "name"."""
        with pytest.raises(ValidationError) as exc_info:
            catalog.create_permission("content", "read", name="content:write")
        assert "name" in exc_info.value.fields

    def test_duplicate_pair_conflicts(self, catalog) -> None:
        """Same (resource, action) twice -> ConflictError."""
        catalog.create_permission("content", "read")
        with pytest.raises(ConflictError):
            catalog.create_permission("content", "read")

    def test_case_matters_for_identity(self, catalog) -> None:
        """Content and content are different resources."""
        catalog.create_permission("content", "read")
        assert catalog.create_permission("Content", "read").name == "Content:read"

    @pytest.mark.parametrize(
        "resource, action",
        [("", "read"), ("content", ""), ("con tent", "read"), ("content", "re:ad")],
    )
    def test_malformed_parts_rejected(self, catalog, resource, action) -> None:
        """Empty parts, whitespace and ':' inside a part are rejected."""
        with pytest.raises(ValidationError):
            catalog.create_permission(resource, action)

    def test_update_keeps_name_in_sync(self, catalog) -> None:
        """Changing the action renames the permission; the old pair is gone."""
        permission = catalog.create_permission("content", "read")
        updated = catalog.update_permission(permission.id, action="view")
        assert updated.name == "content:view"
        assert catalog.find_permission("content", "read") is None

    def test_update_to_existing_pair_conflicts(self, catalog) -> None:
        """Moving onto another permission's pair -> ConflictError."""
        catalog.create_permission("content", "read")
        other = catalog.create_permission("content", "write")
        with pytest.raises(ConflictError):
            catalog.update_permission(other.id, action="read")

    def test_update_and_delete_unknown_raise_not_found(self, catalog) -> None:
        """Unknown permission ids -> NotFoundError."""
        with pytest.raises(NotFoundError):
            catalog.update_permission(404, description="x")
        with pytest.raises(NotFoundError):
            catalog.delete_permission(404)


class TestRoles:
    def test_create_and_find(self, catalog) -> None:
        """New roles are active and reachable by id and by name."""
        role = catalog.create_role("editor", "Edits content")
        assert role.is_active is True
        assert catalog.find_role("editor").id == role.id
        assert catalog.get_role(role.id).description == "Edits content"

    def test_duplicate_name_conflicts(self, catalog) -> None:
        """Same role name twice -> ConflictError."""
        catalog.create_role("editor")
        with pytest.raises(ConflictError):
            catalog.create_role("editor")

    def test_rename_to_taken_name_conflicts(self, catalog) -> None:
        """Renaming onto another role's name -> ConflictError."""
        catalog.create_role("editor")
        viewer = catalog.create_role("viewer")
        with pytest.raises(ConflictError):
            catalog.update_role(viewer.id, name="editor")

    def test_deactivate(self, catalog) -> None:
        """is_active=False is persisted and returned."""
        role = catalog.create_role("editor")
        assert catalog.update_role(role.id, is_active=False).is_active is False

    def test_delete_unknown_raises_not_found(self, catalog) -> None:
        """Deleting an unknown role -> NotFoundError."""
        with pytest.raises(NotFoundError):
            catalog.delete_role(404)


def test_listing_is_newest_first_and_paginated(catalog) -> None:
    """list_roles orders newest first and honours limit/offset."""
    for name in ("r1", "r2", "r3"):
        catalog.create_role(name)
    assert [r.name for r in catalog.list_roles(limit=10)] == ["r3", "r2", "r1"]
    assert [r.name for r in catalog.list_roles(limit=1, offset=1)] == ["r2"]
    assert catalog.count_roles() == 3
