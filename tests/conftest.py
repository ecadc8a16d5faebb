"""
tests/conftest.py -- Shared fixtures for the RBAC test suite.

This module provides:
  - store:   an isolated RBACStore on a named shared-memory SQLite database
  - tokens:  a TokenService with a fixed secret
  - service: an RBACService wired to both
  - seeded:  (service, ids) with the default roles/permissions/accounts loaded

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the resolver fans role lookups out to a thread pool and TestClient
runs handlers in worker threads. Plain :memory: DBs are per-connection and
would present a blank schema to each thread. Every fixture instance gets a
unique name so tests never share state.

The DEBUG env var is set before any rbac/core import so get_settings()
auto-generates SECRET_KEY in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator

# Set DEBUG before any core import so get_settings() can auto-generate
# SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest

from rbac.seed import seed_defaults
from rbac.service import RBACService
from rbac.store import RBACStore
from rbac.tokens import TokenService

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"


def make_db_url(prefix: str = "rbac") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def db_url_factory():
    """Return make_db_url for tests that need more than one isolated store."""
    return make_db_url


@pytest.fixture
def store() -> Generator[RBACStore, None, None]:
    s = RBACStore(make_db_url())
    yield s
    s.close()


@pytest.fixture
def secret() -> str:
    return TEST_SECRET


@pytest.fixture
def tokens(secret: str) -> TokenService:
    return TokenService(secret, ttl_seconds=3600)


@pytest.fixture
def service(store: RBACStore, tokens: TokenService) -> RBACService:
    return RBACService(store, tokens, resolver_max_workers=4)


@pytest.fixture
def seeded(service: RBACService) -> tuple[RBACService, dict[str, int]]:
    """Service with the default data set: admin (19 perms), user (content:read), manager."""
    ids = seed_defaults(service)
    return service, ids
