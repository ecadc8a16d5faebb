"""
rbac/dependencies.py -- FastAPI Depends() helpers around the AuthorizationGate.

The gate is read from request.app.state.gate, set by the application's
lifespan (app.state.gate = service.gate).

Token source: "Authorization: Bearer <token>" only.

get_identity() is the soft variant (returns None on failure).
get_current_identity() raises HTTP 401 if unauthenticated.
require(requirement) returns a dependency that raises 401 when there is no
valid identity and 403 when the identity lacks the grant -- never one for the
other.

install_error_handlers(app) maps the RBAC error taxonomy onto HTTP status
codes with a uniform {"error": {"code", "message", "fields"}} envelope.

Layer rule: this is the only rbac/ module that imports fastapi.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from rbac.errors import (
    ConflictError,
    ErrorKind,
    ForbiddenError,
    InternalError,
    NotFoundError,
    RBACError,
    UnauthenticatedError,
    ValidationError,
)
from rbac.gate import AuthorizationGate, Decision, Requirement
from rbac.models import IdentityContext

_STATUS_BY_KIND = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INTERNAL: 500,
}

_STATUS_BY_ERROR: dict[type[RBACError], int] = {
    ValidationError: 422,
    ConflictError: 409,
    NotFoundError: 404,
    UnauthenticatedError: 401,
    ForbiddenError: 403,
    InternalError: 500,
}


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    fields: Optional[dict[str, str]] = None


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _gate(request: Request) -> AuthorizationGate:
    return request.app.state.gate


def _http_error(decision: Decision) -> HTTPException:
    status_code = _STATUS_BY_KIND.get(decision.error, 403)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(code=decision.error.value, message=decision.message).model_dump(exclude_none=True),
        headers=headers,
    )


def get_identity(request: Request) -> IdentityContext | None:
    """Resolve the bearer token to an identity. Never raises."""
    return _gate(request).identify(_bearer_token(request))


def get_current_identity(request: Request) -> IdentityContext:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/me")
        def me(identity: IdentityContext = Depends(get_current_identity)): ...
    """
    identity = get_identity(request)
    if identity is None:
        raise _http_error(Decision.unauthenticated())
    return identity


def require(requirement: Requirement) -> Callable[[Request], IdentityContext]:
    """Build a dependency that enforces a requirement.

    Use as a FastAPI dependency:
        @router.delete("/content/{id}")
        def delete(identity = Depends(require(require_permission("content:delete")))): ...
    """

    def dependency(request: Request) -> IdentityContext:
        gate = _gate(request)
        identity = gate.identify(_bearer_token(request))
        if identity is None:
            raise _http_error(Decision.unauthenticated())
        decision = gate.check(identity, requirement)
        if not decision.allowed:
            raise _http_error(decision)
        return decision.identity

    return dependency


def install_error_handlers(app: FastAPI) -> None:
    """Register a handler that renders RBACError subclasses as JSON errors."""

    @app.exception_handler(RBACError)
    async def rbac_error_handler(request: Request, exc: RBACError) -> JSONResponse:
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
            500,
        )
        fields = getattr(exc, "fields", None) or None
        message = exc.message if status_code < 500 else "An unexpected error occurred."
        return JSONResponse(
            status_code=status_code,
            content={"error": ErrorDetail(code=exc.code, message=message, fields=fields).model_dump(exclude_none=True)},
        )
