"""
rbac/errors.py -- Error taxonomy for the RBAC core.

Thrown failures are reserved for malformed input, constraint violations and
infrastructure faults. Absence ("user not found", "wrong password") is a
None / empty result from lookups, never an exception.

The Authorization Gate never raises these across its boundary. It reports
ErrorKind values inside a Decision instead.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure classes a gate decision can report."""

    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    # Live grant lookup failed; the request is denied without a verdict.
    INTERNAL = "internal_error"


class RBACError(Exception):
    """Base exception for the RBAC core."""

    code = "internal_error"

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(RBACError):
    """Raised when input is malformed.

    fields maps each offending field name to a human-readable reason so the
    transport layer can surface field-level detail.
    """

    code = "validation_error"

    def __init__(self, message: str = "Invalid input", fields: dict[str, str] | None = None):
        super().__init__(message)
        self.fields = dict(fields or {})


class ConflictError(RBACError):
    """Raised when a unique key already exists (entity or assignment edge)."""

    code = "conflict"


class NotFoundError(RBACError):
    """Raised when an update, delete or assignment names an unknown id."""

    code = "not_found"


class UnauthenticatedError(RBACError):
    """Raised by transport adapters for a missing, invalid or expired token."""

    code = "unauthenticated"


class ForbiddenError(RBACError):
    """Raised by transport adapters when an identity lacks the required grant."""

    code = "forbidden"


class InternalError(RBACError):
    """Raised on an unexpected storage or signing failure."""

    code = "internal_error"
