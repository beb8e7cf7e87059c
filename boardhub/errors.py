"""Typed failures raised by the service layer.

Every error carries a stable ``kind`` that the HTTP layer maps to a status
code. They subclass ``ValueError`` so callers that only care about "the
operation was rejected" can keep catching that.
"""

from __future__ import annotations


class ServiceError(ValueError):
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    kind = "not_found"


class ForbiddenError(ServiceError):
    kind = "forbidden"


class ConflictError(ServiceError):
    kind = "conflict"


class ValidationError(ServiceError):
    kind = "bad_request"
