"""Error taxonomy shared by every directory operation.

Each error carries a machine-readable ``kind`` and the HTTP status the API
surface maps it to. Services raise these; routes translate them with
:func:`to_http_exception`.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class DirectoryError(Exception):
    kind = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_detail(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(DirectoryError):
    kind = "validation_error"
    status_code = 422
    default_message = "invalid input"

    def __init__(self, message: str | None = None, *, fields: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.fields = dict(fields or {})

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        if self.fields:
            detail["fields"] = self.fields
        return detail


class NotAuthorized(DirectoryError):
    kind = "not_authorized"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "not authorized"


class NotAuthenticated(NotAuthorized):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "sign in required"


class EmailNotVerified(DirectoryError):
    kind = "email_not_verified"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "email address is not verified"


class NotFound(DirectoryError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "not found"


class AlreadyProcessed(DirectoryError):
    kind = "already_processed"
    status_code = status.HTTP_409_CONFLICT
    default_message = "already processed"


class DuplicateConflict(DirectoryError):
    kind = "duplicate_conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "a matching entry already exists"


class RateLimited(DirectoryError):
    kind = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "too many requests"


class SlugExhausted(DirectoryError):
    kind = "slug_exhausted"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "could not allocate a unique slug, try again"


class StorageError(DirectoryError):
    kind = "storage_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "storage unavailable, try again"


def to_http_exception(exc: DirectoryError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
