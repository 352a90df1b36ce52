from __future__ import annotations

from typing import Any

from fastapi import status


class DomainError(Exception):
    """Base error raised by the entitlement services.

    Carries the HTTP status used when it reaches the API layer and a
    user-safe ``detail``. ``extra`` is merged into the JSON error body.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None, **extra: Any) -> None:
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class ForbiddenError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Insufficient permissions"


class BadRequestError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class InvalidTransitionError(BadRequestError):
    default_detail = "Operation not allowed in the current state"


class UnauthorizedError(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Unauthorized"


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflicting request"


class TransientError(DomainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Service temporarily unavailable"


class InternalError(DomainError):
    pass
