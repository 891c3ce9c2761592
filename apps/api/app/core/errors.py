from __future__ import annotations

from typing import Any


class CRMError(Exception):
    """Base class for typed failures surfaced to API callers."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailedError(CRMError):
    code = "validation_failed"


class NotFoundError(CRMError):
    """Entity absent or outside the caller's accessible scope."""

    status_code = 404
    code = "not_found"


class ForbiddenError(CRMError):
    status_code = 403
    code = "forbidden"


class UnauthorizedError(CRMError):
    status_code = 401
    code = "unauthorized"


class ConflictError(CRMError):
    code = "conflict"


class NameConflictError(ConflictError):
    code = "name_conflict"


class EmailConflictError(ConflictError):
    code = "email_conflict"


class RoleInUseError(ConflictError):
    code = "role_in_use"


class StageInUseError(ConflictError):
    code = "stage_in_use"


class InvalidStatusError(CRMError):
    code = "invalid_status"

    def __init__(self, status: str | None, allowed: list[str]) -> None:
        self.status = status
        self.allowed = list(allowed)
        super().__init__(
            f"Invalid status. Must be one of: {', '.join(self.allowed)}",
            details={"status": status, "allowed": self.allowed},
        )
