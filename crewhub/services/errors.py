"""
Typed errors raised by the staffing services.
Routes never build HTTP responses for these directly; main.py translates them.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    kind = "Error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.kind, "detail": self.message}
        body.update(self.details)
        return body


class ForbiddenError(DomainError):
    kind = "Forbidden"
    status_code = 403


class NotFoundError(DomainError):
    kind = "NotFound"
    status_code = 404


class ConflictError(DomainError):
    kind = "Conflict"
    status_code = 409


class GoneError(DomainError):
    """The targeted open slot was claimed or withdrawn by someone else."""
    kind = "Gone"
    status_code = 410


class InvalidStateError(DomainError):
    kind = "InvalidState"
    status_code = 409


class ValidationError(DomainError):
    kind = "Validation"
    status_code = 422


class UnauthorizedError(DomainError):
    kind = "Unauthorized"
    status_code = 401
