"""Typed errors raised by the workflow engine.

Every error carries a machine-readable ``code`` plus structured attributes
so callers can react without parsing messages. ``NotFoundError`` and
``ForbiddenError`` messages stay opaque and never describe other
applications.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class StepflowError(Exception):
    """Base class for all engine errors."""

    code: str = "STEPFLOW_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFoundError(StepflowError):
    code = "NOT_FOUND"


class ForbiddenError(StepflowError):
    code = "FORBIDDEN"


class ConflictError(StepflowError):
    """Raised when a reviewer acts on a version that is no longer the latest."""

    code = "VERSION_NOT_LATEST"

    def __init__(self, message: str, latest_version_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.latest_version_id = latest_version_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["latest_version_id"] = self.latest_version_id
        return data


class ValidationFailedError(StepflowError):
    code = "VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        issues: Optional[List[Dict[str, str]]] = None,
        allowed_fields: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(message)
        self.issues = issues or []
        self.allowed_fields = sorted(allowed_fields) if allowed_fields is not None else None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["issues"] = self.issues
        if self.allowed_fields is not None:
            data["allowed_fields"] = self.allowed_fields
        return data


class BadRequestError(StepflowError):
    code = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        latest_version_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        if code:
            self.code = code
        self.latest_version_id = latest_version_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.latest_version_id:
            data["latest_version_id"] = self.latest_version_id
        return data


__all__ = [
    "StepflowError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "ValidationFailedError",
    "BadRequestError",
]
