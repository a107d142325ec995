from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import HTTPException


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    STORAGE = "storage_error"


class PipelineError(HTTPException):
    """
    Base error for the decision -> publish -> DOI pipeline.

    Subclasses HTTPException so routers and the exception middleware can
    render it without extra plumbing; `kind` is what callers branch on.
    """

    kind: ErrorKind = ErrorKind.VALIDATION
    http_status: int = 400

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(status_code=self.http_status, detail=message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class ValidationFailed(PipelineError):
    kind = ErrorKind.VALIDATION
    http_status = 422


class AuthorizationError(PipelineError):
    kind = ErrorKind.AUTHORIZATION
    http_status = 403


class NotFoundError(PipelineError):
    kind = ErrorKind.NOT_FOUND
    http_status = 404


class ConflictError(PipelineError):
    kind = ErrorKind.CONFLICT
    http_status = 409


class InvalidStateError(PipelineError):
    kind = ErrorKind.INVALID_STATE
    http_status = 400


class StorageError(PipelineError):
    """
    A required database write or read failed (not a constraint violation).

    中文注释: 主写入失败统一走这里，避免裸 HTTPException(500) 绕过结果信封。
    """

    kind = ErrorKind.STORAGE
    http_status = 500


class ExternalServiceError(PipelineError):
    """
    Registration call failed or timed out.

    中文注释: 该错误对发布流程是非致命的；调用方拿到时，doi_registrations 行已经记录了失败，
    `registration` 即落库后的行，`response` 为外部服务的原始返回。
    """

    kind = ErrorKind.EXTERNAL_SERVICE_ERROR
    http_status = 502

    def __init__(
        self,
        message: str,
        *,
        response: Any = None,
        registration: dict[str, Any] | None = None,
        details: Any = None,
    ):
        super().__init__(message, details=details)
        self.response = response
        self.registration = registration


def looks_like_unique_violation(error: Exception) -> bool:
    code = str(getattr(error, "code", "") or "")
    if code == "23505":
        return True
    lowered = str(error).lower()
    return "23505" in lowered or "duplicate key" in lowered or "unique constraint" in lowered
