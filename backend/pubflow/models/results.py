from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from pubflow.core.errors import ErrorKind, PipelineError


class ErrorPayload(BaseModel):
    kind: ErrorKind
    message: str


class PipelineResult(BaseModel):
    """
    Envelope returned by every pipeline operation.

    - success=False and data=None: nothing happened.
    - success=True with warnings/details: primary write committed, some
      secondary step (author/file copy, DOI registration) needs attention.
    """

    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorPayload] = None
    details: Optional[Any] = None
    warnings: list[str] = Field(default_factory=list)
    http_status: int = Field(200, exclude=True)

    @classmethod
    def ok(
        cls,
        data: Any,
        *,
        warnings: list[str] | None = None,
        details: Any = None,
        http_status: int = 200,
    ) -> "PipelineResult":
        return cls(
            success=True,
            data=data,
            warnings=list(warnings or []),
            details=details,
            http_status=http_status,
        )

    @classmethod
    def from_error(cls, exc: PipelineError, *, data: Any = None) -> "PipelineResult":
        return cls(
            success=False,
            data=data,
            error=ErrorPayload(kind=exc.kind, message=exc.message),
            details=exc.details,
            http_status=exc.http_status,
        )

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None
