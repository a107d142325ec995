from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

DOI_PATTERN = r"^10\.\d{4,}/[-._;()/:a-zA-Z0-9]+$"


class PublishRequest(BaseModel):
    """
    发布时的可选覆盖字段（期/卷/页码/DOI）。
    """

    issue_id: Optional[str] = None
    volume: Optional[int] = Field(None, ge=0)
    issue_number: Optional[str] = None
    year: Optional[int] = Field(None, ge=1000, le=9999)
    pages: Optional[str] = None
    doi: Optional[str] = Field(None, pattern=DOI_PATTERN)
    register_doi: bool = Field(
        False,
        description="Run the Crossref registration right after publishing (only when doi is set)",
    )


class PublicationOutcome(BaseModel):
    """
    Assembler result: the committed article plus secondary-step warnings.
    """

    article: dict[str, Any]
    authors: list[dict[str, Any]] = Field(default_factory=list)
    files: list[dict[str, Any]] = Field(default_factory=list)
    doi_registration: Optional[dict[str, Any]] = None
    warnings: list[str] = Field(default_factory=list)
