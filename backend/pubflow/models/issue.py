from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class IssueStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"


def derive_issue_status(issue: Mapping[str, Any]) -> IssueStatus:
    """
    Display status of an issue; never stored.

    is_published wins; otherwise a published_date means scheduled.
    """
    if bool(issue.get("is_published")):
        return IssueStatus.PUBLISHED
    if issue.get("published_date"):
        return IssueStatus.SCHEDULED
    return IssueStatus.DRAFT


def with_derived_status(issue: Mapping[str, Any]) -> dict[str, Any]:
    row = dict(issue)
    row["status"] = derive_issue_status(row).value
    return row


AccessStatus = Literal["open", "subscription", "restricted"]


class IssueCreate(BaseModel):
    journal_id: str
    volume: Optional[int] = Field(None, ge=0)
    number: Optional[str] = None
    year: int = Field(..., ge=1000, le=9999)
    title: Optional[str] = None
    description: Optional[str] = None
    status: IssueStatus = IssueStatus.DRAFT
    published_date: Optional[datetime] = None
    access_status: AccessStatus = "open"
    cover_image_url: Optional[str] = None


class IssueUpdate(BaseModel):
    """
    Partial update; only fields present in the request body are applied.
    """

    journal_id: Optional[str] = None
    volume: Optional[int] = Field(None, ge=0)
    number: Optional[str] = None
    year: Optional[int] = Field(None, ge=1000, le=9999)
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[IssueStatus] = None
    published_date: Optional[datetime] = None
    access_status: Optional[AccessStatus] = None
    cover_image_url: Optional[str] = None


class Issue(BaseModel):
    id: str
    journal_id: str
    volume: Optional[int] = None
    number: Optional[str] = None
    year: int
    title: Optional[str] = None
    description: Optional[str] = None
    published_date: Optional[datetime] = None
    is_published: bool = False
    access_status: str = "open"
    status: IssueStatus = IssueStatus.DRAFT
    article_count: int = 0

    model_config = ConfigDict(from_attributes=True, extra="ignore")


class IssueList(BaseModel):
    items: list[Issue]
    total: int
    page: int
    limit: int
