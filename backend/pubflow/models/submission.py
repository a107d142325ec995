from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubmissionStatus(str, Enum):
    """
    Submission lifecycle.

    draft -> submitted -> under_review -> review_completed
          -> accepted / declined / revision_requested
    revision_requested -> submitted (resubmit)
    accepted -> published (PublishingService only)
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    REVIEW_COMPLETED = "review_completed"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVISION_REQUESTED = "revision_requested"
    PUBLISHED = "published"


class DecisionType(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    REVISION = "revision"
    RESUBMIT = "resubmit"

    @property
    def target_status(self) -> SubmissionStatus:
        return DECISION_STATUS_MAP[self]

    @property
    def advances_round(self) -> bool:
        return self is DecisionType.REVISION


DECISION_STATUS_MAP: dict[DecisionType, SubmissionStatus] = {
    DecisionType.ACCEPT: SubmissionStatus.ACCEPTED,
    DecisionType.DECLINE: SubmissionStatus.DECLINED,
    DecisionType.REVISION: SubmissionStatus.REVISION_REQUESTED,
    DecisionType.RESUBMIT: SubmissionStatus.SUBMITTED,
}


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    if not v:
        return None
    try:
        return SubmissionStatus(v).value
    except ValueError:
        return None


def parse_decision_type(value: object) -> DecisionType | None:
    raw = str(value or "").strip().lower()
    if not raw:
        return None
    try:
        return DecisionType(raw)
    except ValueError:
        return None


class DecisionRequest(BaseModel):
    """
    决策请求。decision_type 在服务层校验，这样非法值能统一落到 Validation 错误而不是 FastAPI 的 422 默认结构。
    """

    decision_type: str = Field(..., description="accept | decline | revision | resubmit")
    comments: Optional[str] = Field(None, description="Editor comments shown with the decision")


class DecisionOutcome(BaseModel):
    submission: dict
    decision: dict
    previous_status: str
    previous_round: int
