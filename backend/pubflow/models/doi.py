from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from pubflow.models.article import DOI_PATTERN


class DOIRegistrationStatus(str, Enum):
    PENDING = "pending"
    REGISTERED = "registered"
    FAILED = "failed"


class DOIRegisterRequest(BaseModel):
    article_id: str
    doi: Optional[str] = Field(None, pattern=DOI_PATTERN)


class DOIRegistration(BaseModel):
    id: Optional[str] = None
    article_id: str
    doi: str
    status: DOIRegistrationStatus = DOIRegistrationStatus.PENDING
    registration_agency: str = "crossref"
    crossref_deposit_id: Optional[str] = None
    crossref_response: Optional[Any] = None
    error_message: Optional[str] = None
    last_attempt: Optional[datetime] = None
    retry_count: int = 0
    registration_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")


class DOIRegistrationList(BaseModel):
    items: List[DOIRegistration]
    total: int
    page: int
    limit: int


class CrossrefDepositResult(BaseModel):
    """
    Outcome of one deposit call. Only status/deposit_id/message are interpreted;
    `raw` keeps the agency's response body as-is for crossref_response.
    """

    status: Literal["success", "error"]
    deposit_id: Optional[str] = None
    message: Optional[str] = None
    raw: Optional[str] = None
    timestamp: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class DOIStatusLookup(BaseModel):
    doi: str
    url: Optional[str] = None
    status: str
    registered: bool
    registration: Optional[DOIRegistration] = None
    crossref_status: Optional[str] = None
    registered_date: Optional[str] = None
