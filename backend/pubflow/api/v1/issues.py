from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from pubflow.api.v1.pipeline_common import get_issue_service
from pubflow.core.auth_utils import get_current_user
from pubflow.models.issue import Issue, IssueCreate, IssueList, IssueUpdate
from pubflow.services.issue_service import IssueService

router = APIRouter(prefix="/issues", tags=["Issues"])


@router.get("", response_model=IssueList)
async def list_issues(
    journal_id: Optional[str] = Query(None),
    status: Literal["all", "future", "back"] = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: IssueService = Depends(get_issue_service),
):
    return service.list_issues(
        actor_id=current_user.get("id"),
        journal_id=journal_id,
        status=status,
        page=page,
        limit=limit,
    )


@router.post("", response_model=Issue, status_code=201)
async def create_issue(
    body: IssueCreate,
    current_user: dict = Depends(get_current_user),
    service: IssueService = Depends(get_issue_service),
):
    return service.create_issue(body, actor_id=current_user.get("id"))


@router.patch("/{issue_id}", response_model=Issue)
async def update_issue(
    issue_id: str,
    body: IssueUpdate,
    current_user: dict = Depends(get_current_user),
    service: IssueService = Depends(get_issue_service),
):
    return service.update_issue(issue_id, body, actor_id=current_user.get("id"))


@router.post("/{issue_id}/publish", response_model=Issue)
async def publish_issue(
    issue_id: str,
    current_user: dict = Depends(get_current_user),
    service: IssueService = Depends(get_issue_service),
):
    return service.publish_issue(issue_id, actor_id=current_user.get("id"))


@router.delete("/{issue_id}")
async def delete_issue(
    issue_id: str,
    current_user: dict = Depends(get_current_user),
    service: IssueService = Depends(get_issue_service),
):
    return service.delete_issue(issue_id, actor_id=current_user.get("id"))


@router.get("/{issue_id}", response_model=Issue)
async def get_issue(
    issue_id: str,
    current_user: dict = Depends(get_current_user),
    service: IssueService = Depends(get_issue_service),
):
    return service.get_issue(issue_id, actor_id=current_user.get("id"))
