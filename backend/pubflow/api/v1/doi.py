from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from pubflow.api.v1.pipeline_common import get_doi_service, get_pipeline_service, result_response
from pubflow.core.auth_utils import get_current_user
from pubflow.models.doi import DOIRegisterRequest, DOIRegistrationList, DOIStatusLookup
from pubflow.services.doi_service import DOIService
from pubflow.services.pipeline_service import PipelineService

router = APIRouter(prefix="/doi", tags=["DOI"])


@router.post("/register")
async def register_doi(
    body: DOIRegisterRequest,
    current_user: dict = Depends(get_current_user),
    pipeline: PipelineService = Depends(get_pipeline_service),
):
    """
    Register (or retry) the DOI of a published article with Crossref
    """
    result = await pipeline.retry_doi(
        article_id=body.article_id,
        actor_id=current_user.get("id"),
        doi=body.doi,
    )
    return result_response(result)


@router.get("/registrations", response_model=DOIRegistrationList)
async def list_registrations(
    journal_id: Optional[str] = Query(None, description="Limit to one journal; omit for all journals (super admin)"),
    status: Literal["all", "pending", "registered", "failed"] = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: DOIService = Depends(get_doi_service),
):
    return await service.list_registrations(
        actor_id=current_user.get("id"),
        journal_id=journal_id,
        status=status,
        page=page,
        limit=limit,
    )


@router.get("/status/{doi:path}", response_model=DOIStatusLookup)
async def get_doi_status(
    doi: str,
    live: bool = Query(False, description="Also query the Crossref works API"),
    current_user: dict = Depends(get_current_user),
    service: DOIService = Depends(get_doi_service),
):
    return await service.get_status(doi, actor_id=current_user.get("id"), live=live)
