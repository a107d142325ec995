from fastapi import Request
from fastapi.responses import JSONResponse

from pubflow.core.config import CrossrefConfig
from pubflow.models.results import PipelineResult
from pubflow.services.doi_service import DOIService
from pubflow.services.issue_service import IssueService
from pubflow.services.pipeline_service import PipelineService


def get_doi_service(request: Request) -> DOIService:
    config = CrossrefConfig.from_env()
    crossref_client = getattr(request.app.state, "crossref_client", None)
    return DOIService(config, crossref_client=crossref_client)


def get_pipeline_service(request: Request) -> PipelineService:
    return PipelineService(doi=get_doi_service(request))


def get_issue_service() -> IssueService:
    return IssueService()


def result_response(result: PipelineResult) -> JSONResponse:
    return JSONResponse(status_code=result.http_status, content=result.model_dump(mode="json"))
