from fastapi import APIRouter, Depends, Path

from pubflow.api.v1.pipeline_common import get_pipeline_service, result_response
from pubflow.core.auth_utils import get_current_user
from pubflow.models.article import PublishRequest
from pubflow.models.submission import DecisionRequest
from pubflow.services.pipeline_service import PipelineService

router = APIRouter(prefix="/submissions", tags=["Submissions"])


@router.post("/{submission_id}/decision")
async def make_decision(
    body: DecisionRequest,
    submission_id: str = Path(..., min_length=1),
    current_user: dict = Depends(get_current_user),
    pipeline: PipelineService = Depends(get_pipeline_service),
):
    """
    Editor decision (accept / decline / revision / resubmit)
    """
    result = pipeline.decide(
        submission_id=submission_id,
        decision_type=body.decision_type,
        actor_id=current_user.get("id"),
        comments=body.comments,
    )
    return result_response(result)


@router.post("/{submission_id}/publish")
async def publish_submission(
    body: PublishRequest,
    submission_id: str = Path(..., min_length=1),
    current_user: dict = Depends(get_current_user),
    pipeline: PipelineService = Depends(get_pipeline_service),
):
    """
    Create the article for an accepted submission.

    201 also covers partial success: check `warnings` and `details.doi_error`.
    """
    result = await pipeline.publish(
        submission_id=submission_id,
        actor_id=current_user.get("id"),
        overrides=body,
    )
    return result_response(result)
