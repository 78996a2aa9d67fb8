"""
Pass-through Generation Routes

Stateless mode: the provider is called directly and its own job id is
returned. No job row is created, so these ids cannot be used with the
job endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from mediaforge.api.auth import AuthContext, require_user
from mediaforge.api.deps import get_submission_service
from mediaforge.api.routes.jobs import JobCreateRequest
from mediaforge.core.provider_adapter import ProviderError
from mediaforge.models.job import JobKind
from mediaforge.services.job_submission import (
    JobSubmissionService,
    PassthroughResult,
    SubmissionError,
)
from mediaforge.services.observability import logger


router = APIRouter()


def _provider_error(e: ProviderError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={
            "error": {
                "code": "PROVIDER_ERROR",
                "message": e.message[:500],
            }
        }
    )


@router.post("/passthrough/generations", response_model=PassthroughResult)
async def create_passthrough_generation(
    request: JobCreateRequest,
    auth: AuthContext = Depends(require_user),
    service: JobSubmissionService = Depends(get_submission_service),
):
    """Submit straight to the provider and return its job id"""
    try:
        return await service.submit_passthrough(auth.user_id, request.to_submission(JobKind.SINGLE))
    except SubmissionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": {
                    "code": e.code,
                    "message": e.message,
                }
            }
        )
    except ProviderError as e:
        logger.warning("passthrough_provider_error", user_id=auth.user_id, error=e.message)
        raise _provider_error(e)


@router.get("/passthrough/generations/{provider_job_id}", response_model=PassthroughResult)
async def get_passthrough_generation(
    provider_job_id: str,
    media_type: str = Query("video", pattern="^(image|video)$"),
    auth: AuthContext = Depends(require_user),
    service: JobSubmissionService = Depends(get_submission_service),
):
    """Provider status mapped to queued/running/done/failed"""
    try:
        return await service.poll_passthrough(provider_job_id, is_video=media_type == "video")
    except ProviderError as e:
        raise _provider_error(e)
