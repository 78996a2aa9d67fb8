"""
Jobs API Routes
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import List, Optional
from sqlalchemy.orm import Session

from mediaforge.api.auth import AuthContext, require_user
from mediaforge.api.deps import get_status_service, get_submission_service
from mediaforge.config.constants import STORY_MAX_SHOTS, VISIBILITY_OPTIONS
from mediaforge.models import get_db
from mediaforge.models.job import JobKind
from mediaforge.services.job_submission import (
    JobSubmissionService,
    SubmissionError,
    SubmissionRequest,
    SubmissionResult,
)
from mediaforge.services.observability import logger
from mediaforge.services.status_query import StatusEnvelope, StatusQueryService, StatusRecord


# Request Models


class JobCreateRequest(BaseModel):
    """Request for a single-shot generation job"""

    source_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("source_url", "sourceUrl"),
        description="http(s) URL or data: URL of the source image/video",
    )
    source_ref: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("source_ref", "sourceRef"),
        description="Identifier of a source already in durable storage",
    )
    source_base64: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("source_base64", "sourceBase64"),
        description="Raw source bytes, base64 encoded",
    )
    source_content_type: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("source_content_type", "sourceContentType"),
    )
    directive: Optional[str] = Field(None, max_length=4000, description="Style instruction")
    negative_directive: Optional[str] = Field(
        None,
        max_length=2000,
        validation_alias=AliasChoices("negative_directive", "negativeDirective"),
    )
    preset_key: Optional[str] = Field(None, validation_alias=AliasChoices("preset_key", "presetKey"))
    model: Optional[str] = None
    visibility: str = Field(default="private", description="public or private")
    allow_remix: bool = Field(default=False, validation_alias=AliasChoices("allow_remix", "allowRemix"))
    strength: Optional[float] = Field(None, ge=0.0, le=1.0)
    steps: Optional[int] = Field(None, ge=1, le=150)
    guidance_scale: Optional[float] = Field(
        None,
        ge=0.0,
        le=30.0,
        validation_alias=AliasChoices("guidance_scale", "guidanceScale"),
    )
    seed: Optional[int] = Field(None, ge=0)

    @field_validator("visibility")
    @classmethod
    def validate_visibility(cls, v):
        if v not in VISIBILITY_OPTIONS:
            raise ValueError("visibility must be one of: public, private")
        return v

    def to_submission(self, kind: JobKind) -> SubmissionRequest:
        return SubmissionRequest(kind=kind, **self.model_dump())


class ShotSpec(BaseModel):
    name: Optional[str] = None
    add: str = Field(..., min_length=1, max_length=1000, description="Per-shot directive fragment")


class StoryCreateRequest(JobCreateRequest):
    """Request for a multi-shot story job"""

    shot_list: Optional[List[ShotSpec]] = Field(
        None,
        max_length=STORY_MAX_SHOTS,
        validation_alias=AliasChoices("shot_list", "shotList"),
    )
    fps: Optional[int] = Field(None, ge=1, le=60)
    width: Optional[int] = Field(None, ge=64, le=4096)
    height: Optional[int] = Field(None, ge=64, le=4096)


def _submission_error(e: SubmissionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "error": {
                "code": e.code,
                "message": e.message,
            }
        }
    )


def _job_not_found(job_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": {
                "code": "JOB_NOT_FOUND",
                "message": f"Job {job_id} not found",
            }
        }
    )


# Router
router = APIRouter()


@router.post("/jobs", response_model=SubmissionResult, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    request: JobCreateRequest,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    service: JobSubmissionService = Depends(get_submission_service),
):
    """
    Submit a single-shot generation job

    Returns immediately with the queued job id; the worker runs separately.
    """
    try:
        return await service.submit(db, auth.user_id, request.to_submission(JobKind.SINGLE))
    except SubmissionError as e:
        logger.warning("submission_rejected", user_id=auth.user_id, code=e.code, error=e.message)
        raise _submission_error(e)


@router.post("/stories", response_model=SubmissionResult, status_code=status.HTTP_202_ACCEPTED)
async def create_story(
    request: StoryCreateRequest,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    service: JobSubmissionService = Depends(get_submission_service),
):
    """Submit a story job: several stills stitched into one video"""
    try:
        return await service.submit(db, auth.user_id, request.to_submission(JobKind.STORY))
    except SubmissionError as e:
        logger.warning("submission_rejected", user_id=auth.user_id, code=e.code, error=e.message)
        raise _submission_error(e)


@router.get("/jobs/{job_id}", response_model=StatusEnvelope, response_model_exclude_none=True)
async def get_job_status(
    job_id: str,
    persist: bool = Query(False, description="Persist a finished result on first read"),
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    service: StatusQueryService = Depends(get_status_service),
):
    """
    Get job status: queued, running, done or failed

    With persist=true a finished but not yet persisted result is copied to
    durable storage and its asset is created before answering.
    """
    envelope = await service.get_status(db, job_id, auth.user_id, persist=persist)
    if envelope is None:
        raise _job_not_found(job_id)
    return envelope


@router.get("/status/{job_id}", response_model=StatusRecord)
async def get_job_record(
    job_id: str,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    service: StatusQueryService = Depends(get_status_service),
):
    """Raw status record of a job"""
    record = service.get_record(db, job_id, user_id=auth.user_id)
    if record is None:
        raise _job_not_found(job_id)
    return record
