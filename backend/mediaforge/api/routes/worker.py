"""
Internal Worker Routes
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import AliasChoices, BaseModel, Field
from typing import Optional
from sqlalchemy.orm import Session

from mediaforge.api.auth import require_internal
from mediaforge.api.deps import get_dispatcher, get_worker
from mediaforge.models import get_db
from mediaforge.services.job_worker import JobWorker, WorkerOutcome
from mediaforge.services.worker_dispatch import WorkerDispatcher


class WorkerTriggerRequest(BaseModel):
    job_id: Optional[str] = Field(None, validation_alias=AliasChoices("job_id", "jobId"))


class SweepResponse(BaseModel):
    ok: bool = True
    dispatched: int


router = APIRouter(dependencies=[Depends(require_internal)])


@router.post("/worker", response_model=WorkerOutcome)
async def run_worker(
    request: WorkerTriggerRequest,
    db: Session = Depends(get_db),
    worker: JobWorker = Depends(get_worker),
):
    """
    Process one job in-request

    Duplicate triggers for the same job answer "Already handled".
    """
    if not request.job_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": {
                    "code": "MISSING_JOB_ID",
                    "message": "job_id is required",
                }
            }
        )

    outcome = await worker.process(db, request.job_id)
    if not outcome.handled and outcome.status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": {
                    "code": "JOB_NOT_FOUND",
                    "message": f"Job {request.job_id} not found",
                }
            }
        )
    return outcome


@router.post("/worker/sweep", response_model=SweepResponse)
async def sweep_stale_jobs(
    db: Session = Depends(get_db),
    dispatcher: WorkerDispatcher = Depends(get_dispatcher),
):
    """Re-dispatch jobs stranded in queued"""
    dispatched = await dispatcher.sweep(db)
    return SweepResponse(dispatched=dispatched)
