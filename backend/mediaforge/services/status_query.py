"""
Status Query Service - Client-facing job status with lazy persist
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from mediaforge.models.asset import AssetModel
from mediaforge.models.job import JobModel
from mediaforge.services.finalizer import ArtifactFinalizer
from mediaforge.services.job_state import to_public_status
from mediaforge.services.observability import logger
from mediaforge.services.source_resolver import detect_media_type
from mediaforge.services.storage import AssetDB, JobDB


class StatusData(BaseModel):
    result_url: Optional[str] = None
    asset_id: Optional[str] = None
    public_id: Optional[str] = None
    media_type: Optional[str] = None


class StatusEnvelope(BaseModel):
    """Public status contract: queued | running | done | failed"""

    ok: bool = True
    job_id: str
    status: str
    progress: Optional[int] = None
    error: Optional[str] = None
    data: Optional[StatusData] = None


class StatusRecord(BaseModel):
    """Generic status row view"""

    id: str
    kind: str
    status: str
    result_ref: Optional[str] = None
    error: Optional[str] = None
    provider_job_id: Optional[str] = None
    updated_at: Optional[str] = None


class StatusQueryService:
    """
    Read path for clients

    With ``persist=True`` a done-but-unpersisted job is persisted here,
    through the same claim the worker uses, so the envelope looks the
    same whichever path ran.
    """

    def __init__(self, finalizer: ArtifactFinalizer):
        self.finalizer = finalizer

    async def get_status(
        self,
        db: Session,
        job_id: str,
        user_id: str,
        persist: bool = False,
    ) -> Optional[StatusEnvelope]:
        """
        Status envelope for a user's job

        Returns:
            StatusEnvelope, or None if the job does not exist for this user
        """
        job = JobDB.get_user_job(db, job_id, user_id)
        if job is None:
            return None

        public_status = to_public_status(job.status)

        if public_status == "done" and persist and not job.provider_persisted and job.result_ref:
            try:
                await self.finalizer.persist(db, job, job.result_ref, path="status_query")
            except Exception as e:
                # Advisory here: the job stays done and a later read retries
                db.rollback()
                logger.warning("lazy_persist_failed", job_id=job_id, error=str(e))
            job = JobDB.get_job(db, job_id, refresh=True)

        return self._envelope(db, job)

    @staticmethod
    def _result_media_type(job: JobModel, asset: Optional[AssetModel]) -> str:
        if asset is not None:
            return asset.media_type
        if job.is_story or not job.result_ref:
            return job.result_media_type
        return detect_media_type(job.result_ref)

    def _envelope(self, db: Session, job: JobModel) -> StatusEnvelope:
        public_status = to_public_status(job.status)

        if public_status == "done":
            asset = AssetDB.get_by_source_job(db, job.job_id)
            return StatusEnvelope(
                job_id=job.job_id,
                status=public_status,
                progress=100,
                data=StatusData(
                    result_url=job.result_ref,
                    asset_id=asset.asset_id if asset else None,
                    public_id=job.result_public_id,
                    media_type=self._result_media_type(job, asset),
                ),
            )

        if public_status == "failed":
            return StatusEnvelope(
                job_id=job.job_id,
                status=public_status,
                progress=job.progress,
                error=job.error or "failed",
            )

        return StatusEnvelope(job_id=job.job_id, status=public_status, progress=job.progress)

    def get_record(self, db: Session, job_id: str, user_id: Optional[str] = None) -> Optional[StatusRecord]:
        """Generic status read; scoped to ``user_id`` when given"""
        if user_id is not None:
            job = JobDB.get_user_job(db, job_id, user_id)
        else:
            job = JobDB.get_job(db, job_id)
        if job is None:
            return None
        return StatusRecord(
            id=job.job_id,
            kind=job.kind,
            status=job.status,
            result_ref=job.result_ref,
            error=job.error,
            provider_job_id=job.provider_job_id,
            updated_at=job.updated_at.isoformat() if job.updated_at else None,
        )

    @staticmethod
    def as_dict(envelope: StatusEnvelope) -> Dict[str, Any]:
        return envelope.model_dump(exclude_none=True)
