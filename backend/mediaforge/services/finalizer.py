"""
Artifact Finalizer - Persist a finished artifact and create its Asset exactly once
"""

import uuid
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from mediaforge.models.asset import AssetModel
from mediaforge.models.job import JobModel
from mediaforge.services.media_storage import DurableStorage
from mediaforge.services.observability import logger, log_persist_outcome
from mediaforge.services.source_resolver import detect_media_type
from mediaforge.services.storage import AssetDB, JobDB


class PersistResult(BaseModel):
    """Outcome of one persist attempt"""

    job_id: str
    persisted: bool  # True only for the call that created the Asset
    asset_id: Optional[str] = None
    result_url: Optional[str] = None
    public_id: Optional[str] = None
    reason: Optional[str] = None


class ArtifactFinalizer:
    """
    Persist step shared by the worker and the status query path

    Whoever wins the persist claim on the job row uploads the artifact to
    ``outputs/{user_id}/{job_id}`` and, in the same transaction that marks
    the job persisted, inserts the Asset. Everyone else skips.
    """

    def __init__(self, storage: DurableStorage):
        self.storage = storage

    async def persist(
        self,
        db: Session,
        job: JobModel,
        artifact: str,
        path: str = "worker",
        duration: Optional[float] = None,
    ) -> PersistResult:
        """
        Persist ``artifact`` (provider URL or local file) for ``job``

        Raises:
            StorageUploadError: If the upload fails; the claim is released first
        """
        job_id = job.job_id
        token = uuid.uuid4().hex

        if not JobDB.claim_persist(db, job_id, token):
            return self._skipped(db, job_id, path)

        # Snapshot what the upload needs; the row is re-read after every commit
        job = JobDB.get_job(db, job_id, refresh=True)
        user_id = job.user_id
        media_type = job.result_media_type
        is_public = job.visibility == "public"

        tags = ["type:output", f"user:{user_id}"]
        if job.is_story:
            tags.append("kind:story")
        if is_public:
            tags.append("public")
        context = {
            "user_id": user_id,
            "job_id": job_id,
            "provider_job_id": job.provider_job_id,
            "created_at": job.created_at.isoformat() if job.created_at else None,
        }

        try:
            if self.storage.is_durable_url(artifact):
                result_url = artifact
                public_id = self.storage.public_id_from_url(artifact)
                result_type = None
            else:
                uploaded = await self.storage.upload(
                    artifact,
                    folder=f"outputs/{user_id}",
                    tags=tags,
                    context=context,
                    resource_type=media_type,
                    public_id=job_id,
                    duration=duration,
                )
                result_url = uploaded.secure_url
                public_id = uploaded.public_id
                result_type = uploaded.content_type
        except Exception:
            JobDB.release_persist(db, job_id, token)
            log_persist_outcome(job_id, path, persisted=False, reason="upload_failed")
            raise

        # Single-shot results may differ in kind from their source
        if not job.is_story:
            media_type = detect_media_type(result_url, result_type)

        meta = {
            "directive": job.directive,
            "preset_key": job.preset_key,
            "provider_job_id": job.provider_job_id,
            "kind": job.kind,
            "seed": (job.params or {}).get("seed"),
        }
        if job.is_story:
            meta.update({"fps": job.fps, "width": job.width, "height": job.height})
        if duration is not None:
            meta["duration_s"] = duration

        asset = AssetModel(
            asset_id=AssetModel.generate_asset_id(),
            owner_user_id=user_id,
            source_job_id=job_id,
            media_url=result_url,
            public_id=public_id,
            media_type=media_type,
            visibility=job.visibility,
            allow_remix=bool(job.allow_remix) if is_public else False,
            meta=meta,
        )
        asset_id = asset.asset_id

        updated = JobDB.complete_persist(db, job_id, token, result_url, public_id, asset)
        if updated is None:
            logger.warning("persist_claim_lost", job_id=job_id, path=path)
            return self._skipped(db, job_id, path)

        log_persist_outcome(job_id, path, persisted=True, asset_id=asset_id)
        return PersistResult(
            job_id=job_id,
            persisted=True,
            asset_id=asset_id,
            result_url=result_url,
            public_id=public_id,
        )

    def _skipped(self, db: Session, job_id: str, path: str) -> PersistResult:
        current = JobDB.get_job(db, job_id, refresh=True)
        asset = AssetDB.get_by_source_job(db, job_id)
        if current is not None and current.provider_persisted:
            reason = "already_persisted"
        elif current is not None and current.persist_token:
            reason = "persist_in_progress"
        else:
            reason = "not_persistable"
        log_persist_outcome(job_id, path, persisted=False, reason=reason)
        return PersistResult(
            job_id=job_id,
            persisted=False,
            asset_id=asset.asset_id if asset else None,
            result_url=current.result_ref if current else None,
            public_id=current.result_public_id if current else None,
            reason=reason,
        )
