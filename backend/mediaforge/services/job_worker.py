"""
Job Worker - Drive one job from queued to a terminal state

Only this component moves a job out of ``queued``. The claim is a
compare-and-set on the job row, so duplicate invocations for the same
job are no-ops.
"""

import asyncio
import os
import shutil
import tempfile
import time
from typing import Awaitable, Callable, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mediaforge.config.constants import (
    DEFAULT_GUIDANCE_SCALE,
    DEFAULT_IMAGE_MODEL,
    DEFAULT_STEPS,
    DEFAULT_STRENGTH,
    DEFAULT_VIDEO_MODEL,
    MAX_ERROR_LENGTH,
    PROGRESS_CLAIMED,
    PROGRESS_POLL_CEILING,
    PROGRESS_SHOTS_CEILING,
    PROGRESS_STITCHED,
    STORY_DEFAULT_FPS,
    STORY_DEFAULT_HEIGHT,
    STORY_DEFAULT_SHOT_LIST,
    STORY_DEFAULT_WIDTH,
)
from mediaforge.config.settings import settings
from mediaforge.core.prompt_compiler import PromptCompiler
from mediaforge.core.provider_adapter import (
    GenerationRequest,
    ProviderAdapter,
    ProviderError,
    ProviderTimeoutError,
)
from mediaforge.models.job import JobModel, JobStatus
from mediaforge.services.downloader import MediaDownloadError, MediaDownloader
from mediaforge.services.error_classifier import ErrorClassifier
from mediaforge.services.ffmpeg_stitcher import FFmpegStitcher
from mediaforge.services.finalizer import ArtifactFinalizer
from mediaforge.services.job_state import is_terminal_state, transition_state
from mediaforge.services.media_storage import DurableStorage
from mediaforge.services.observability import (
    logger,
    log_failure_classification,
    log_generation_duration,
)
from mediaforge.services.storage import AssetDB, JobDB


class WorkerOutcome(BaseModel):
    """What one worker invocation did"""

    ok: bool
    job_id: str
    handled: bool  # False when another invocation owns or finished the job
    status: Optional[str] = None
    result_url: Optional[str] = None
    asset_id: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


def truncate_error(message: str) -> str:
    return (message or "failed")[:MAX_ERROR_LENGTH]


class JobWorker:
    """
    Worker orchestrator

    single: submit to the provider, then take the synchronous result or
    poll until success, failure, an externally written terminal state,
    or the wall-clock budget runs out.

    story: generate every shot still in order, stitch them, and persist
    the video. Any shot failure fails the whole job.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        storage: DurableStorage,
        downloader: Optional[MediaDownloader] = None,
        stitcher: Optional[FFmpegStitcher] = None,
        compiler: Optional[PromptCompiler] = None,
        finalizer: Optional[ArtifactFinalizer] = None,
        classifier: Optional[ErrorClassifier] = None,
        poll_interval_s: Optional[float] = None,
        poll_timeout_s: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.storage = storage
        self.downloader = downloader or storage.downloader
        self.stitcher = stitcher or FFmpegStitcher()
        self.compiler = compiler or PromptCompiler()
        self.finalizer = finalizer or ArtifactFinalizer(storage)
        self.classifier = classifier or ErrorClassifier()
        self.poll_interval_s = poll_interval_s if poll_interval_s is not None else settings.poll_interval_s
        self.poll_timeout_s = poll_timeout_s if poll_timeout_s is not None else settings.poll_timeout_s
        self._sleep = sleep

    async def process(self, db: Session, job_id: str) -> WorkerOutcome:
        """
        Process one job

        Args:
            db: Database session
            job_id: Job identifier

        Returns:
            WorkerOutcome; failures are recorded on the job, never raised
        """
        job = transition_state(
            db,
            job_id,
            JobStatus.PROCESSING.value,
            "worker_claimed",
            progress=PROGRESS_CLAIMED,
        )
        if job is None:
            existing = JobDB.get_job(db, job_id, refresh=True)
            message = "Job not found" if existing is None else "Already handled"
            logger.info("job_claim_skipped", job_id=job_id, reason=message)
            return WorkerOutcome(
                ok=existing is not None,
                job_id=job_id,
                handled=False,
                status=existing.status if existing else None,
                message=message,
            )

        logger.info("job_claimed", job_id=job_id, kind=job.kind, user_id=job.user_id)
        started = time.monotonic()
        scratch_dir: Optional[str] = None

        try:
            if job.is_story:
                scratch_dir = tempfile.mkdtemp(
                    prefix=f"story-{job_id}-",
                    dir=settings.scratch_root or None,
                )
                artifact, duration, shot_count = await self._run_story(db, job, scratch_dir)
            else:
                artifact = await self._run_single(db, job)
                duration, shot_count = None, 1

            if artifact is None:
                # A webhook or an external action finished the job first
                return await self.finalize_completed(db, job_id)

            persisted = await self.finalizer.persist(db, job, artifact, path="worker", duration=duration)
            log_generation_duration(job_id, job.kind, time.monotonic() - started, shot_count)
            return self._outcome(db, job_id, persisted.asset_id)

        except Exception as e:
            return self._fail(db, job_id, e)

        finally:
            if scratch_dir:
                shutil.rmtree(scratch_dir, ignore_errors=True)

    async def finalize_completed(self, db: Session, job_id: str) -> WorkerOutcome:
        """
        Persist a job some other writer already completed with a provider URL
        """
        current = JobDB.get_job(db, job_id, refresh=True)
        if current is None:
            return WorkerOutcome(ok=False, job_id=job_id, handled=False, message="Job not found")

        if (
            current.status == JobStatus.COMPLETED.value
            and not current.provider_persisted
            and current.result_ref
        ):
            persisted = await self.finalizer.persist(db, current, current.result_ref, path="worker")
            return self._outcome(db, job_id, persisted.asset_id)

        return self._outcome(db, job_id)

    async def _run_single(self, db: Session, job: JobModel) -> Optional[str]:
        params = job.params or {}
        is_video = job.source_media_type == "video"
        request = GenerationRequest(
            model=job.model or (DEFAULT_VIDEO_MODEL if is_video else DEFAULT_IMAGE_MODEL),
            prompt=job.directive,
            negative_prompt=job.negative_directive,
            source_url=job.source_url,
            is_video=is_video,
            strength=params.get("strength", DEFAULT_STRENGTH),
            num_inference_steps=params.get("steps", DEFAULT_STEPS),
            guidance_scale=params.get("guidance_scale", DEFAULT_GUIDANCE_SCALE),
            seed=params.get("seed"),
            callback_url=settings.callback_url or None,
            webhook_secret=settings.webhook_secret or None,
            metadata={"job_id": job.job_id},
        )

        submitted = await self.provider.submit_generation(request)
        if submitted.provider_job_id:
            JobDB.update_fields(
                db,
                job.job_id,
                JobStatus.PROCESSING.value,
                provider_job_id=submitted.provider_job_id,
            )

        if submitted.result_url:
            return submitted.result_url

        return await self._poll(db, job.job_id, submitted.provider_job_id, is_video)

    async def _poll(
        self,
        db: Session,
        job_id: str,
        provider_job_id: str,
        is_video: bool,
    ) -> Optional[str]:
        """
        Poll the provider until a result, a failure or the deadline

        Returns:
            Result URL, or None when the job turned terminal underneath us

        Raises:
            ProviderError: Provider reported failure
            ProviderTimeoutError: Budget exhausted
        """
        deadline = time.monotonic() + self.poll_timeout_s
        attempts = 0

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await self._sleep(min(self.poll_interval_s, remaining))
            attempts += 1

            current = JobDB.get_job(db, job_id, refresh=True)
            if current is None or is_terminal_state(current.status):
                logger.info(
                    "poll_stopped_terminal",
                    job_id=job_id,
                    status=current.status if current else None,
                    attempts=attempts,
                )
                return None

            status = await self.provider.get_status(provider_job_id, is_video=is_video)
            if status.state == "succeeded":
                logger.info("provider_succeeded", job_id=job_id, attempts=attempts)
                return status.result_url
            if status.state == "failed":
                raise ProviderError(f"Provider job {status.raw_state or 'failed'}: {status.error or ''}".strip())
            if status.progress is not None:
                self._advance_progress(
                    db,
                    job_id,
                    min(PROGRESS_POLL_CEILING, max(PROGRESS_CLAIMED, status.progress)),
                )

        current = JobDB.get_job(db, job_id, refresh=True)
        if current is None or is_terminal_state(current.status):
            return None

        raise ProviderTimeoutError(
            f"Timeout waiting for provider result after {self.poll_timeout_s:g}s"
        )

    async def _run_story(
        self,
        db: Session,
        job: JobModel,
        scratch_dir: str,
    ) -> Tuple[Optional[str], Optional[float], int]:
        shots = job.story_shots() or list(STORY_DEFAULT_SHOT_LIST)
        params = job.params or {}
        width = job.width or STORY_DEFAULT_WIDTH
        height = job.height or STORY_DEFAULT_HEIGHT
        fps = job.fps or STORY_DEFAULT_FPS
        compiled = self.compiler.compile_story_shots(
            job.directive,
            shots,
            negative_directive=job.negative_directive,
            base_seed=params.get("seed"),
        )
        total = len(compiled)
        stills: List[str] = []

        for shot in compiled:
            number = shot.index + 1

            current = JobDB.get_job(db, job.job_id, refresh=True)
            if current is None or is_terminal_state(current.status):
                logger.info("story_stopped_terminal", job_id=job.job_id, shot=number)
                return None, None, len(stills)

            request = GenerationRequest(
                model=job.model or DEFAULT_IMAGE_MODEL,
                prompt=shot.prompt,
                negative_prompt=shot.negative_prompt,
                source_url=job.source_url,
                is_video=False,
                strength=params.get("strength", DEFAULT_STRENGTH),
                num_inference_steps=params.get("steps", DEFAULT_STEPS),
                guidance_scale=params.get("guidance_scale", DEFAULT_GUIDANCE_SCALE),
                seed=shot.seed,
                width=width,
                height=height,
                metadata={"job_id": job.job_id, "shot": number},
            )

            try:
                image_url = await self.provider.generate_image(request)
            except ProviderError as e:
                detail = f"{e.status_code} {e.body or ''}".strip() if e.status_code else e.message
                raise ProviderError(
                    f"Shot {number} failed: {detail}",
                    status_code=e.status_code,
                    body=e.body,
                ) from e
            except httpx.HTTPError as e:
                raise ProviderError(f"Shot {number} failed: {e}") from e

            ext = os.path.splitext(urlparse(image_url).path)[1] or ".png"
            still_path = os.path.join(scratch_dir, f"shot_{number:02d}{ext}")
            try:
                await self.downloader.download_to(image_url, still_path)
            except (httpx.HTTPError, MediaDownloadError, OSError) as e:
                raise ProviderError(f"Shot {number} failed: still download: {e}") from e
            stills.append(still_path)

            logger.info("story_shot_complete", job_id=job.job_id, shot=number, total=total)
            self._advance_progress(db, job.job_id, round(number / total * PROGRESS_SHOTS_CEILING))

        output_path = os.path.join(scratch_dir, "story.mp4")
        stitched = await asyncio.to_thread(
            self.stitcher.stitch,
            stills,
            output_path,
            width,
            height,
            fps,
        )
        self._advance_progress(db, job.job_id, PROGRESS_STITCHED)
        return output_path, stitched.get("duration_s"), total

    def _advance_progress(self, db: Session, job_id: str, progress: int) -> None:
        """Best-effort progress write"""
        try:
            JobDB.update_progress(db, job_id, progress)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("progress_update_failed", job_id=job_id, progress=progress, error=str(e))

    def _fail(self, db: Session, job_id: str, error: Exception) -> WorkerOutcome:
        db.rollback()
        classification = self.classifier.classify(error)
        log_failure_classification(
            classification["code"],
            classification["classification"],
            classification["retryable"],
            job_id=job_id,
        )
        message = truncate_error(str(error) or classification["message"])
        logger.error(
            "job_failed",
            job_id=job_id,
            error_code=classification["code"],
            error=message,
            exc_info=not isinstance(error, (ProviderError, ProviderTimeoutError)),
        )

        failed = transition_state(
            db,
            job_id,
            JobStatus.FAILED.value,
            "worker_failed",
            error=message,
            error_code=classification["code"],
            persist_token=None,
            persist_claimed_at=None,
        )
        if failed is None:
            # Someone else already finished the job; keep their result
            logger.warning("job_failure_not_recorded", job_id=job_id, error=message)
            return self._outcome(db, job_id, error=message)

        return WorkerOutcome(
            ok=False,
            job_id=job_id,
            handled=True,
            status=failed.status,
            error=message,
        )

    def _outcome(
        self,
        db: Session,
        job_id: str,
        asset_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> WorkerOutcome:
        current = JobDB.get_job(db, job_id, refresh=True)
        if asset_id is None:
            asset = AssetDB.get_by_source_job(db, job_id)
            asset_id = asset.asset_id if asset else None
        status = current.status if current else None
        return WorkerOutcome(
            ok=status == JobStatus.COMPLETED.value,
            job_id=job_id,
            handled=True,
            status=status,
            result_url=current.result_ref if current else None,
            asset_id=asset_id,
            error=(current.error if current and current.error else error),
        )
