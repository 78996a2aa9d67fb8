"""
Job Submission Service - Validate, resolve the source, create the job, dispatch
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from mediaforge.config.constants import (
    DEFAULT_DIRECTIVE,
    DEFAULT_GUIDANCE_SCALE,
    DEFAULT_IMAGE_MODEL,
    DEFAULT_STEPS,
    DEFAULT_STRENGTH,
    DEFAULT_VIDEO_MODEL,
    STORY_DEFAULT_FPS,
    STORY_DEFAULT_HEIGHT,
    STORY_DEFAULT_SHOT_LIST,
    STORY_DEFAULT_WIDTH,
    STORY_MAX_SHOTS,
)
from mediaforge.core.prompt_compiler import PromptCompiler
from mediaforge.core.provider_adapter import GenerationRequest, ProviderAdapter
from mediaforge.models.job import JobKind, JobModel, JobStatus
from mediaforge.services.observability import logger
from mediaforge.services.presets import PresetCatalog
from mediaforge.services.source_resolver import (
    InvalidSourceError,
    ResolvedSource,
    SourceResolver,
    decode_base64,
)
from mediaforge.services.storage import JobDB
from mediaforge.services.worker_dispatch import WorkerDispatcher


class SubmissionError(Exception):
    """Submission rejected before any job was created"""

    MISSING_SOURCE = "MISSING_SOURCE"
    MISSING_DIRECTIVE = "MISSING_DIRECTIVE"
    UNKNOWN_PRESET = "UNKNOWN_PRESET"
    INVALID_SOURCE = "INVALID_SOURCE"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(self.message)


class SubmissionRequest(BaseModel):
    """Everything a submission may carry, already authenticated"""

    kind: JobKind = JobKind.SINGLE
    source_url: Optional[str] = None
    source_ref: Optional[str] = None
    source_base64: Optional[str] = None
    source_content_type: Optional[str] = None
    directive: Optional[str] = None
    negative_directive: Optional[str] = None
    preset_key: Optional[str] = None
    model: Optional[str] = None
    visibility: str = "private"
    allow_remix: bool = False
    strength: Optional[float] = None
    steps: Optional[int] = None
    guidance_scale: Optional[float] = None
    seed: Optional[int] = None
    shot_list: Optional[List[Dict[str, Any]]] = None
    fps: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


class SubmissionResult(BaseModel):
    ok: bool = True
    job_id: str
    status: str = JobStatus.QUEUED.value


class PassthroughResult(BaseModel):
    """Provider-native answer for the stateless mode"""

    ok: bool = True
    provider_job_id: Optional[str] = None
    result_url: Optional[str] = None
    status: str
    media_type: str = "image"


class ResolvedDirective(BaseModel):
    directive: str
    negative_directive: Optional[str] = None
    model: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)


class JobSubmissionService:
    """
    Create queued jobs and hand them to the worker

    ``submit`` never waits for the worker; a dispatch failure leaves the
    job queued for the recovery sweep.
    """

    def __init__(
        self,
        resolver: SourceResolver,
        dispatcher: WorkerDispatcher,
        presets: Optional[PresetCatalog] = None,
        provider: Optional[ProviderAdapter] = None,
        compiler: Optional[PromptCompiler] = None,
    ):
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.presets = presets or PresetCatalog()
        self.provider = provider
        self.compiler = compiler or PromptCompiler()

    async def submit(self, db: Session, user_id: str, request: SubmissionRequest) -> SubmissionResult:
        """
        Validate and enqueue a job

        Raises:
            SubmissionError: On missing/invalid input or an unknown preset
            StorageUploadError: If the source upload fails
        """
        directive = self._resolve_directive(request)
        source = await self._resolve_source(user_id, request)

        is_story = request.kind == JobKind.STORY
        shot_list = None
        if is_story:
            shot_list = self._validate_shot_list(request.shot_list)

        job = JobModel(
            job_id=JobModel.generate_job_id(),
            kind=request.kind.value,
            user_id=user_id,
            source_url=source.url,
            source_public_id=source.public_id,
            source_media_type=source.media_type,
            directive=directive.directive,
            negative_directive=directive.negative_directive,
            model=directive.model,
            preset_key=request.preset_key,
            params=directive.params,
            visibility=request.visibility,
            allow_remix=request.allow_remix if request.visibility == "public" else False,
            shot_list=shot_list,
            fps=(request.fps or STORY_DEFAULT_FPS) if is_story else None,
            width=(request.width or STORY_DEFAULT_WIDTH) if is_story else None,
            height=(request.height or STORY_DEFAULT_HEIGHT) if is_story else None,
        )
        job = JobDB.create_job(db, job)

        logger.info(
            "job_submitted",
            job_id=job.job_id,
            kind=job.kind,
            user_id=user_id,
            media_type=source.media_type,
            preset_key=request.preset_key,
            source_uploaded=source.uploaded,
        )

        await self.dispatcher.dispatch(job.job_id)

        return SubmissionResult(job_id=job.job_id)

    async def submit_passthrough(self, user_id: str, request: SubmissionRequest) -> PassthroughResult:
        """
        Call the provider directly, without creating a job

        Raises:
            SubmissionError: On invalid input
            ProviderError: On a provider rejection
        """
        if self.provider is None:
            raise RuntimeError("Pass-through mode requires a provider adapter")

        directive = self._resolve_directive(request)
        source = await self._resolve_source(user_id, request)
        is_video = source.media_type == "video"

        submitted = await self.provider.submit_generation(
            GenerationRequest(
                model=directive.model or (DEFAULT_VIDEO_MODEL if is_video else DEFAULT_IMAGE_MODEL),
                prompt=directive.directive,
                negative_prompt=directive.negative_directive,
                source_url=source.url,
                is_video=is_video,
                strength=directive.params["strength"],
                num_inference_steps=directive.params["steps"],
                guidance_scale=directive.params["guidance_scale"],
                seed=directive.params.get("seed"),
                metadata={"user_id": user_id},
            )
        )

        logger.info(
            "passthrough_submitted",
            user_id=user_id,
            provider_job_id=submitted.provider_job_id,
            synchronous=bool(submitted.result_url),
        )

        return PassthroughResult(
            provider_job_id=submitted.provider_job_id,
            result_url=submitted.result_url,
            status="done" if submitted.result_url else "running",
            media_type=source.media_type,
        )

    async def poll_passthrough(self, provider_job_id: str, is_video: bool = True) -> PassthroughResult:
        """Map a provider status to the public vocabulary without touching the job store"""
        if self.provider is None:
            raise RuntimeError("Pass-through mode requires a provider adapter")
        status = await self.provider.get_status(provider_job_id, is_video=is_video)
        public = {"succeeded": "done", "failed": "failed"}.get(status.state, "running")
        return PassthroughResult(
            ok=public != "failed",
            provider_job_id=provider_job_id,
            result_url=status.result_url,
            status=public,
            media_type="video" if is_video else "image",
        )

    def _resolve_directive(self, request: SubmissionRequest) -> ResolvedDirective:
        preset = None
        if request.preset_key:
            preset = self.presets.lookup(request.preset_key)
            if preset is None:
                raise SubmissionError(
                    SubmissionError.UNKNOWN_PRESET,
                    f"Unknown preset: {request.preset_key}",
                )

        directive = (request.directive or "").strip() or (preset.prompt if preset else "")
        if not directive:
            if request.kind == JobKind.STORY:
                raise SubmissionError(SubmissionError.MISSING_DIRECTIVE, "directive is required for story jobs")
            directive = DEFAULT_DIRECTIVE

        negative = request.negative_directive or (preset.negative_prompt if preset else None)
        strength = request.strength
        if strength is None:
            strength = preset.strength if preset and preset.strength is not None else DEFAULT_STRENGTH

        params: Dict[str, Any] = {
            "strength": strength,
            "steps": request.steps or DEFAULT_STEPS,
            "guidance_scale": request.guidance_scale or DEFAULT_GUIDANCE_SCALE,
        }
        if request.seed is not None:
            params["seed"] = request.seed

        return ResolvedDirective(
            directive=directive,
            negative_directive=self.compiler.compile_negative_prompt(negative) or None,
            model=request.model or (preset.model if preset else None),
            params=params,
        )

    async def _resolve_source(self, user_id: str, request: SubmissionRequest) -> ResolvedSource:
        try:
            if request.source_base64:
                body = decode_base64(request.source_base64)
                return await self.resolver.resolve(
                    body,
                    user_id,
                    role="input",
                    content_type=request.source_content_type,
                )

            source = (request.source_url or "").strip() or (request.source_ref or "").strip()
            if not source:
                raise SubmissionError(
                    SubmissionError.MISSING_SOURCE,
                    "source_url or source_ref is required",
                )
            return await self.resolver.resolve(
                source,
                user_id,
                role="input",
                content_type=request.source_content_type,
            )
        except InvalidSourceError as e:
            raise SubmissionError(SubmissionError.INVALID_SOURCE, str(e)) from e

    @staticmethod
    def _validate_shot_list(shot_list: Optional[List[Dict[str, Any]]]) -> List[Dict[str, str]]:
        if not shot_list:
            return [dict(shot) for shot in STORY_DEFAULT_SHOT_LIST]
        if len(shot_list) > STORY_MAX_SHOTS:
            raise ValueError(f"shot_list may hold at most {STORY_MAX_SHOTS} shots")
        shots = []
        for i, shot in enumerate(shot_list):
            add = (shot.get("add") or "").strip()
            if not add:
                raise ValueError(f"shot_list[{i}].add must not be empty")
            shots.append({"name": (shot.get("name") or f"shot_{i + 1}").strip(), "add": add})
        return shots
