"""
Provider Adapter - HTTP integration with the upstream generation provider
"""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from mediaforge.config.constants import (
    DEFAULT_GUIDANCE_SCALE,
    DEFAULT_STEPS,
    DEFAULT_STRENGTH,
    PROVIDER_FAILURE_STATES,
    PROVIDER_SUCCESS_STATES,
)
from mediaforge.config.settings import settings
from mediaforge.services.observability import logger


PROVIDER_JOB_ID_KEYS: List[str] = ["id", "job_id", "request_id", "generation_id", "task_id"]
RESULT_URL_KEYS: List[str] = ["result_url", "outputUrl", "output_url", "video_url", "url"]


class ProviderError(Exception):
    """Upstream provider rejected a request or reported a failed generation"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(self.message)


class ProviderTimeoutError(ProviderError):
    """Provider never reached a terminal state within the poll budget"""

    pass


class GenerationRequest(BaseModel):
    """One generation request sent to the provider"""

    model: str
    prompt: str
    negative_prompt: Optional[str] = None
    source_url: str
    is_video: bool = False
    strength: float = DEFAULT_STRENGTH
    num_inference_steps: int = DEFAULT_STEPS
    guidance_scale: float = DEFAULT_GUIDANCE_SCALE
    seed: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    callback_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProviderSubmitResponse(BaseModel):
    """Submit outcome: either a finished result or a job id to poll"""

    provider_job_id: Optional[str] = None
    result_url: Optional[str] = None


class ProviderStatus(BaseModel):
    """Normalized provider status"""

    state: str  # "processing", "succeeded" or "failed"
    raw_state: str = ""
    result_url: Optional[str] = None
    error: Optional[str] = None
    progress: Optional[int] = None


def extract_provider_job_id(body: Dict[str, Any]) -> Optional[str]:
    for key in PROVIDER_JOB_ID_KEYS:
        value = body.get(key)
        if value:
            return str(value)
    return None


def extract_result_url(body: Dict[str, Any]) -> Optional[str]:
    """Result URL from any of the provider's response shapes"""
    for key in RESULT_URL_KEYS:
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    for key in ("images", "data", "output"):
        items = body.get(key)
        if isinstance(items, list) and items and isinstance(items[0], dict):
            url = items[0].get("url")
            if isinstance(url, str) and url:
                return url
    return None


def parse_status(body: Dict[str, Any]) -> ProviderStatus:
    """Map a provider status payload onto succeeded / failed / processing"""
    raw_state = str(body.get("status") or body.get("state") or "").strip().lower()
    result_url = extract_result_url(body)
    progress = body.get("progress")
    if not isinstance(progress, (int, float)) or isinstance(progress, bool):
        progress = None
    error = body.get("error") or body.get("message")
    if isinstance(error, dict):
        error = error.get("message") or str(error)

    if raw_state in PROVIDER_SUCCESS_STATES:
        if not result_url:
            return ProviderStatus(
                state="failed",
                raw_state=raw_state,
                error="Provider reported success without a result URL",
            )
        return ProviderStatus(state="succeeded", raw_state=raw_state, result_url=result_url)

    if raw_state in PROVIDER_FAILURE_STATES:
        return ProviderStatus(
            state="failed",
            raw_state=raw_state,
            error=str(error) if error else f"Provider reported {raw_state}",
        )

    return ProviderStatus(
        state="processing",
        raw_state=raw_state,
        progress=int(progress) if progress is not None else None,
    )


class ProviderAdapter:
    """
    Adapter for the upstream generation provider's REST API

    Video sources go to the video-to-video endpoint, image sources and
    story stills to the image endpoint. Status is read from
    ``{endpoint}/{provider_job_id}``.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.provider_api_key
        self.video_endpoint = settings.provider_video_endpoint.rstrip("/")
        self.image_endpoint = settings.provider_image_endpoint.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.provider_request_timeout_s)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _endpoint(self, is_video: bool) -> str:
        return self.video_endpoint if is_video else self.image_endpoint

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt,
            "strength": request.strength,
            "num_inference_steps": request.num_inference_steps,
            "guidance_scale": request.guidance_scale,
        }
        if request.is_video:
            payload["video_url"] = request.source_url
        else:
            payload["image_url"] = request.source_url
        if request.negative_prompt:
            payload["negative_prompt"] = request.negative_prompt
        if request.seed is not None:
            payload["seed"] = request.seed
        if request.width and request.height:
            payload["width"] = request.width
            payload["height"] = request.height
        if request.callback_url:
            payload["callback_url"] = request.callback_url
            if request.webhook_secret:
                payload["webhook_secret"] = request.webhook_secret
        if request.metadata:
            payload["metadata"] = request.metadata
        return payload

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(url, json=payload, headers=self._headers())
        if response.status_code >= 400:
            raise ProviderError(
                f"Provider request failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return self._json(response)

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Provider returned a non-JSON response: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            ) from e
        if not isinstance(data, dict):
            raise ProviderError(
                f"Provider returned an unexpected response: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    async def submit_generation(self, request: GenerationRequest) -> ProviderSubmitResponse:
        """
        Submit a generation request

        Returns:
            ProviderSubmitResponse with a result URL (synchronous providers)
            or a provider job id to poll

        Raises:
            ProviderError: On a non-2xx or non-JSON answer, or a body with neither field
        """
        url = self._endpoint(request.is_video)
        logger.info(
            "provider_submit",
            endpoint=url,
            model=request.model,
            is_video=request.is_video,
            prompt_length=len(request.prompt),
        )
        body = await self._post(url, self.build_payload(request))

        result = ProviderSubmitResponse(
            provider_job_id=extract_provider_job_id(body),
            result_url=extract_result_url(body),
        )
        if not result.provider_job_id and not result.result_url:
            raise ProviderError(
                "Provider response carried neither a job id nor a result URL",
                body=str(body)[:500],
            )

        logger.info(
            "provider_submitted",
            provider_job_id=result.provider_job_id,
            synchronous=bool(result.result_url),
        )
        return result

    async def get_status(self, provider_job_id: str, is_video: bool = True) -> ProviderStatus:
        """
        Read the provider's status for one job

        Raises:
            ProviderError: On a non-2xx or non-JSON answer
        """
        url = f"{self._endpoint(is_video)}/{provider_job_id}"
        response = await self.client.get(url, headers=self._headers())
        if response.status_code >= 400:
            raise ProviderError(
                f"Provider status request failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        status = parse_status(self._json(response))
        logger.debug(
            "provider_poll",
            provider_job_id=provider_job_id,
            state=status.state,
            raw_state=status.raw_state,
            progress=status.progress,
        )
        return status

    async def generate_image(self, request: GenerationRequest) -> str:
        """
        Run one synchronous image generation and return the image URL

        Raises:
            ProviderError: On a non-2xx answer or a response without an image
        """
        body = await self._post(self.image_endpoint, self.build_payload(request))
        url = extract_result_url(body)
        if not url:
            raise ProviderError("Provider returned no image", body=str(body)[:500])
        return url

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()
