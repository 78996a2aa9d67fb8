"""
Provider Webhook Routes
"""

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from mediaforge.api.deps import get_webhook_receiver
from mediaforge.models import get_db
from mediaforge.services.observability import logger
from mediaforge.services.webhook_receiver import (
    WebhookEvent,
    WebhookReceiver,
    WebhookResult,
    verify_webhook_secret,
)


class WebhookPayload(BaseModel):
    """Provider notification; camelCase and snake_case keys are both accepted"""

    model_config = ConfigDict(extra="ignore")

    job_id: Optional[str] = Field(None, validation_alias=AliasChoices("job_id", "jobId"))
    state: Optional[str] = Field(None, validation_alias=AliasChoices("state", "status"))
    output_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("output_url", "outputUrl", "result_url", "resultUrl"),
    )
    error: Optional[Any] = None
    progress: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None

    def resolved_job_id(self) -> Optional[str]:
        if self.job_id:
            return self.job_id
        meta = self.metadata or {}
        value = meta.get("job_id") or meta.get("jobId")
        return str(value) if value else None


router = APIRouter()


@router.post("/webhooks/provider", response_model=WebhookResult)
async def provider_webhook(
    payload: WebhookPayload,
    x_webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret"),
    db: Session = Depends(get_db),
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    """
    Receive a provider status notification

    Answers 200 for every structurally valid delivery, including unknown
    jobs and an unavailable job store, so the provider does not retry.
    """
    if not verify_webhook_secret(x_webhook_secret):
        logger.warning("webhook_secret_mismatch")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "INVALID_WEBHOOK_SECRET",
                    "message": "Webhook secret mismatch",
                }
            }
        )

    job_id = payload.resolved_job_id()
    if not job_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": {
                    "code": "MISSING_JOB_ID",
                    "message": "jobId is required",
                }
            }
        )

    error = payload.error
    if isinstance(error, dict):
        error = error.get("message") or str(error)

    event = WebhookEvent(
        job_id=job_id,
        state=payload.state,
        output_url=payload.output_url,
        error=str(error) if error else None,
        progress=payload.progress,
    )
    return receiver.apply(db, event)
