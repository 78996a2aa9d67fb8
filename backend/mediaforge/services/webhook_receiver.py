"""
Webhook Receiver - Apply provider push notifications to the job store
"""

import hmac
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mediaforge.config.constants import MAX_ERROR_LENGTH, WEBHOOK_STATE_MAP
from mediaforge.config.settings import settings
from mediaforge.models.job import JobStatus
from mediaforge.services.job_state import is_terminal_state, transition_state
from mediaforge.services.observability import logger, log_webhook_applied
from mediaforge.services.storage import JobDB


class WebhookEvent(BaseModel):
    """Provider notification, already normalized to snake_case"""

    job_id: str
    state: Optional[str] = None
    output_url: Optional[str] = None
    error: Optional[str] = None
    progress: Optional[float] = None


class WebhookResult(BaseModel):
    ok: bool = True
    applied: bool
    message: str


def verify_webhook_secret(provided: Optional[str], expected: Optional[str] = None) -> bool:
    """
    Compare the header secret with the configured one

    An empty configured secret disables the check.
    """
    expected = settings.webhook_secret if expected is None else expected
    if not expected:
        return True
    return hmac.compare_digest((provided or "").encode(), expected.encode())


def normalize_state(state: Optional[str]) -> Optional[str]:
    return WEBHOOK_STATE_MAP.get((state or "").strip().lower())


class WebhookReceiver:
    """
    Apply one webhook delivery

    Only jobs currently ``processing`` change status here. Completion
    stores the output URL as a candidate result; persisting it to durable
    storage is left to the worker or the status query path.
    """

    def apply(self, db: Session, event: WebhookEvent) -> WebhookResult:
        """
        Apply ``event``; never raises for store problems

        Returns:
            WebhookResult describing what happened
        """
        try:
            return self._apply(db, event)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("webhook_store_unavailable", job_id=event.job_id, error=str(e))
            return WebhookResult(applied=False, message="job store unavailable; webhook ignored")

    def _apply(self, db: Session, event: WebhookEvent) -> WebhookResult:
        job_id = event.job_id
        state = normalize_state(event.state)
        logger.info("webhook_received", job_id=job_id, state=event.state, mapped_state=state)

        if not event.state:
            return self._ignored(job_id, None, "missing state")
        if state is None:
            return self._ignored(job_id, event.state, f"unknown state {event.state!r}")

        job = JobDB.get_job(db, job_id, refresh=True)
        if job is None:
            return self._ignored(job_id, state, "unknown job")

        if is_terminal_state(job.status):
            return self._ignored(job_id, state, f"job already {job.status}")

        progress = self._clamp(event.progress)

        if state == JobStatus.COMPLETED.value:
            if not event.output_url:
                return self._ignored(job_id, state, "completed without output url")
            updated = transition_state(
                db,
                job_id,
                JobStatus.COMPLETED.value,
                "webhook_completed",
                result_ref=event.output_url,
                progress=100,
            )
            return self._transitioned(job_id, state, updated is not None)

        if state == JobStatus.FAILED.value:
            error = (event.error or "Provider reported failure")[:MAX_ERROR_LENGTH]
            updated = transition_state(
                db,
                job_id,
                JobStatus.FAILED.value,
                "webhook_failed",
                error=error,
                error_code="PROVIDER_FAILED",
            )
            return self._transitioned(job_id, state, updated is not None)

        if state == JobStatus.PROCESSING.value and progress is not None:
            applied = JobDB.update_progress(db, job_id, progress)
            log_webhook_applied(job_id, state, applied, None if applied else "progress not advanced")
            return WebhookResult(applied=applied, message="progress updated" if applied else "progress unchanged")

        return self._ignored(job_id, state, "no status change")

    @staticmethod
    def _clamp(progress: Optional[float]) -> Optional[int]:
        if progress is None:
            return None
        return int(max(0, min(100, progress)))

    @staticmethod
    def _transitioned(job_id: str, state: str, won: bool) -> WebhookResult:
        if not won:
            log_webhook_applied(job_id, state, False, "job not processing")
            return WebhookResult(applied=False, message="job not processing; webhook ignored")
        log_webhook_applied(job_id, state, True)
        return WebhookResult(applied=True, message=f"job {state}")

    @staticmethod
    def _ignored(job_id: str, state: Optional[str], reason: str) -> WebhookResult:
        log_webhook_applied(job_id, state, False, reason)
        return WebhookResult(applied=False, message=f"ignored: {reason}")
