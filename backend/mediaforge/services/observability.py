"""
Observability and Logging Service
"""

import logging

import structlog
from typing import Optional

from mediaforge.config.settings import settings


logging.basicConfig(format="%(message)s", level=settings.log_level)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

# Get logger
logger = structlog.get_logger(__name__)


def log_failure_classification(
    error_code: str,
    classification: str,
    retryable: bool,
    job_id: Optional[str] = None,
) -> None:
    """
    Log failure classification event

    Args:
        error_code: Error code (e.g., "PROVIDER_TIMEOUT", "STITCH_FAILED")
        classification: Error classification ("retryable" or "non_retryable")
        retryable: Whether a resubmission could succeed
        job_id: Optional job ID for context
    """
    log_data = {
        "error_code": error_code,
        "classification": classification,
        "retryable": retryable,
    }
    if job_id:
        log_data["job_id"] = job_id

    logger.error("failure_classified", **log_data)


def log_generation_duration(
    job_id: str,
    kind: str,
    duration_s: float,
    shot_count: int = 1,
) -> None:
    """
    Log end-to-end worker duration for a job

    Args:
        job_id: Job ID
        kind: "single" or "story"
        duration_s: Wall-clock seconds from claim to terminal state
        shot_count: Number of provider generations performed
    """
    logger.info(
        "generation_completed",
        job_id=job_id,
        kind=kind,
        duration_s=round(duration_s, 3),
        shot_count=shot_count,
        avg_duration_per_shot=duration_s / shot_count if shot_count > 0 else 0,
    )


def log_webhook_applied(
    job_id: str,
    state: Optional[str],
    applied: bool,
    reason: Optional[str] = None,
) -> None:
    """Log the outcome of one webhook delivery"""
    log_data = {"job_id": job_id, "state": state, "applied": applied}
    if reason:
        log_data["reason"] = reason
    logger.info("webhook_applied", **log_data)


def log_persist_outcome(
    job_id: str,
    path: str,
    persisted: bool,
    asset_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> None:
    """
    Log a persist-step attempt

    Args:
        job_id: Job ID
        path: Which component ran it ("worker" or "status_query")
        persisted: True when this call created the Asset
        asset_id: Asset created by this call
        reason: Why nothing was persisted
    """
    logger.info(
        "persist_attempted",
        job_id=job_id,
        path=path,
        persisted=persisted,
        asset_id=asset_id,
        reason=reason,
    )


def log_dispatch_failure(job_id: str, mode: str, error: str) -> None:
    logger.warning("worker_dispatch_failed", job_id=job_id, mode=mode, error=error)
