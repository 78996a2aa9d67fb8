"""
Job State Management Service
"""

from typing import Any, List, Optional
from sqlalchemy.orm import Session

from mediaforge.models.job import JobModel, JobStatus
from mediaforge.services.storage import JobDB


class JobStateError(Exception):
    """Exception raised for invalid state transitions"""

    pass


# Valid state transitions
VALID_TRANSITIONS = {
    "queued": ["processing", "canceled"],
    "processing": ["completed", "failed", "canceled"],
    "completed": [],  # Terminal state
    "failed": [],  # Terminal state
    "canceled": [],  # Terminal state
}

TERMINAL_STATES = ("completed", "failed", "canceled")

# Internal status -> client-facing status
PUBLIC_STATUS = {
    "queued": "queued",
    "processing": "running",
    "completed": "done",
    "failed": "failed",
    "canceled": "failed",
}


def allowed_sources(new_state: str) -> List[str]:
    """States from which ``new_state`` may be entered"""
    return [state for state, targets in VALID_TRANSITIONS.items() if new_state in targets]


def transition_state(
    db: Session,
    job_id: str,
    new_state: str,
    event: str,
    **fields: Any,
) -> Optional[JobModel]:
    """
    Transition job to new state as a compare-and-set on its current status

    Args:
        db: Database session
        job_id: Job identifier
        new_state: Target state (processing, completed, failed, canceled)
        event: Event triggering the transition
        **fields: Extra columns written together with the status

    Returns:
        Updated JobModel, or None if the job is missing or another writer
        already moved it out of every allowed source state

    Raises:
        JobStateError: If no state may transition into ``new_state``
    """
    sources = allowed_sources(new_state)
    if not sources:
        raise JobStateError(f"Invalid target state: {new_state}")
    return JobDB.transition(db, job_id, sources, new_state, event, **fields)


def is_terminal_state(state: str) -> bool:
    """
    Check if state is a terminal state

    Args:
        state: Job status

    Returns:
        True if state is completed, failed or canceled
    """
    return state in TERMINAL_STATES


def to_public_status(state: str) -> str:
    """Collapse an internal status into queued / running / done / failed"""
    return PUBLIC_STATUS.get(state, JobStatus.FAILED.value)
