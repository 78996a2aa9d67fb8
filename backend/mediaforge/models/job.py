"""
Job Model
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Boolean, Column, Integer, String, Text, JSON, DateTime, Index
from typing import Any, Dict, List

from mediaforge.models import Base


class JobStatus(str, Enum):
    """Job lifecycle states"""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class JobKind(str, Enum):
    """Which sub-pipeline the worker runs for a job"""

    SINGLE = "single"
    STORY = "story"


class JobModel(Base):
    """
    Job - one generation request and its mutable lifecycle record

    Single-shot and story jobs share this table; ``kind`` selects the
    variant and the story-only columns stay null for single-shot jobs.
    """

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)

    # Public job identifier
    job_id = Column(String, unique=True, nullable=False, index=True)
    kind = Column(String, nullable=False, default=JobKind.SINGLE.value)

    # Owner
    user_id = Column(String, nullable=False, index=True)

    # Source media
    source_url = Column(String, nullable=False)
    source_public_id = Column(String, nullable=True)
    source_media_type = Column(String, nullable=False, default="image")  # "image" or "video"

    # Directive
    directive = Column(Text, nullable=False)
    negative_directive = Column(Text, nullable=True)
    model = Column(String, nullable=True)
    preset_key = Column(String, nullable=True)
    params = Column(JSON, nullable=False)  # {"strength": .., "steps": .., "guidance_scale": ..}

    # Lifecycle
    status = Column(String, nullable=False, index=True)
    progress = Column(Integer, nullable=False, default=0)
    result_ref = Column(String, nullable=True)
    result_public_id = Column(String, nullable=True)
    provider_job_id = Column(String, nullable=True, index=True)
    provider_persisted = Column(Boolean, nullable=False, default=False)
    persist_token = Column(String, nullable=True)
    persist_claimed_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)
    error_code = Column(String, nullable=True)

    # Sharing
    visibility = Column(String, nullable=False, default="private")
    allow_remix = Column(Boolean, nullable=False, default=False)

    # Story-only fields
    shot_list = Column(JSON, nullable=True)  # [{"name": "...", "add": "..."}]
    fps = Column(Integer, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)

    # State transitions
    state_transitions = Column(JSON, nullable=False)  # [{"state": "queued", "timestamp": "...", "event": "job_created"}]

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)

    # Indexes
    __table_args__ = (
        Index("idx_jobs_status_created", "status", "created_at"),
        Index("idx_jobs_user_created", "user_id", "created_at"),
    )

    @property
    def is_story(self) -> bool:
        return self.kind == JobKind.STORY.value

    @property
    def result_media_type(self) -> str:
        """Media type expected from the job before its artifact is known"""
        if self.is_story:
            return "video"
        return self.source_media_type or "image"

    def story_shots(self) -> List[Dict[str, Any]]:
        return list(self.shot_list or [])

    @staticmethod
    def generate_job_id() -> str:
        """Generate a unique job ID"""
        return str(uuid.uuid4())
