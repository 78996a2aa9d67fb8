"""
Asset Model
"""

import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, Integer, String, JSON, DateTime, UniqueConstraint

from mediaforge.models import Base


class AssetModel(Base):
    """
    Asset - browsable record of a persisted job result

    At most one row per source job; the unique constraint backs the
    persist claim on the job row.
    """

    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(String, unique=True, nullable=False, index=True)

    owner_user_id = Column(String, nullable=False, index=True)
    source_job_id = Column(String, nullable=False)

    media_url = Column(String, nullable=False)
    public_id = Column(String, nullable=True)
    media_type = Column(String, nullable=False)  # "image" or "video"

    visibility = Column(String, nullable=False, default="private")
    allow_remix = Column(Boolean, nullable=False, default=False)

    # Original directive, provider job id, dimensions, duration
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("source_job_id", name="uq_assets_source_job_id"),
    )

    @staticmethod
    def generate_asset_id() -> str:
        return str(uuid.uuid4())
