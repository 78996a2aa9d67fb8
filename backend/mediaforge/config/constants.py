"""
Application Constants Configuration
"""

from typing import Dict, List


# Asset visibility
VISIBILITY_OPTIONS: List[str] = ["public", "private"]

# Error strings stored on a job are truncated to this length
MAX_ERROR_LENGTH: int = 2000

# A persist claim older than this is considered abandoned and may be re-claimed
PERSIST_CLAIM_LEASE_S: int = 600

# Provider request defaults
DEFAULT_VIDEO_MODEL: str = "flux/dev/video-to-video"
DEFAULT_IMAGE_MODEL: str = "flux/dev/image-to-image"
DEFAULT_DIRECTIVE: str = "stylize"
DEFAULT_STRENGTH: float = 0.85
DEFAULT_STEPS: int = 36
DEFAULT_GUIDANCE_SCALE: float = 7.5

# Provider status vocabularies
PROVIDER_SUCCESS_STATES: List[str] = ["succeeded", "success", "completed", "done", "finished"]
PROVIDER_FAILURE_STATES: List[str] = ["failed", "error", "canceled", "cancelled"]

# Webhook state vocabulary -> job status vocabulary
WEBHOOK_STATE_MAP: Dict[str, str] = {
    "completed": "completed",
    "succeeded": "completed",
    "success": "completed",
    "done": "completed",
    "failed": "failed",
    "error": "failed",
    "canceled": "failed",
    "cancelled": "failed",
    "processing": "processing",
    "running": "processing",
    "in_progress": "processing",
    "queued": "queued",
    "pending": "queued",
}

# Progress marks
PROGRESS_CLAIMED: int = 1
PROGRESS_POLL_CEILING: int = 95
PROGRESS_SHOTS_CEILING: int = 80
PROGRESS_STITCHED: int = 90

# Story defaults
STORY_DEFAULT_FPS: int = 24
STORY_DEFAULT_WIDTH: int = 720
STORY_DEFAULT_HEIGHT: int = 1280
STORY_SHOT_DURATION_S: float = 2.6
STORY_FADE_DURATION_S: float = 0.4
STORY_ZOOM_STEP: float = 0.0015
STORY_ZOOM_MAX: float = 1.08
STORY_MAX_SHOTS: int = 8

STORY_DEFAULT_SHOT_LIST: List[Dict[str, str]] = [
    {"name": "establishing", "add": "wide establishing shot, subject small in frame"},
    {"name": "approach", "add": "medium shot, subject turning toward camera"},
    {"name": "detail", "add": "close-up on hands and face, shallow depth of field"},
    {"name": "finale", "add": "hero shot, low angle, dramatic sky"},
]

# Boilerplate appended to every story shot
STORY_QUALITY_BOOST: str = (
    "maximize micro-contrast and fine detail; razor-sharp edges; crisp textures; "
    "strictly no halos or oversharpening artifacts; preserve natural skin texture"
)
STORY_CONSISTENCY_LOCK: str = (
    "same subject, same clothing and gear, same identity, "
    "consistent lighting and color grade across shots"
)
STORY_NEGATIVE_DRIFT: str = (
    "extra people, different subject, face swap, body swap, duplicated limbs, text, watermark"
)

# Video file extensions treated as video sources
VIDEO_EXTENSIONS: List[str] = ["mp4", "mov", "m4v", "webm"]

# FFmpeg Configuration
FFMPEG_VIDEO_CODEC: str = "libx264"
FFMPEG_PIXEL_FORMAT: str = "yuv420p"
FFMPEG_PROFILE: str = "high"
FFMPEG_LEVEL: str = "4.1"
