"""
Test Fixtures Package
"""

from .sample_data import (
    SAMPLE_PNG_BYTES,
    SAMPLE_MP4_BYTES,
    SAMPLE_JOB_REQUEST,
    SAMPLE_SHOT_LIST,
    SAMPLE_STORY_REQUEST,
    SAMPLE_PROVIDER_SUBMIT,
    SAMPLE_PROVIDER_SYNC,
    SAMPLE_PROVIDER_RUNNING,
    SAMPLE_PROVIDER_DONE,
    SAMPLE_PROVIDER_FAILED,
    SAMPLE_WEBHOOK_COMPLETED,
    SAMPLE_WEBHOOK_FAILED,
    get_sample_job_request,
    get_sample_story_request,
    get_sample_webhook,
)

__all__ = [
    'SAMPLE_PNG_BYTES',
    'SAMPLE_MP4_BYTES',
    'SAMPLE_JOB_REQUEST',
    'SAMPLE_SHOT_LIST',
    'SAMPLE_STORY_REQUEST',
    'SAMPLE_PROVIDER_SUBMIT',
    'SAMPLE_PROVIDER_SYNC',
    'SAMPLE_PROVIDER_RUNNING',
    'SAMPLE_PROVIDER_DONE',
    'SAMPLE_PROVIDER_FAILED',
    'SAMPLE_WEBHOOK_COMPLETED',
    'SAMPLE_WEBHOOK_FAILED',
    'get_sample_job_request',
    'get_sample_story_request',
    'get_sample_webhook',
]
