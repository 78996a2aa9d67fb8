"""
RQ task definitions for the job worker and the recovery sweep.
"""

import asyncio
from typing import Any, Dict

from mediaforge.core.provider_adapter import ProviderAdapter
from mediaforge.models import session_scope
from mediaforge.services.job_worker import JobWorker
from mediaforge.services.media_storage import DurableStorage
from mediaforge.services.observability import logger
from mediaforge.services.worker_dispatch import WorkerDispatcher


async def _process(job_id: str) -> Dict[str, Any]:
    provider = ProviderAdapter()
    storage = DurableStorage()
    try:
        with session_scope() as db:
            outcome = await JobWorker(provider=provider, storage=storage).process(db, job_id)
        return outcome.model_dump()
    finally:
        await provider.close()
        await storage.downloader.close()


def run_worker_job(job_id: str) -> Dict[str, Any]:
    logger.info("worker_task_start", job_id=job_id)
    try:
        return asyncio.run(_process(job_id))
    except Exception as exc:
        logger.error("worker_task_failed", job_id=job_id, error=str(exc))
        raise


async def _sweep() -> int:
    with session_scope() as db:
        return await WorkerDispatcher(mode="rq").sweep(db)


def sweep_stale_jobs() -> int:
    """Re-enqueue jobs stranded in queued; schedule periodically"""
    return asyncio.run(_sweep())
