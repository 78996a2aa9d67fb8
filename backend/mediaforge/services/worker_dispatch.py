"""
Worker Dispatch - Fire-and-forget hand-off of queued jobs to the worker
"""

import asyncio
from typing import Callable, Optional, Set

import httpx
from rq import Queue
from sqlalchemy.orm import Session

from mediaforge.config.settings import settings
from mediaforge.services.observability import logger, log_dispatch_failure
from mediaforge.services.storage import JobDB
from mediaforge.workers.queue import get_queue


WORKER_TASK = "mediaforge.workers.tasks.run_worker_job"


class WorkerDispatcher:
    """
    Start the worker for a job without waiting for it

    "rq" mode enqueues the worker task on Redis; "http" mode POSTs the job
    id to the internal worker endpoint from a background task. A dispatch
    that fails is logged and dropped; the job stays queued until the
    recovery sweep picks it up.
    """

    def __init__(
        self,
        mode: Optional[str] = None,
        queue_factory: Callable[[], Queue] = get_queue,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.mode = mode or settings.worker_dispatch_mode
        self.queue_factory = queue_factory
        self.client = client
        self._pending: Set[asyncio.Task] = set()

    async def dispatch(self, job_id: str) -> bool:
        """
        Trigger the worker for ``job_id``

        Returns:
            True if the trigger was started, False if starting it failed
        """
        try:
            if self.mode == "rq":
                await asyncio.to_thread(self._enqueue, job_id)
            else:
                task = asyncio.create_task(self._post(job_id))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            return True
        except Exception as e:
            log_dispatch_failure(job_id, self.mode, str(e))
            return False

    def _enqueue(self, job_id: str) -> None:
        queue = self.queue_factory()
        rq_job = queue.enqueue(
            WORKER_TASK,
            job_id,
            job_timeout=settings.worker_job_timeout_s,
        )
        logger.info("worker_enqueued", job_id=job_id, rq_job_id=rq_job.id, queue=queue.name)

    async def _post(self, job_id: str) -> None:
        client = self.client or httpx.AsyncClient(timeout=10.0)
        try:
            await client.post(
                settings.worker_url,
                json={"job_id": job_id},
                headers={"X-Internal": settings.internal_worker_token},
            )
            logger.info("worker_triggered", job_id=job_id, worker_url=settings.worker_url)
        except httpx.TimeoutException:
            # The worker keeps running server-side; only the response is lost
            logger.info("worker_trigger_detached", job_id=job_id)
        except httpx.HTTPError as e:
            log_dispatch_failure(job_id, self.mode, str(e))
        finally:
            if self.client is None:
                await client.aclose()

    async def wait_pending(self) -> None:
        """Wait for in-flight http triggers"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def sweep(self, db: Session, older_than_s: Optional[int] = None, limit: int = 100) -> int:
        """
        Re-dispatch jobs that are still queued after ``older_than_s`` seconds

        Returns:
            Number of jobs re-dispatched
        """
        older_than_s = settings.stale_queued_after_s if older_than_s is None else older_than_s
        stale = JobDB.list_stale_queued(db, older_than_s, limit=limit)
        dispatched = 0
        for job in stale:
            if await self.dispatch(job.job_id):
                dispatched += 1
        logger.info("stale_jobs_swept", found=len(stale), dispatched=dispatched)
        return dispatched
