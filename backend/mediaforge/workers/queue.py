"""
RQ queue and worker process for MediaForge jobs.

Run a worker with ``python -m mediaforge.workers.queue``.
"""

from typing import Optional

import redis
from rq import Queue, Worker

from mediaforge.config.settings import settings
from mediaforge.services.observability import logger


_connection: Optional[redis.Redis] = None


def get_redis_connection() -> redis.Redis:
    global _connection
    if _connection is None:
        _connection = redis.from_url(settings.redis_url)
    return _connection


def get_queue(name: Optional[str] = None) -> Queue:
    return Queue(name or settings.rq_queue_name, connection=get_redis_connection())


def main(burst: bool = False) -> None:
    """Consume the job queue until stopped (or until empty with ``burst``)"""
    queue = get_queue()
    logger.info("rq_worker_start", queue=queue.name, burst=burst)
    Worker([queue], connection=get_redis_connection()).work(burst=burst)


if __name__ == "__main__":
    main()
