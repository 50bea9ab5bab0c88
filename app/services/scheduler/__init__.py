from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from rq import Queue
from rq_scheduler import Scheduler
from redis import Redis

from app.utils.config import settings


DEFAULT_QUEUE = "campuskarma"

_job_connection: Redis | None = None


def _redis_conn() -> Redis:
    # rq stores pickled payloads, so its client must not decode responses
    global _job_connection
    if _job_connection is None:
        _job_connection = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
        )
    return _job_connection


def get_scheduler(queue_name: str = DEFAULT_QUEUE) -> Scheduler:
    return Scheduler(queue_name=queue_name, connection=_redis_conn())


def get_queue(name: str = DEFAULT_QUEUE) -> Queue:
    return Queue(name=name, connection=_redis_conn())


def schedule_at(run_at: datetime, func: Callable, *args, job_id: str | None = None, **kwargs) -> None:
    sched = get_scheduler()
    if run_at.tzinfo is None:
        run_at = run_at.replace(tzinfo=timezone.utc)
    if job_id:
        # Rescheduling replaces the pending run instead of stacking another
        sched.cancel(job_id)
        kwargs["job_id"] = job_id
    sched.enqueue_at(run_at, func, *args, **kwargs)
