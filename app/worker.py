from __future__ import annotations

import logging

from rq import Worker

from app.connections.mongo import init_mongo, close_mongo
from app.connections.redis import init_redis, close_redis
from app.services.scheduler import DEFAULT_QUEUE, get_queue
from app.services.task_jobs import reconcile_open_tasks
from app.utils.logging import configure_logging


logger = logging.getLogger(__name__)


def main() -> None:
    """Run an rq worker for background jobs and emails, rescheduling open tasks first."""
    configure_logging()
    init_mongo()
    init_redis()
    try:
        scheduled = reconcile_open_tasks()
        logger.info("Rescheduled urgency refresh for %d open tasks", scheduled)
        queues = [get_queue(DEFAULT_QUEUE), get_queue("emails")]
        Worker(queues, connection=queues[0].connection).work(with_scheduler=False)
    finally:
        close_redis()
        close_mongo()


if __name__ == "__main__":
    main()
