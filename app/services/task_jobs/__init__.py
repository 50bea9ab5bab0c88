import logging

from app.models.base import as_utc, utcnow
from app.models.task import BIDDABLE_STATUSES, URGENT_WINDOW, Task
from app.services.scheduler import schedule_at


logger = logging.getLogger(__name__)


def refresh_task_urgency(task_id: str) -> None:
    """Re-save a still-open task so its is_urgent flag reflects the clock."""
    task: Task | None = Task.objects(id=task_id).first()
    if not task or task.status not in BIDDABLE_STATUSES:
        return
    task.save()
    logger.info("Task %s urgency refreshed (is_urgent=%s)", task_id, task.is_urgent)


def schedule_task_jobs(task: Task) -> None:
    run_at = as_utc(task.deadline) - URGENT_WINDOW
    if run_at <= utcnow():
        return
    schedule_at(run_at, refresh_task_urgency, str(task.id), job_id=f"task-urgency:{task.id}")


def reconcile_open_tasks() -> int:
    """Schedule urgency refreshes for every open task; run once at worker start."""
    count = 0
    now = utcnow()
    tasks: list[Task] = Task.objects(status__in=list(BIDDABLE_STATUSES), deadline__gt=now)
    for task in tasks:
        schedule_task_jobs(task)
        count += 1
    return count
