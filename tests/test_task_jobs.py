from datetime import timedelta
from unittest import TestCase

from app.models.base import as_utc, utcnow
from app.models.task import Task
from app.services import task_jobs
from tests.factories import make_task, make_user


class TaskJobsTest(TestCase):
    def setUp(self):
        self.poster = make_user("poster@vce.ac.in")

    def test_schedules_refresh_a_day_before_deadline(self):
        task = make_task(self.poster)
        task_jobs.schedule_task_jobs(task)

        run_at, func, task_id = task_jobs.schedule_at.call_args.args
        self.assertEqual(func, task_jobs.refresh_task_urgency)
        self.assertEqual(task_id, str(task.id))
        self.assertEqual(run_at, as_utc(task.deadline) - timedelta(hours=24))
        self.assertEqual(task_jobs.schedule_at.call_args.kwargs["job_id"], f"task-urgency:{task.id}")

    def test_already_urgent_task_is_not_scheduled(self):
        task = make_task(self.poster, deadline=utcnow() + timedelta(hours=3))
        task_jobs.schedule_task_jobs(task)
        task_jobs.schedule_at.assert_not_called()

    def test_refresh_marks_task_urgent(self):
        task = make_task(self.poster)
        Task.objects(id=task.id).update(set__deadline=utcnow() + timedelta(hours=2))
        task_jobs.refresh_task_urgency(str(task.id))
        self.assertTrue(Task.objects(id=task.id).first().is_urgent)

    def test_refresh_skips_closed_tasks(self):
        task = make_task(self.poster)
        task.cancel_task()
        Task.objects(id=task.id).update(set__deadline=utcnow() + timedelta(hours=2), set__is_urgent=False)
        task_jobs.refresh_task_urgency(str(task.id))
        self.assertFalse(Task.objects(id=task.id).first().is_urgent)

    def test_reconcile_open_tasks(self):
        make_task(self.poster)
        make_task(self.poster)
        make_task(self.poster).cancel_task()
        self.assertEqual(task_jobs.reconcile_open_tasks(), 2)
        self.assertEqual(task_jobs.schedule_at.call_count, 2)
