import logging
import math
from datetime import datetime

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.models.base import as_utc
from app.models.task import BIDDABLE_STATUSES, Budget, RequiredSkill, Task
from app.models.user import SkillLevel, User
from app.services.auth import get_current_user
from app.services.rate_limit import limit_route
from app.services.task_jobs import schedule_task_jobs
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

router = APIRouter()

COMPLETION_KARMA = 3


def _get_task(task_id: str) -> Task:
    task: Task | None = Task.objects(id=task_id).first() if ObjectId.is_valid(task_id) else None
    if not task:
        raise AppError(ErrorKind.NOT_FOUND, "Task not found")
    return task


def _require_poster(task: Task, user: User) -> None:
    if not task.is_poster(user):
        raise AppError(ErrorKind.FORBIDDEN, "Only the task owner can do this")


def _require_assignee(task: Task, user: User) -> None:
    if not task.is_assignee(user):
        raise AppError(ErrorKind.FORBIDDEN, "Only the assigned student can do this")


def _page(queryset, page: int, limit: int) -> dict:
    total = queryset.count()
    items = queryset.skip((page - 1) * limit).limit(limit)
    return {
        "tasks": [t.to_output() for t in items],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if total else 0},
    }


class RequiredSkillBody(BaseModel):
    name: str = Field(min_length=1)
    level: str = SkillLevel.BEGINNER.value


class BudgetBody(BaseModel):
    amount: float
    currency: str = "INR"
    type: str = "Fixed"


class CreateTaskBody(BaseModel):
    title: str
    description: str
    category: str
    skills_required: list[RequiredSkillBody] = []
    budget: BudgetBody
    deadline: datetime
    estimated_hours: int | None = None
    priority: str = "Medium"


@router.post("/")
def create_task(body: CreateTaskBody, current_user: User = Depends(limit_route(5, 3600))) -> dict:
    """PROTECTED: Post a task. Five per hour per user."""
    task = Task(
        title=body.title.strip(),
        description=body.description.strip(),
        category=body.category,
        skills_required=[RequiredSkill(name=s.name.strip(), level=s.level) for s in body.skills_required],
        budget=Budget(amount=body.budget.amount, currency=body.budget.currency, type=body.budget.type),
        deadline=as_utc(body.deadline),
        estimated_hours=body.estimated_hours,
        priority=body.priority,
        posted_by=current_user,
    )
    task.save()

    current_user.tasks_posted = int(current_user.tasks_posted or 0) + 1
    current_user.save()
    schedule_task_jobs(task)
    logger.info("Task %s posted by %s", task.id, current_user.email)
    return {"success": True, "message": "Task created successfully", "task": task.to_output()}


@router.get("/")
def list_tasks(
    status: str | None = None,
    category: str | None = None,
    min_budget: float | None = None,
    max_budget: float | None = None,
    skill: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
) -> dict:
    """PUBLIC: Browse tasks, open ones by default, newest first."""
    filters: dict = {}
    if status:
        filters["status"] = status
    else:
        filters["status__in"] = list(BIDDABLE_STATUSES)
    if category:
        filters["category"] = category
    if min_budget is not None:
        filters["budget__amount__gte"] = min_budget
    if max_budget is not None:
        filters["budget__amount__lte"] = max_budget
    if skill:
        filters["skills_required__name__iexact"] = skill

    queryset = Task.objects(**filters).order_by("-created_at")
    return {"success": True, **_page(queryset, page, limit)}


@router.get("/my/created")
def my_created_tasks(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
) -> dict:
    queryset = Task.objects(posted_by=current_user).order_by("-created_at")
    return {"success": True, **_page(queryset, page, limit)}


@router.get("/my/assigned")
def my_assigned_tasks(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
) -> dict:
    queryset = Task.objects(assigned_to=current_user).order_by("-created_at")
    return {"success": True, **_page(queryset, page, limit)}


@router.get("/{task_id}")
def get_task(task_id: str) -> dict:
    task = _get_task(task_id)
    task.update(inc__views=1)
    task.views = int(task.views or 0) + 1
    return {"success": True, "task": task.to_output()}


class BidBody(BaseModel):
    amount: float = Field(gt=0)
    message: str | None = Field(default=None, max_length=500)
    delivery_time: int = Field(ge=1)


@router.post("/{task_id}/bids")
def place_bid(task_id: str, body: BidBody, current_user: User = Depends(get_current_user)) -> dict:
    task = _get_task(task_id)
    bid = task.add_bid(current_user, body.amount, body.message, body.delivery_time)
    logger.info("Bid %s placed on task %s by %s", bid.id, task.id, current_user.email)
    return {"success": True, "message": "Bid placed successfully", "bid": bid.to_output(), "task": task.to_output()}


@router.post("/{task_id}/bids/{bid_id}/withdraw")
def withdraw_bid(task_id: str, bid_id: str, current_user: User = Depends(get_current_user)) -> dict:
    task = _get_task(task_id)
    task.withdraw_bid(bid_id, current_user)
    return {"success": True, "message": "Bid withdrawn", "task": task.to_output()}


@router.post("/{task_id}/bids/{bid_id}/accept")
def accept_bid(task_id: str, bid_id: str, current_user: User = Depends(get_current_user)) -> dict:
    task = _get_task(task_id)
    _require_poster(task, current_user)
    task.accept_bid(bid_id)
    logger.info("Bid %s accepted on task %s", bid_id, task.id)
    return {"success": True, "message": "Bid accepted", "task": task.to_output()}


@router.post("/{task_id}/start")
def start_task(task_id: str, current_user: User = Depends(get_current_user)) -> dict:
    task = _get_task(task_id)
    task.start_work(current_user)
    return {"success": True, "message": "Work started", "task": task.to_output()}


class DeliverableBody(BaseModel):
    filename: str = Field(min_length=1)
    url: str = Field(min_length=1)
    original_name: str | None = None
    file_type: str | None = None
    file_size: int | None = Field(default=None, ge=0)


class SubmitBody(BaseModel):
    deliverables: list[DeliverableBody] = Field(min_length=1)


@router.post("/{task_id}/submit")
def submit_task(task_id: str, body: SubmitBody, current_user: User = Depends(get_current_user)) -> dict:
    task = _get_task(task_id)
    _require_assignee(task, current_user)
    task.submit_work([d.model_dump() for d in body.deliverables], current_user)
    return {"success": True, "message": "Work submitted for review", "task": task.to_output()}


class CompleteBody(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=1000)


@router.post("/{task_id}/complete")
def complete_task(task_id: str, body: CompleteBody, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Poster approves the work; escrow is released to the worker."""
    task = _get_task(task_id)
    _require_poster(task, current_user)
    task.complete_task(body.rating, body.comment)

    amount = float(task.escrow.amount or 0)
    worker: User = task.assigned_to
    worker.tasks_completed = int(worker.tasks_completed or 0) + 1
    worker.total_earnings = float(worker.total_earnings or 0) + amount
    worker.update_karma_score(COMPLETION_KARMA, f"Task completed: {task.title}", save=False)
    worker.save()

    current_user.total_spent = float(current_user.total_spent or 0) + amount
    current_user.save()
    return {"success": True, "message": "Task completed", "task": task.to_output()}


@router.post("/{task_id}/cancel")
def cancel_task(task_id: str, current_user: User = Depends(get_current_user)) -> dict:
    task = _get_task(task_id)
    _require_poster(task, current_user)
    task.cancel_task()
    return {"success": True, "message": "Task cancelled", "task": task.to_output()}


@router.post("/{task_id}/dispute")
def dispute_task(task_id: str, current_user: User = Depends(get_current_user)) -> dict:
    task = _get_task(task_id)
    if not (task.is_poster(current_user) or task.is_assignee(current_user)):
        raise AppError(ErrorKind.FORBIDDEN, "Only the task owner or assignee can raise a dispute")
    task.raise_dispute()
    logger.warning("Dispute raised on task %s by %s", task.id, current_user.email)
    return {"success": True, "message": "Dispute raised", "task": task.to_output()}
