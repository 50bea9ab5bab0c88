import logging

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.models.review import FlagReason, Review, ReviewCriteria, ReviewStatus, ReviewType, VoteType
from app.models.task import Task, TaskStatus
from app.models.user import User
from app.services.auth import get_current_user
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

router = APIRouter()

REVIEW_KARMA = 2


def _get_review(review_id: str) -> Review:
    review: Review | None = Review.objects(id=review_id).first() if ObjectId.is_valid(review_id) else None
    if not review:
        raise AppError(ErrorKind.NOT_FOUND, "Review not found")
    return review


def refresh_review_stats(user: User, rating: int) -> None:
    """Copy the user's review aggregate onto the profile and apply rating karma."""
    summary = Review.average_rating_for_user(user.id)
    user.average_rating = summary["average_rating"]
    user.review_count = summary["total_reviews"]
    if rating >= 4:
        user.update_karma_score(REVIEW_KARMA, f"{rating}-star review", save=False)
    elif rating <= 2:
        user.update_karma_score(-REVIEW_KARMA, f"{rating}-star review", save=False)
    user.save()


class CriteriaBody(BaseModel):
    communication: int | None = Field(default=None, ge=1, le=5)
    quality: int | None = Field(default=None, ge=1, le=5)
    timeliness: int | None = Field(default=None, ge=1, le=5)
    professionalism: int | None = Field(default=None, ge=1, le=5)


class CreateReviewBody(BaseModel):
    task_id: str
    rating: int = Field(ge=1, le=5)
    comment: str
    criteria: CriteriaBody | None = None


@router.post("/")
def create_review(body: CreateReviewBody, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Review the other party of a completed task."""
    task: Task | None = Task.objects(id=body.task_id).first() if ObjectId.is_valid(body.task_id) else None
    if not task:
        raise AppError(ErrorKind.NOT_FOUND, "Task not found")
    if task.status != TaskStatus.COMPLETED.value:
        raise AppError(ErrorKind.INVALID_TRANSITION, "Only completed tasks can be reviewed", status=task.status)

    if task.is_poster(current_user):
        review_type, reviewed_user = ReviewType.CLIENT_TO_WORKER.value, task.assigned_to
    elif task.is_assignee(current_user):
        review_type, reviewed_user = ReviewType.WORKER_TO_CLIENT.value, task.posted_by
    else:
        raise AppError(ErrorKind.FORBIDDEN, "Only participants of this task can review it")

    if Review.objects(task=task, reviewer=current_user, review_type=review_type).first():
        raise AppError(ErrorKind.CONFLICT, "You have already reviewed this task")

    review = Review(
        task=task,
        reviewer=current_user,
        reviewed_user=reviewed_user,
        rating=body.rating,
        comment=body.comment.strip(),
        review_type=review_type,
        criteria=ReviewCriteria(**body.criteria.model_dump()) if body.criteria else None,
    )
    review.save()

    refresh_review_stats(reviewed_user, body.rating)
    logger.info("Review %s left on task %s by %s", review.id, task.id, current_user.email)
    return {"success": True, "message": "Review submitted", "review": review.to_output()}


@router.get("/users/{user_id}")
def user_reviews(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
) -> dict:
    """PUBLIC: A user's visible reviews with their rating summary."""
    if not ObjectId.is_valid(user_id) or not User.objects(id=user_id).first():
        raise AppError(ErrorKind.NOT_FOUND, "User not found")

    queryset = Review.objects(reviewed_user=user_id, status=ReviewStatus.ACTIVE.value).order_by("-created_at")
    reviews = queryset.skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "reviews": [r.to_output() for r in reviews],
        "summary": Review.average_rating_for_user(user_id),
        "criteria": Review.criteria_averages_for_user(user_id),
        "pagination": {"page": page, "limit": limit, "total": queryset.count()},
    }


class VoteBody(BaseModel):
    vote: str = Field(pattern="^(" + "|".join(VoteType.values()) + ")$")


@router.post("/{review_id}/vote")
def vote_review(review_id: str, body: VoteBody, current_user: User = Depends(get_current_user)) -> dict:
    review = _get_review(review_id)
    if str(review.reviewer.id) == str(current_user.id):
        raise AppError(ErrorKind.FORBIDDEN, "Cannot vote on your own review")
    review.add_helpful_vote(current_user, body.vote)
    return {"success": True, "helpful_votes": review.helpful_votes}


class FlagBody(BaseModel):
    reason: str = Field(pattern="^(" + "|".join(FlagReason.values()) + ")$")


@router.post("/{review_id}/flag")
def flag_review(review_id: str, body: FlagBody, current_user: User = Depends(get_current_user)) -> dict:
    review = _get_review(review_id)
    review.flag_review(body.reason, current_user)
    if review.status == ReviewStatus.FLAGGED.value:
        logger.warning("Review %s flagged %d times and hidden", review.id, len(review.flags))
    return {"success": True, "message": "Review flagged", "status": review.status}


class ResponseBody(BaseModel):
    comment: str = Field(min_length=1, max_length=500)


@router.post("/{review_id}/response")
def respond_to_review(review_id: str, body: ResponseBody, current_user: User = Depends(get_current_user)) -> dict:
    review = _get_review(review_id)
    if str(review.reviewed_user.id) != str(current_user.id):
        raise AppError(ErrorKind.FORBIDDEN, "Only the reviewed user can respond")
    if review.response:
        raise AppError(ErrorKind.CONFLICT, "You have already responded to this review")
    review.add_response(body.comment.strip())
    return {"success": True, "review": review.to_output()}
