import math
import re

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.models.user import SkillLevel, User
from app.services.auth import get_current_user
from app.services.rate_limit import limit_route
from app.services.skills import QUIZ_QUESTION_COUNT, refresh_skill_stats, start_quiz, submit_quiz
from app.utils.errors import AppError, ErrorKind


router = APIRouter()


@router.get("/profile")
def get_profile(current_user: User = Depends(get_current_user)) -> dict:
    return {"success": True, "user": current_user.to_output()}


class UpdateProfileBody(BaseModel):
    name: str | None = None
    bio: str | None = None
    year: str | None = None
    course: str | None = None
    profile_image: str | None = None
    city: str | None = None
    state: str | None = None


@router.put("/profile")
def update_profile(body: UpdateProfileBody, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Update editable profile fields; email, college and karma are not editable."""
    changes = body.model_dump(exclude_unset=True)
    for field in ("city", "state"):
        if field in changes:
            setattr(current_user.college, field, changes.pop(field))
    for field, value in changes.items():
        setattr(current_user, field, value)
    current_user.save()
    return {"success": True, "message": "Profile updated", "user": current_user.to_output()}


@router.get("/search")
def search_users(
    q: str | None = Query(None, min_length=2, max_length=50),
    college: str | None = Query(None, min_length=2, max_length=100),
    skills: list[str] = Query(default=[]),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(limit_route(100, 900)),
) -> dict:
    """PROTECTED: Find verified students by name, skill or college. The caller is left out."""
    filters = {"is_verified": True, "is_active": True, "id__ne": current_user.id}
    if college:
        filters["college__name__icontains"] = college.strip()
    if skills:
        filters["skills__name__in"] = skills
    queryset = User.objects(**filters)
    if q:
        pattern = re.compile(re.escape(q.strip()), re.IGNORECASE)
        queryset = queryset.filter(__raw__={"$or": [{"name": pattern}, {"skills.name": pattern}]})

    total = queryset.count()
    users = queryset.order_by("-karma_score").skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "users": [user.to_public() for user in users],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if total else 0},
    }


@router.get("/{user_id}/public")
def public_profile(user_id: str) -> dict:
    """PUBLIC: Profile without contact or account details."""
    user: User | None = User.objects(id=user_id, is_active=True).first() if ObjectId.is_valid(user_id) else None
    if not user:
        raise AppError(ErrorKind.NOT_FOUND, "User not found")
    return {"success": True, "user": user.to_public()}


class SkillBody(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    category: str
    level: str = SkillLevel.BEGINNER.value


@router.post("/skills")
def add_skill(body: SkillBody, current_user: User = Depends(get_current_user)) -> dict:
    skill = current_user.add_skill(body.name, body.category, body.level)
    refresh_skill_stats(skill.name)
    return {"success": True, "message": "Skill added", "skill": skill.to_output()}


@router.delete("/skills/{name}")
def remove_skill(name: str, current_user: User = Depends(get_current_user)) -> dict:
    current_user.remove_skill(name)
    refresh_skill_stats(name)
    return {"success": True, "message": "Skill removed"}


@router.post("/skills/{name}/quiz")
def start_skill_quiz(
    name: str,
    question_count: int = Query(QUIZ_QUESTION_COUNT, ge=1, le=20),
    current_user: User = Depends(get_current_user),
) -> dict:
    """PROTECTED: Issue a verification quiz for one of the caller's skills. Answers are never sent."""
    quiz = start_quiz(current_user, name, question_count)
    return {"success": True, **quiz}


class QuizAnswerBody(BaseModel):
    question_id: str
    selected_option: str | None = None
    text_answer: str | None = None


class VerifySkillBody(BaseModel):
    answers: list[QuizAnswerBody]


@router.post("/skills/{name}/verify")
def verify_skill(name: str, body: VerifySkillBody, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Submit answers to the issued quiz; a score of 70 or more verifies the skill."""
    skill, result = submit_quiz(current_user, name, [answer.model_dump() for answer in body.answers])
    return {
        "success": True,
        "verified": skill.verified,
        "skill": skill.to_output(),
        "karma_score": current_user.karma_score,
        **result,
    }
