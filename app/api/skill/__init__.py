import math
import re

from bson import ObjectId
from fastapi import APIRouter, Depends, Query

from app.models.skill import SkillDefinition
from app.models.user import SkillCategory, User
from app.services.auth import get_current_user
from app.utils.errors import AppError, ErrorKind


router = APIRouter()

SORTS = {
    "name": ("name",),
    "popularity": ("-total_users", "-verified_users"),
    "newest": ("-created_at",),
}


def _user_status(user: User, definition: SkillDefinition) -> dict:
    skill = user.find_skill(definition.name)
    return {
        "is_added": skill is not None,
        "is_verified": bool(skill and skill.verified),
        "level": skill.level if skill else None,
        "attempts": skill.attempts if skill else 0,
    }


@router.get("/")
def list_skills(
    category: str | None = Query(None),
    search: str | None = Query(None, min_length=2, max_length=50),
    sort_by: str = Query("popularity", pattern="^(name|popularity|newest)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
) -> dict:
    """PROTECTED: Skill catalog with the caller's own status on each skill."""
    if category and category not in SkillCategory.values():
        raise AppError(ErrorKind.VALIDATION, "Invalid category", categories=SkillCategory.values())

    queryset = SkillDefinition.objects(is_active=True)
    if category:
        queryset = queryset.filter(category=category)
    if search:
        pattern = re.compile(re.escape(search.strip()), re.IGNORECASE)
        queryset = queryset.filter(__raw__={"$or": [{"name": pattern}, {"description": pattern}, {"tags": pattern}]})

    total = queryset.count()
    skills = queryset.order_by(*SORTS[sort_by]).skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "skills": [dict(s.to_output(), user_status=_user_status(current_user, s)) for s in skills],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if total else 0},
    }


@router.get("/categories")
def skill_categories(current_user: User = Depends(get_current_user)) -> dict:
    rows = SkillDefinition._get_collection().aggregate([
        {"$match": {"is_active": True}},
        {"$group": {"_id": "$category", "count": {"$sum": 1}, "total_users": {"$sum": "$total_users"}}},
    ])
    counts = {row["_id"]: row for row in rows}
    categories = [
        {
            "name": name,
            "count": int(counts[name]["count"]) if name in counts else 0,
            "total_users": int(counts[name]["total_users"]) if name in counts else 0,
        }
        for name in SkillCategory.values()
    ]
    return {"success": True, "categories": categories}


@router.get("/trending")
def trending_skills(limit: int = Query(10, ge=1, le=50), current_user: User = Depends(get_current_user)) -> dict:
    skills = SkillDefinition.objects(is_active=True).order_by("-total_users", "-verified_users").limit(limit)
    return {
        "success": True,
        "skills": [s.to_output(fields=["name", "category", "total_users", "verified_users", "demand_level"]) for s in skills],
    }


@router.get("/{skill_id}")
def get_skill(skill_id: str, current_user: User = Depends(get_current_user)) -> dict:
    definition = SkillDefinition.objects(id=skill_id).first() if ObjectId.is_valid(skill_id) else None
    if not definition:
        raise AppError(ErrorKind.NOT_FOUND, "Skill not found")
    return {"success": True, "skill": dict(definition.to_output(), user_status=_user_status(current_user, definition))}
