import json
import logging

from app.models.skill import SkillDefinition
from app.models.user import SKILL_MAX_ATTEMPTS, Skill, User
from app.services.cache import cache_pop, cache_set
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

QUIZ_TTL_SECONDS = 30 * 60
QUIZ_QUESTION_COUNT = 5


def _quiz_key(user: User, skill_name: str) -> str:
    return f"quiz:{user.id}:{skill_name.strip().lower()}"


def _definition_for(skill_name: str) -> SkillDefinition:
    definition = SkillDefinition.find_by_name(skill_name)
    if not definition or not definition.quiz:
        raise AppError(ErrorKind.NOT_FOUND, f"No verification quiz available for '{skill_name}'")
    return definition


def refresh_skill_stats(skill_name: str) -> None:
    definition = SkillDefinition.find_by_name(skill_name)
    if definition:
        definition.refresh_stats()


def start_quiz(user: User, skill_name: str, question_count: int = QUIZ_QUESTION_COUNT) -> dict:
    """Issue a quiz for one of the user's unverified skills.

    The issued question ids are kept server side; a later submission is
    scored against exactly these questions.
    """
    skill = user.find_skill(skill_name)
    if not skill:
        raise AppError(ErrorKind.NOT_FOUND, f"Skill '{skill_name}' not found")
    if skill.verified:
        raise AppError(ErrorKind.CONFLICT, f"Skill '{skill.name}' is already verified")
    if skill.attempts >= SKILL_MAX_ATTEMPTS:
        raise AppError(ErrorKind.RATE_LIMITED, "Maximum verification attempts reached for this skill")

    definition = _definition_for(skill.name)
    questions = definition.generate_quiz(question_count)
    cache_set(_quiz_key(user, skill.name), json.dumps([str(q.id) for q in questions]), QUIZ_TTL_SECONDS)
    logger.info("Quiz issued for %s: %s (%d questions)", user.email, definition.name, len(questions))
    return {
        "skill": definition.name,
        "questions": [q.to_public() for q in questions],
        "expires_in": QUIZ_TTL_SECONDS,
    }


def submit_quiz(user: User, skill_name: str, answers: list[dict]) -> tuple[Skill, dict]:
    """Score the pending quiz and record the attempt on the user's skill."""
    issued = cache_pop(_quiz_key(user, skill_name))
    if not issued:
        raise AppError(ErrorKind.INVALID_TRANSITION, "No active quiz for this skill. Start a quiz first.")

    definition = _definition_for(skill_name)
    result = definition.evaluate_quiz(json.loads(issued), answers)
    skill = user.verify_skill(skill_name, result["score"])
    definition.refresh_stats()
    logger.info("Quiz submitted by %s for %s: %d%%", user.email, definition.name, result["score"])
    return skill, result
