import math
import random
import re

from bson import ObjectId
from mongoengine import (
    BooleanField,
    EmbeddedDocumentField,
    FloatField,
    IntField,
    ListField,
    ObjectIdField,
    StringField,
    ValidationError,
)

from app.models.base import BaseDocument, BaseEmbeddedDocument
from app.models.user import SKILL_PASS_SCORE, SkillCategory, SkillLevel, User
from app.utils.base import BaseEnum


# Share of a mixed quiz drawn from each difficulty
QUIZ_MIX = (
    (SkillLevel.BEGINNER.value, 0.4),
    (SkillLevel.INTERMEDIATE.value, 0.3),
    (SkillLevel.ADVANCED.value, 0.2),
    (SkillLevel.EXPERT.value, 0.1),
)


class QuestionType(BaseEnum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class DemandLevel(BaseEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    VERY_HIGH = "Very High"


class QuizOption(BaseEmbeddedDocument):
    text = StringField(required=True, null=False)
    is_correct = BooleanField(required=True, null=False, default=False)


class QuizQuestion(BaseEmbeddedDocument):
    """Embedded: one verification question. Answers never leave the server."""
    id = ObjectIdField(required=True, default=ObjectId)
    question = StringField(required=True, null=False)
    question_type = StringField(
        required=True, null=False, choices=QuestionType.choices(), default=QuestionType.MULTIPLE_CHOICE.value,
    )
    options = ListField(EmbeddedDocumentField(QuizOption), null=False, default=list)
    correct_answer = StringField(required=False, null=True)
    explanation = StringField(required=False, null=True)
    difficulty = StringField(required=True, null=False, choices=SkillLevel.choices(), default=SkillLevel.BEGINNER.value)
    points = IntField(required=True, null=False, default=10, min_value=1, max_value=20)

    def clean(self):
        if self.question_type == QuestionType.SHORT_ANSWER.value:
            if not self.correct_answer:
                raise ValidationError("Short answer questions need a correct_answer")
        elif not any(option.is_correct for option in self.options):
            raise ValidationError("Choice questions need at least one correct option")

    def is_correct(self, answer: dict | None) -> bool:
        if not answer:
            return False
        if self.question_type == QuestionType.SHORT_ANSWER.value:
            given = (answer.get("text_answer") or "").strip().lower()
            return bool(given) and given == (self.correct_answer or "").strip().lower()
        selected = answer.get("selected_option")
        return any(option.text == selected and option.is_correct for option in self.options)

    def to_public(self) -> dict:
        data = {
            "id": str(self.id),
            "question": self.question,
            "question_type": self.question_type,
            "difficulty": self.difficulty,
            "points": self.points,
        }
        if self.question_type != QuestionType.SHORT_ANSWER.value:
            data["options"] = [option.text for option in self.options]
        return data


class SkillDefinition(BaseDocument):
    """Catalog entry for a skill, holding the quiz used to verify it.

    Fields:
    - name (str, unique) and category (SkillCategory)
    - quiz (list[QuizQuestion]): never rendered by to_output
    - total_users / verified_users / average_quiz_score: refreshed from user skills
    - demand_level, tags, is_active
    """
    name = StringField(required=True, null=False, unique=True, min_length=2, max_length=50)
    category = StringField(required=True, null=False, choices=SkillCategory.choices())
    description = StringField(required=False, null=True, max_length=500)
    quiz = ListField(EmbeddedDocumentField(QuizQuestion), null=False, default=list)

    total_users = IntField(required=True, null=False, default=0)
    verified_users = IntField(required=True, null=False, default=0)
    average_quiz_score = FloatField(required=True, null=False, default=0)
    demand_level = StringField(required=True, null=False, choices=DemandLevel.choices(), default=DemandLevel.MEDIUM.value)
    tags = ListField(StringField(), null=False, default=list)
    is_active = BooleanField(required=True, null=False, default=True)

    private_fields = ("quiz", "metadata")

    meta = {
        "collection": "skills",
        "indexes": [
            {"fields": ["category"]},
            {"fields": ["-total_users"]},
            {"fields": ["is_active"]},
        ],
    }

    @classmethod
    def find_by_name(cls, name: str) -> "SkillDefinition | None":
        return cls.objects(name__iexact=name.strip(), is_active=True).first()

    @property
    def verification_rate(self) -> int:
        if not self.total_users:
            return 0
        return round(self.verified_users * 100 / self.total_users)

    def quiz_stats(self) -> dict:
        stats = {level: 0 for level in SkillLevel.values()}
        for question in self.quiz:
            stats[question.difficulty] += 1
        stats["total"] = len(self.quiz)
        return stats

    def get_question(self, question_id) -> QuizQuestion | None:
        for question in self.quiz:
            if str(question.id) == str(question_id):
                return question
        return None

    def generate_quiz(self, question_count: int = 5, difficulty: str | None = None) -> list[QuizQuestion]:
        """Pick questions for one attempt, spread across difficulties unless one is given."""
        if difficulty:
            pool = [q for q in self.quiz if q.difficulty == difficulty]
            return random.sample(pool, min(question_count, len(pool)))

        picked: list[QuizQuestion] = []
        for level, share in QUIZ_MIX:
            pool = [q for q in self.quiz if q.difficulty == level]
            picked.extend(random.sample(pool, min(math.ceil(question_count * share), len(pool))))

        if len(picked) < question_count:
            chosen = {q.id for q in picked}
            rest = [q for q in self.quiz if q.id not in chosen]
            picked.extend(random.sample(rest, min(question_count - len(picked), len(rest))))

        random.shuffle(picked)
        return picked[:question_count]

    def evaluate_quiz(self, question_ids: list[str], answers: list[dict]) -> dict:
        """Score answers against the questions that were issued.

        Unanswered issued questions count as wrong; answers to questions that
        were not issued are ignored.
        """
        by_question = {str(answer.get("question_id")): answer for answer in answers}
        earned = total = 0
        results = []
        for question_id in question_ids:
            question = self.get_question(question_id)
            if not question:
                continue
            total += question.points
            correct = question.is_correct(by_question.get(str(question.id)))
            if correct:
                earned += question.points
            results.append({
                "question_id": str(question.id),
                "question": question.question,
                "is_correct": correct,
                "explanation": question.explanation,
                "points": question.points,
                "earned": question.points if correct else 0,
            })

        score = round(earned * 100 / total) if total else 0
        return {
            "score": score,
            "total_questions": len(results),
            "correct_answers": sum(1 for r in results if r["is_correct"]),
            "results": results,
            "passed": score >= SKILL_PASS_SCORE,
        }

    def refresh_stats(self) -> None:
        """Recount users holding this skill and how many have verified it."""
        rows = list(User._get_collection().aggregate([
            {"$unwind": "$skills"},
            {"$match": {"skills.name": re.compile(f"^{re.escape(self.name)}$", re.IGNORECASE)}},
            {"$group": {
                "_id": "$skills.verified",
                "count": {"$sum": 1},
                "scores": {"$push": "$skills.quiz_score"},
            }},
        ]))
        scores = [s for row in rows for s in row.get("scores") or [] if s is not None]
        self.total_users = sum(int(row["count"]) for row in rows)
        self.verified_users = sum(int(row["count"]) for row in rows if row["_id"] is True)
        self.average_quiz_score = round(sum(scores) / len(scores)) if scores else 0
        self.save()

    def to_output(self, fields=None, exclude=None):
        data = super().to_output(fields=fields, exclude=exclude)
        data["verification_rate"] = self.verification_rate
        data["quiz_stats"] = self.quiz_stats()
        return data
