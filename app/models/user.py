import logging

from mongoengine import (
    BooleanField,
    DateTimeField,
    EmailField,
    EmbeddedDocumentField,
    FloatField,
    IntField,
    ListField,
    StringField,
)

from app.models.base import BaseDocument, BaseEmbeddedDocument, utcnow
from app.utils.base import BaseEnum
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

SKILL_PASS_SCORE = 70
SKILL_MAX_ATTEMPTS = 3
SKILL_VERIFICATION_KARMA = 5


class TrustLevel(BaseEnum):
    NEWBIE = "Newbie"
    TRUSTED = "Trusted"
    VERIFIED = "Verified"
    EXPERT = "Expert"
    MASTER = "Master"


class SkillCategory(BaseEnum):
    DESIGN = "Design"
    DEVELOPMENT = "Development"
    WRITING = "Writing"
    MARKETING = "Marketing"
    TUTORING = "Tutoring"
    PHOTOGRAPHY = "Photography"
    VIDEO_EDITING = "Video Editing"
    MUSIC = "Music"
    OTHER = "Other"


class SkillLevel(BaseEnum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


class AcademicYear(BaseEnum):
    FIRST = "1st Year"
    SECOND = "2nd Year"
    THIRD = "3rd Year"
    FOURTH = "4th Year"
    GRADUATE = "Graduate"
    POSTGRADUATE = "Postgraduate"


def trust_level_for(karma_score: int) -> str:
    if karma_score >= 90:
        return TrustLevel.MASTER.value
    if karma_score >= 80:
        return TrustLevel.EXPERT.value
    if karma_score >= 70:
        return TrustLevel.VERIFIED.value
    if karma_score >= 60:
        return TrustLevel.TRUSTED.value
    return TrustLevel.NEWBIE.value


class College(BaseEmbeddedDocument):
    """Embedded: institution the user's email belongs to."""
    name = StringField(required=True, null=False)
    domain = StringField(required=True, null=False)
    city = StringField(required=False, null=True)
    state = StringField(required=False, null=True)


class Skill(BaseEmbeddedDocument):
    """Embedded: a claimed skill, verified through a quiz score >= 70."""
    name = StringField(required=True, null=False)
    category = StringField(required=True, null=False, choices=SkillCategory.choices(), default=SkillCategory.OTHER.value)
    level = StringField(required=True, null=False, choices=SkillLevel.choices(), default=SkillLevel.BEGINNER.value)
    verified = BooleanField(required=True, null=False, default=False)
    verification_date = DateTimeField(required=False, null=True)
    quiz_score = IntField(required=False, null=True, min_value=0, max_value=100)
    attempts = IntField(required=True, null=False, default=0, min_value=0, max_value=SKILL_MAX_ATTEMPTS)


class User(BaseDocument):
    """User document.

    Created on the first successful OTP or magic-link verification.

    Fields:
    - email (str, unique): college email, login identifier
    - name/bio/year/course/profile_image: optional profile
    - college (College): institution resolved from the email domain
    - karma_score (int 0-100) and trust_level (derived on save)
    - skills (list[Skill])
    - task/earning/review counters
    - token_version (str): incremented on logout to invalidate tokens
    """
    email = EmailField(required=True, null=False, unique=True)
    name = StringField(required=False, null=True, min_length=2, max_length=50)
    bio = StringField(required=False, null=True, max_length=500)
    year = StringField(required=False, null=True, choices=AcademicYear.choices())
    course = StringField(required=False, null=True)
    profile_image = StringField(required=False, null=True)
    college = EmbeddedDocumentField(College, required=True, null=False)

    karma_score = IntField(required=True, null=False, default=50, min_value=0, max_value=100)
    trust_level = StringField(required=True, null=False, choices=TrustLevel.choices(), default=TrustLevel.NEWBIE.value)
    skills = ListField(EmbeddedDocumentField(Skill), null=False, default=list)

    tasks_completed = IntField(required=True, null=False, default=0)
    tasks_posted = IntField(required=True, null=False, default=0)
    total_earnings = FloatField(required=True, null=False, default=0)
    total_spent = FloatField(required=True, null=False, default=0)
    average_rating = FloatField(required=True, null=False, default=0, min_value=0, max_value=5)
    review_count = IntField(required=True, null=False, default=0)

    is_verified = BooleanField(required=True, null=False, default=False)
    is_active = BooleanField(required=True, null=False, default=True)
    last_login = DateTimeField(required=False, null=True)
    last_active = DateTimeField(required=False, null=True)
    token_version = StringField(required=True, null=False, default="1")

    private_fields = ("token_version", "metadata")

    meta = {
        "collection": "users",
        "indexes": [
            {"fields": ["college.domain"]},
            {"fields": ["-karma_score"]},
            {"fields": ["skills.name", "skills.verified"]},
        ],
    }

    def clean(self):
        if self.email:
            self.email = self.email.strip().lower()

    def save(self, *args, **kwargs):
        # trust_level is derived, never taken from input
        self.trust_level = trust_level_for(int(self.karma_score or 0))
        return super().save(*args, **kwargs)

    @property
    def institution(self) -> str | None:
        return self.college.name if self.college else None

    @property
    def domain(self) -> str | None:
        return self.college.domain if self.college else None

    def update_karma_score(self, change: int, reason: str, save: bool = True) -> int:
        new_score = max(0, min(100, int(self.karma_score or 0) + int(change)))
        self.karma_score = new_score
        logger.info("Karma updated for %s: %+d (%s). New score: %d", self.email, change, reason, new_score)
        if save:
            self.save()
        return new_score

    def find_skill(self, name: str) -> Skill | None:
        wanted = name.strip().lower()
        for skill in self.skills:
            if skill.name.lower() == wanted:
                return skill
        return None

    def add_skill(self, name: str, category: str, level: str = SkillLevel.BEGINNER.value) -> Skill:
        if self.find_skill(name):
            raise AppError(ErrorKind.CONFLICT, f"Skill '{name}' already added")
        skill = Skill(name=name.strip(), category=category, level=level)
        self.skills.append(skill)
        self.save()
        return skill

    def remove_skill(self, name: str) -> None:
        skill = self.find_skill(name)
        if not skill:
            raise AppError(ErrorKind.NOT_FOUND, f"Skill '{name}' not found")
        self.skills.remove(skill)
        self.save()

    def verify_skill(self, name: str, quiz_score: int) -> Skill:
        """Record a quiz attempt; a passing score verifies the skill and awards karma."""
        skill = self.find_skill(name)
        if not skill:
            raise AppError(ErrorKind.NOT_FOUND, f"Skill '{name}' not found")
        if skill.verified:
            raise AppError(ErrorKind.CONFLICT, f"Skill '{name}' is already verified")
        if skill.attempts >= SKILL_MAX_ATTEMPTS:
            raise AppError(ErrorKind.RATE_LIMITED, "Maximum verification attempts reached for this skill")

        skill.attempts += 1
        skill.quiz_score = quiz_score
        if quiz_score >= SKILL_PASS_SCORE:
            skill.verified = True
            skill.verification_date = utcnow()
            self.update_karma_score(SKILL_VERIFICATION_KARMA, f"Skill verification: {skill.name}", save=False)
        self.save()
        return skill

    def to_public(self) -> dict:
        return self.to_output(fields=[
            "name", "bio", "year", "course", "profile_image", "college", "karma_score", "trust_level",
            "skills", "tasks_completed", "average_rating", "review_count", "created_at",
        ])
