from bson import ObjectId
from mongoengine import (
    BooleanField,
    DateTimeField,
    EmbeddedDocumentField,
    IntField,
    ListField,
    ReferenceField,
    StringField,
    ValidationError,
)

from app.models.base import BaseDocument, BaseEmbeddedDocument, utcnow
from app.models.task import Task, ref_id
from app.models.user import User
from app.utils.base import BaseEnum
from app.utils.errors import AppError, ErrorKind


FLAG_HIDE_THRESHOLD = 3
CRITERIA_TOLERANCE = 1


class ReviewType(BaseEnum):
    CLIENT_TO_WORKER = "Client to Worker"
    WORKER_TO_CLIENT = "Worker to Client"


class ReviewStatus(BaseEnum):
    ACTIVE = "Active"
    HIDDEN = "Hidden"
    FLAGGED = "Flagged"
    REMOVED = "Removed"


class VoteType(BaseEnum):
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"


class FlagReason(BaseEnum):
    INAPPROPRIATE = "Inappropriate"
    FAKE = "Fake"
    SPAM = "Spam"
    OFFENSIVE = "Offensive"
    OTHER = "Other"


class ReviewCriteria(BaseEmbeddedDocument):
    """Embedded: optional per-criterion ratings, each 1-5."""
    communication = IntField(required=False, null=True, min_value=1, max_value=5)
    quality = IntField(required=False, null=True, min_value=1, max_value=5)
    timeliness = IntField(required=False, null=True, min_value=1, max_value=5)
    professionalism = IntField(required=False, null=True, min_value=1, max_value=5)

    def scores(self) -> list[int]:
        return [getattr(self, name) for name in self._fields if getattr(self, name) is not None]

    def average(self) -> float | None:
        values = self.scores()
        if not values:
            return None
        return sum(values) / len(values)


class HelpfulVote(BaseEmbeddedDocument):
    user = ReferenceField(document_type=User, required=True, null=False)
    vote = StringField(required=True, null=False, choices=VoteType.choices())
    voted_at = DateTimeField(required=True, null=False, default=utcnow)


class ReviewFlag(BaseEmbeddedDocument):
    reason = StringField(required=True, null=False, choices=FlagReason.choices())
    reported_by = ReferenceField(document_type=User, required=True, null=False)
    reported_at = DateTimeField(required=True, null=False, default=utcnow)


class ReviewResponse(BaseEmbeddedDocument):
    comment = StringField(required=True, null=False, max_length=500)
    responded_at = DateTimeField(required=True, null=False, default=utcnow)


class Review(BaseDocument):
    """Review left by one party of a task about the other.

    Validate enforces reviewer != reviewed_user and, when criteria are given, that the
    overall rating is within 1 point of the criteria average.
    Unique per (task, reviewer, review_type).
    """
    task = ReferenceField(document_type=Task, required=True, null=False)
    reviewer = ReferenceField(document_type=User, required=True, null=False)
    reviewed_user = ReferenceField(document_type=User, required=True, null=False)

    rating = IntField(required=True, null=False, min_value=1, max_value=5)
    comment = StringField(required=True, null=False, min_length=10, max_length=1000)
    review_type = StringField(required=True, null=False, choices=ReviewType.choices())
    criteria = EmbeddedDocumentField(ReviewCriteria, required=False, null=True)

    is_verified = BooleanField(required=True, null=False, default=True)
    helpful_votes = IntField(required=True, null=False, default=0)
    voted_by = ListField(EmbeddedDocumentField(HelpfulVote), null=False, default=list)
    status = StringField(required=True, null=False, choices=ReviewStatus.choices(), default=ReviewStatus.ACTIVE.value)
    flags = ListField(EmbeddedDocumentField(ReviewFlag), null=False, default=list)
    response = EmbeddedDocumentField(ReviewResponse, required=False, null=True)

    meta = {
        "collection": "reviews",
        "indexes": [
            {"fields": ["task", "reviewer", "review_type"], "unique": True},
            {"fields": ["reviewed_user", "-created_at"]},
            {"fields": ["reviewer", "-created_at"]},
            {"fields": ["-rating"]},
            {"fields": ["status"]},
        ],
    }

    def validate(self, clean=True):
        super().validate(clean)
        if ref_id(self.reviewer) == ref_id(self.reviewed_user):
            raise ValidationError("Cannot review yourself")

        average = self.criteria.average() if self.criteria else None
        if average is not None and abs(self.rating - average) > CRITERIA_TOLERANCE:
            raise ValidationError("Overall rating should align with detailed criteria")

    @property
    def criteria_average(self) -> float | None:
        return self.criteria.average() if self.criteria else None

    @classmethod
    def average_rating_for_user(cls, user_id) -> dict:
        """Average rating, count and 1-5 distribution of a user's Active reviews."""
        result = list(cls._get_collection().aggregate([
            {"$match": {"reviewed_user": ObjectId(ref_id(user_id)), "status": ReviewStatus.ACTIVE.value}},
            {"$group": {
                "_id": None,
                "average_rating": {"$avg": "$rating"},
                "total_reviews": {"$sum": 1},
                "ratings": {"$push": "$rating"},
            }},
        ]))
        if not result or not result[0]["total_reviews"]:
            return {"average_rating": 0, "total_reviews": 0, "rating_distribution": {}}

        data = result[0]
        distribution = {str(score): 0 for score in range(1, 6)}
        for rating in data["ratings"]:
            distribution[str(rating)] = distribution.get(str(rating), 0) + 1
        return {
            "average_rating": round(float(data["average_rating"]), 1),
            "total_reviews": int(data["total_reviews"]),
            "rating_distribution": distribution,
        }

    @classmethod
    def criteria_averages_for_user(cls, user_id) -> dict:
        result = list(cls._get_collection().aggregate([
            {"$match": {
                "reviewed_user": ObjectId(ref_id(user_id)),
                "status": ReviewStatus.ACTIVE.value,
                "criteria": {"$ne": None},
            }},
            {"$group": {
                "_id": None,
                "communication": {"$avg": "$criteria.communication"},
                "quality": {"$avg": "$criteria.quality"},
                "timeliness": {"$avg": "$criteria.timeliness"},
                "professionalism": {"$avg": "$criteria.professionalism"},
            }},
        ]))
        names = ("communication", "quality", "timeliness", "professionalism")
        if not result:
            return {name: 0 for name in names}
        return {name: round(float(result[0].get(name) or 0), 1) for name in names}

    def add_helpful_vote(self, user: User, vote: str) -> None:
        existing = next((v for v in self.voted_by if ref_id(v.user) == ref_id(user)), None)
        if existing:
            if existing.vote == vote:
                raise AppError(ErrorKind.CONFLICT, "You have already voted this way")
            existing.vote = vote
            existing.voted_at = utcnow()
        else:
            self.voted_by.append(HelpfulVote(user=user, vote=vote))

        self.helpful_votes = sum(1 for v in self.voted_by if v.vote == VoteType.HELPFUL.value)
        self.save()

    def flag_review(self, reason: str, reported_by: User) -> None:
        if any(ref_id(flag.reported_by) == ref_id(reported_by) for flag in self.flags):
            raise AppError(ErrorKind.CONFLICT, "You have already flagged this review")
        self.flags.append(ReviewFlag(reason=reason, reported_by=reported_by))
        if len(self.flags) >= FLAG_HIDE_THRESHOLD:
            self.status = ReviewStatus.FLAGGED.value
        self.save()

    def add_response(self, comment: str) -> None:
        self.response = ReviewResponse(comment=comment)
        self.save()

    def to_output(self, fields=None, exclude=None):
        output = super().to_output(fields, exclude)
        if not fields:
            output["criteria_average"] = self.criteria_average
        return output
