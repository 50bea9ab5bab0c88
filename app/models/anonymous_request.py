from datetime import datetime, timedelta

from bson import ObjectId
from mongoengine import (
    BooleanField,
    DateTimeField,
    EmbeddedDocumentField,
    IntField,
    ListField,
    ObjectIdField,
    StringField,
)

from app.models.base import BaseDocument, BaseEmbeddedDocument, as_utc, utcnow
from app.utils.base import BaseEnum
from app.utils.errors import AppError, ErrorKind


REQUEST_LIFETIME = timedelta(hours=24)


class UrgencyLevel(BaseEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


URGENCY_RANK = {level: rank for rank, level in enumerate(UrgencyLevel.values())}


class EstimatedTime(BaseEnum):
    MIN_15 = "15min"
    MIN_30 = "30min"
    HOUR_1 = "1hour"
    HOURS_2 = "2hours"
    HOURS_3_PLUS = "3hours+"


class AnonymousRequestStatus(BaseEnum):
    ACTIVE = "Active"
    MATCHED = "Matched"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"


CLOSED_STATUSES = (
    AnonymousRequestStatus.COMPLETED.value,
    AnonymousRequestStatus.EXPIRED.value,
    AnonymousRequestStatus.CANCELLED.value,
)


class AvatarShape(BaseEnum):
    CIRCLE = "circle"
    SQUARE = "square"
    TRIANGLE = "triangle"
    HEXAGON = "hexagon"


class AvatarPattern(BaseEnum):
    SOLID = "solid"
    GRADIENT = "gradient"
    DOTS = "dots"
    STRIPES = "stripes"


class CreatedFrom(BaseEnum):
    WEB = "web"
    MOBILE = "mobile"
    API = "api"


class Avatar(BaseEmbeddedDocument):
    color = StringField(required=True, null=False, default="#4F46E5")
    shape = StringField(required=True, null=False, choices=AvatarShape.choices(), default=AvatarShape.CIRCLE.value)
    pattern = StringField(required=True, null=False, choices=AvatarPattern.choices(), default=AvatarPattern.SOLID.value)


class HelpOffer(BaseEmbeddedDocument):
    """Embedded: an offer to help. helper_id is a pseudonym when is_anonymous."""
    id = ObjectIdField(required=True, default=ObjectId)
    helper_id = StringField(required=True, null=False)
    message = StringField(required=True, null=False, max_length=500)
    trust_score = IntField(required=False, null=True, min_value=0, max_value=100)
    is_anonymous = BooleanField(required=True, null=False, default=False)
    offered_at = DateTimeField(required=True, null=False, default=utcnow)


class Location(BaseEmbeddedDocument):
    city = StringField(required=False, null=True)
    state = StringField(required=False, null=True)
    is_remote = BooleanField(required=True, null=False, default=True)


class AnonymousRequest(BaseDocument):
    """Short-lived help request posted without revealing who asked.

    Fields:
    - session_id (str, unique): public handle for the request
    - anonymous_user_id (str): salted hash of the requester's user id, never rendered
    - title/description/skills_needed/urgency_level/estimated_time
    - avatar (Avatar): random look for the UI
    - status (AnonymousRequestStatus), matched_helper_id, help_offers
    - expires_at (datetime): TTL index removes the row, 24h after creation by default
    - ip_hash (str): sha256 of the client address, never rendered
    """
    session_id = StringField(required=True, null=False, unique=True)
    anonymous_user_id = StringField(required=True, null=False)

    title = StringField(required=True, null=False, min_length=5, max_length=100)
    description = StringField(required=True, null=False, min_length=10, max_length=500)
    skills_needed = ListField(StringField(min_length=1), required=True, null=False)
    urgency_level = StringField(required=True, null=False, choices=UrgencyLevel.choices(), default=UrgencyLevel.MEDIUM.value)
    urgency_rank = IntField(required=True, null=False, default=1)
    estimated_time = StringField(required=True, null=False, choices=EstimatedTime.choices())
    avatar = EmbeddedDocumentField(Avatar, required=True, null=False, default=Avatar)

    status = StringField(
        required=True, null=False, choices=AnonymousRequestStatus.choices(), default=AnonymousRequestStatus.ACTIVE.value,
    )
    matched_helper_id = StringField(required=False, null=True)
    response_count = IntField(required=True, null=False, default=0)
    help_offers = ListField(EmbeddedDocumentField(HelpOffer), null=False, default=list)

    allow_same_college = BooleanField(required=True, null=False, default=True)
    college_hint = StringField(required=False, null=True, max_length=50)
    location = EmbeddedDocumentField(Location, required=True, null=False, default=Location)
    tags = ListField(StringField(), null=False, default=list)

    expires_at = DateTimeField(required=True, null=False, default=lambda: utcnow() + REQUEST_LIFETIME)
    last_activity_at = DateTimeField(required=True, null=False, default=utcnow)
    views = IntField(required=True, null=False, default=0)

    created_from = StringField(required=True, null=False, choices=CreatedFrom.choices(), default=CreatedFrom.WEB.value)
    user_agent = StringField(required=False, null=True)
    ip_hash = StringField(required=False, null=True)

    private_fields = ("anonymous_user_id", "ip_hash", "user_agent", "urgency_rank", "metadata")

    meta = {
        "collection": "anonymous_requests",
        "indexes": [
            {"fields": ["anonymous_user_id"]},
            {"fields": ["status", "-created_at"]},
            {"fields": ["skills_needed", "status"]},
            {"fields": ["-urgency_rank", "-created_at"]},
            {"fields": ["expires_at"], "expireAfterSeconds": 0},
        ],
    }

    def clean(self):
        self.title = (self.title or "").strip()
        self.description = (self.description or "").strip()
        self.skills_needed = [s.strip() for s in self.skills_needed if s and s.strip()]
        self.tags = [t.strip().lower() for t in self.tags if t and t.strip()]

    def save(self, *args, **kwargs):
        self.urgency_rank = URGENCY_RANK.get(self.urgency_level, 1)
        self.response_count = len(self.help_offers)
        self.last_activity_at = utcnow()
        return super().save(*args, **kwargs)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expires_at)

    @property
    def time_remaining(self) -> str:
        remaining = as_utc(self.expires_at) - utcnow()
        if remaining.total_seconds() <= 0:
            return "Expired"
        hours, rest = divmod(int(remaining.total_seconds()), 3600)
        minutes = rest // 60
        return f"{hours}h {minutes}m" if hours else f"{minutes}m"

    def _require_open(self) -> None:
        if self.status != AnonymousRequestStatus.ACTIVE.value or self.is_expired():
            raise AppError(ErrorKind.INVALID_TRANSITION, "This help request is no longer active")

    def get_offer(self, offer_id) -> HelpOffer | None:
        for offer in self.help_offers:
            if str(offer.id) == str(offer_id):
                return offer
        return None

    def add_help_offer(self, helper_id: str, message: str, trust_score: int | None, is_anonymous: bool) -> HelpOffer:
        self._require_open()
        if any(offer.helper_id == helper_id for offer in self.help_offers):
            raise AppError(ErrorKind.CONFLICT, "You have already offered help on this request")
        offer = HelpOffer(helper_id=helper_id, message=message.strip(), trust_score=trust_score, is_anonymous=is_anonymous)
        self.help_offers.append(offer)
        self.save()
        return offer

    def match_with_helper(self, offer_id) -> HelpOffer:
        self._require_open()
        offer = self.get_offer(offer_id)
        if not offer:
            raise AppError(ErrorKind.NOT_FOUND, "Help offer not found")
        self.status = AnonymousRequestStatus.MATCHED.value
        self.matched_helper_id = offer.helper_id
        self.save()
        return offer

    def close(self, status: str) -> None:
        if status not in (AnonymousRequestStatus.COMPLETED.value, AnonymousRequestStatus.CANCELLED.value):
            raise AppError(ErrorKind.VALIDATION, 'Invalid status. Use "Completed" or "Cancelled"')
        if self.status in CLOSED_STATUSES:
            raise AppError(ErrorKind.INVALID_TRANSITION, f"Request is already {self.status}")
        self.status = status
        self.save()

    def to_output(self, fields=None, exclude=None):
        output = super().to_output(fields, exclude)
        if not fields:
            output["time_remaining"] = self.time_remaining
        return output

    def to_feed_item(self) -> dict:
        """Feed view: helper identities on offers are hidden."""
        output = self.to_output(exclude=["help_offers", "matched_helper_id"])
        output["help_offers"] = [
            {"message": offer.message, "trust_score": offer.trust_score, "offered_at": as_utc(offer.offered_at).isoformat()}
            for offer in self.help_offers
        ]
        return output
