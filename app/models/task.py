from datetime import timedelta

from bson import ObjectId
from mongoengine import (
    BooleanField,
    DateTimeField,
    EmbeddedDocumentField,
    FloatField,
    IntField,
    ListField,
    ObjectIdField,
    ReferenceField,
    StringField,
    ValidationError,
)

from app.models.base import BaseDocument, BaseEmbeddedDocument, as_utc, utcnow
from app.models.user import SkillCategory, SkillLevel, User
from app.utils.base import BaseEnum
from app.utils.errors import AppError, ErrorKind


URGENT_WINDOW = timedelta(hours=24)


class TaskStatus(BaseEnum):
    OPEN = "Open"
    IN_BIDDING = "In Bidding"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    UNDER_REVIEW = "Under Review"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    DISPUTED = "Disputed"


class BidStatus(BaseEnum):
    ACTIVE = "Active"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    WITHDRAWN = "Withdrawn"


class EscrowStatus(BaseEnum):
    NONE = "None"
    HELD = "Held"
    RELEASED = "Released"
    REFUNDED = "Refunded"


class BudgetType(BaseEnum):
    FIXED = "Fixed"
    HOURLY = "Hourly"


class TaskPriority(BaseEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


BIDDABLE_STATUSES = (TaskStatus.OPEN.value, TaskStatus.IN_BIDDING.value)
CANCELLABLE_STATUSES = (TaskStatus.OPEN.value, TaskStatus.IN_BIDDING.value, TaskStatus.ASSIGNED.value)
DISPUTABLE_STATUSES = (TaskStatus.IN_PROGRESS.value, TaskStatus.UNDER_REVIEW.value)


def ref_id(value) -> str | None:
    """String id of a reference, whether it is a document, DBRef, ObjectId or str."""
    if value is None:
        return None
    return str(getattr(value, "id", value))


class RequiredSkill(BaseEmbeddedDocument):
    name = StringField(required=True, null=False)
    level = StringField(required=True, null=False, choices=SkillLevel.choices(), default=SkillLevel.BEGINNER.value)


class Budget(BaseEmbeddedDocument):
    amount = FloatField(required=True, null=False, min_value=50, max_value=50000)
    currency = StringField(required=True, null=False, default="INR")
    type = StringField(required=True, null=False, choices=BudgetType.choices(), default=BudgetType.FIXED.value)


class Bid(BaseEmbeddedDocument):
    """Embedded: a bid on a task. delivery_time is in hours."""
    id = ObjectIdField(required=True, default=ObjectId)
    bidder = ReferenceField(document_type=User, required=True, null=False)
    amount = FloatField(required=True, null=False, min_value=1)
    message = StringField(required=False, null=True, max_length=500)
    delivery_time = IntField(required=True, null=False, min_value=1)
    status = StringField(required=True, null=False, choices=BidStatus.choices(), default=BidStatus.ACTIVE.value)
    created_at = DateTimeField(required=True, null=False, default=utcnow)


class Deliverable(BaseEmbeddedDocument):
    filename = StringField(required=True, null=False)
    original_name = StringField(required=False, null=True)
    url = StringField(required=True, null=False)
    file_type = StringField(required=False, null=True)
    file_size = IntField(required=False, null=True, min_value=0)
    submitted_by = ReferenceField(document_type=User, required=False, null=True)
    submitted_at = DateTimeField(required=True, null=False, default=utcnow)


class Escrow(BaseEmbeddedDocument):
    amount = FloatField(required=True, null=False, default=0)
    status = StringField(required=True, null=False, choices=EscrowStatus.choices(), default=EscrowStatus.NONE.value)
    held_at = DateTimeField(required=False, null=True)
    released_at = DateTimeField(required=False, null=True)
    refunded_at = DateTimeField(required=False, null=True)


class TaskReview(BaseEmbeddedDocument):
    """Embedded: quick rating left on the task itself at completion."""
    rating = IntField(required=True, null=False, min_value=1, max_value=5)
    comment = StringField(required=False, null=True, max_length=1000)
    created_at = DateTimeField(required=True, null=False, default=utcnow)


class Task(BaseDocument):
    """A gig posted by a student.

    Lifecycle: Open -> In Bidding -> Assigned -> In Progress -> Under Review -> Completed,
    with Cancelled and Disputed as side exits. Every transition goes through a method
    that checks the prior status.

    Derived on every save: bid_count (active bids), Open/In Bidding switch, is_urgent
    (deadline within 24h). These are never trusted as input.
    """
    title = StringField(required=True, null=False, min_length=10, max_length=100)
    description = StringField(required=True, null=False, min_length=20, max_length=2000)
    category = StringField(required=True, null=False, choices=SkillCategory.choices())
    skills_required = ListField(EmbeddedDocumentField(RequiredSkill), null=False, default=list)
    budget = EmbeddedDocumentField(Budget, required=True, null=False)
    deadline = DateTimeField(required=True, null=False)
    estimated_hours = IntField(required=False, null=True, min_value=1, max_value=200)
    priority = StringField(required=True, null=False, choices=TaskPriority.choices(), default=TaskPriority.MEDIUM.value)

    posted_by = ReferenceField(document_type=User, required=True, null=False)
    assigned_to = ReferenceField(document_type=User, required=False, null=True)
    status = StringField(required=True, null=False, choices=TaskStatus.choices(), default=TaskStatus.OPEN.value)

    bids = ListField(EmbeddedDocumentField(Bid), null=False, default=list)
    selected_bid = ObjectIdField(required=False, null=True)
    deliverables = ListField(EmbeddedDocumentField(Deliverable), null=False, default=list)
    escrow = EmbeddedDocumentField(Escrow, required=True, null=False, default=Escrow)
    client_review = EmbeddedDocumentField(TaskReview, required=False, null=True)
    worker_review = EmbeddedDocumentField(TaskReview, required=False, null=True)

    views = IntField(required=True, null=False, default=0)
    bid_count = IntField(required=True, null=False, default=0)
    is_urgent = BooleanField(required=True, null=False, default=False)

    started_at = DateTimeField(required=False, null=True)
    submitted_at = DateTimeField(required=False, null=True)
    completed_at = DateTimeField(required=False, null=True)
    cancelled_at = DateTimeField(required=False, null=True)

    meta = {
        "collection": "tasks",
        "indexes": [
            {"fields": ["posted_by", "-created_at"]},
            {"fields": ["assigned_to", "status"]},
            {"fields": ["status", "-created_at"]},
            {"fields": ["category", "status"]},
            {"fields": ["budget.amount"]},
            {"fields": ["deadline"]},
            {"fields": ["skills_required.name"]},
        ],
    }

    def clean(self):
        # Deadline must be in the future when the task is first posted
        if self.pk is None and self.deadline and as_utc(self.deadline) <= utcnow():
            raise ValidationError("Deadline must be in the future")

    def save(self, *args, **kwargs):
        self.bid_count = len(self.active_bids)
        if self.bid_count > 0 and self.status == TaskStatus.OPEN.value:
            self.status = TaskStatus.IN_BIDDING.value
        elif self.bid_count == 0 and self.status == TaskStatus.IN_BIDDING.value:
            self.status = TaskStatus.OPEN.value
        self.is_urgent = bool(self.deadline) and (as_utc(self.deadline) - utcnow()) < URGENT_WINDOW
        return super().save(*args, **kwargs)

    # ---------------------------------------------------------------- reads

    @property
    def active_bids(self) -> list[Bid]:
        return [bid for bid in self.bids if bid.status == BidStatus.ACTIVE.value]

    @property
    def average_bid(self) -> int:
        active = self.active_bids
        if not active:
            return 0
        return round(sum(bid.amount for bid in active) / len(active))

    @property
    def lowest_bid(self) -> float | None:
        active = self.active_bids
        if not active:
            return None
        return min(bid.amount for bid in active)

    @property
    def time_remaining(self) -> str | None:
        if not self.deadline:
            return None
        diff = as_utc(self.deadline) - utcnow()
        if diff.total_seconds() <= 0:
            return "Expired"
        hours = diff.seconds // 3600
        if diff.days > 0:
            return f"{diff.days}d {hours}h"
        return f"{hours}h"

    def get_bid(self, bid_id) -> Bid | None:
        wanted = str(bid_id)
        for bid in self.bids:
            if str(bid.id) == wanted:
                return bid
        return None

    def is_poster(self, user) -> bool:
        return ref_id(self.posted_by) == ref_id(user)

    def is_assignee(self, user) -> bool:
        return self.assigned_to is not None and ref_id(self.assigned_to) == ref_id(user)

    def _require_status(self, allowed: tuple[str, ...], message: str) -> None:
        if self.status not in allowed:
            raise AppError(ErrorKind.INVALID_TRANSITION, message, status=self.status)

    # ---------------------------------------------------------------- transitions

    def add_bid(self, bidder: User, amount: float, message: str | None, delivery_time: int) -> Bid:
        """Append an Active bid. One Active bid per bidder; only while Open/In Bidding."""
        bidder_id = ref_id(bidder)
        if any(ref_id(bid.bidder) == bidder_id for bid in self.active_bids):
            raise AppError(ErrorKind.BID_EXISTS, "You already have an active bid on this task")
        self._require_status(BIDDABLE_STATUSES, "This task is not open for bidding")
        if self.is_poster(bidder):
            raise AppError(ErrorKind.FORBIDDEN, "Cannot bid on your own task")

        bid = Bid(bidder=bidder, amount=amount, message=message, delivery_time=delivery_time)
        self.bids.append(bid)
        self.save()
        return bid

    def withdraw_bid(self, bid_id, bidder: User) -> Bid:
        bid = self.get_bid(bid_id)
        if not bid or bid.status != BidStatus.ACTIVE.value:
            raise AppError(ErrorKind.INVALID_BID, "Invalid bid")
        if ref_id(bid.bidder) != ref_id(bidder):
            raise AppError(ErrorKind.FORBIDDEN, "Only the bidder can withdraw this bid")
        bid.status = BidStatus.WITHDRAWN.value
        self.save()
        return bid

    def accept_bid(self, bid_id) -> Bid:
        """Accept one Active bid, reject every other bid and assign the task."""
        bid = self.get_bid(bid_id)
        if not bid or bid.status != BidStatus.ACTIVE.value:
            raise AppError(ErrorKind.INVALID_BID, "Invalid bid")

        for other in self.bids:
            other.status = BidStatus.ACCEPTED.value if other is bid else BidStatus.REJECTED.value

        now = utcnow()
        self.selected_bid = bid.id
        self.assigned_to = bid.bidder
        self.status = TaskStatus.ASSIGNED.value
        self.started_at = now
        self.escrow.amount = bid.amount
        self.escrow.status = EscrowStatus.HELD.value
        self.escrow.held_at = now
        self.save()
        return bid

    def start_work(self, user: User) -> None:
        self._require_status((TaskStatus.ASSIGNED.value,), "Task is not assigned")
        if not self.is_assignee(user):
            raise AppError(ErrorKind.FORBIDDEN, "Only the assigned student can start this task")
        self.status = TaskStatus.IN_PROGRESS.value
        self.save()

    def submit_work(self, deliverables: list[dict], submitted_by: User) -> None:
        self._require_status((TaskStatus.IN_PROGRESS.value,), "Task is not in progress")
        self.deliverables = [Deliverable(submitted_by=submitted_by, **item) for item in deliverables]
        self.status = TaskStatus.UNDER_REVIEW.value
        self.submitted_at = utcnow()
        self.save()

    def complete_task(self, rating: int, comment: str | None = None) -> None:
        self._require_status((TaskStatus.UNDER_REVIEW.value,), "Task is not under review")
        now = utcnow()
        self.status = TaskStatus.COMPLETED.value
        self.completed_at = now
        self.client_review = TaskReview(rating=rating, comment=comment, created_at=now)
        if self.escrow.status == EscrowStatus.HELD.value:
            self.escrow.status = EscrowStatus.RELEASED.value
            self.escrow.released_at = now
        self.save()

    def cancel_task(self) -> None:
        self._require_status(CANCELLABLE_STATUSES, "Task can no longer be cancelled")
        now = utcnow()
        for bid in self.bids:
            if bid.status == BidStatus.ACTIVE.value:
                bid.status = BidStatus.WITHDRAWN.value
            elif bid.status == BidStatus.ACCEPTED.value:
                bid.status = BidStatus.REJECTED.value
        if self.escrow.status == EscrowStatus.HELD.value:
            self.escrow.status = EscrowStatus.REFUNDED.value
            self.escrow.refunded_at = now
        self.status = TaskStatus.CANCELLED.value
        self.cancelled_at = now
        self.save()

    def raise_dispute(self) -> None:
        self._require_status(DISPUTABLE_STATUSES, "Only active work can be disputed")
        self.status = TaskStatus.DISPUTED.value
        self.save()

    def to_output(self, fields=None, exclude=None):
        output = super().to_output(fields, exclude)
        if not fields:
            output["average_bid"] = self.average_bid
            output["lowest_bid"] = self.lowest_bid
            output["time_remaining"] = self.time_remaining
        return output
