import hashlib
import logging
import random
import uuid

from app.models.anonymous_request import (
    AnonymousRequest,
    AnonymousRequestStatus,
    Avatar,
    AvatarPattern,
    AvatarShape,
    HelpOffer,
    Location,
)
from app.models.base import utcnow
from app.models.user import User
from app.utils.config import settings
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

AVATAR_COLORS = ("#4F46E5", "#7C3AED", "#DC2626", "#059669", "#D97706", "#2563EB")


def anonymous_id(user_id, scope: str = "") -> str:
    """Stable pseudonym for a user; a scope gives a different one per request."""
    return hashlib.sha256(f"{user_id}{scope}{settings.anon_salt}".encode()).hexdigest()[:16]


def hash_ip(ip_address: str | None) -> str | None:
    if not ip_address:
        return None
    return hashlib.sha256(ip_address.encode()).hexdigest()


def generate_avatar() -> Avatar:
    return Avatar(
        color=random.choice(AVATAR_COLORS),
        shape=random.choice(AvatarShape.values()),
        pattern=random.choice(AvatarPattern.values()),
    )


def is_requester(request: AnonymousRequest, user: User) -> bool:
    return request.anonymous_user_id == anonymous_id(user.id)


def get_request(session_id: str) -> AnonymousRequest:
    request: AnonymousRequest | None = AnonymousRequest.objects(session_id=session_id).first()
    if not request:
        raise AppError(ErrorKind.NOT_FOUND, "Help request not found")
    return request


def create_request(
    user: User,
    title: str,
    description: str,
    skills_needed: list[str],
    estimated_time: str,
    urgency_level: str | None = None,
    allow_same_college: bool = True,
    college_hint: str | None = None,
    is_remote: bool = True,
    tags: list[str] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AnonymousRequest:
    if not [s for s in skills_needed if s and s.strip()]:
        raise AppError(ErrorKind.VALIDATION, "At least one skill is required")

    request = AnonymousRequest(
        session_id=str(uuid.uuid4()),
        anonymous_user_id=anonymous_id(user.id),
        title=title,
        description=description,
        skills_needed=skills_needed,
        estimated_time=estimated_time,
        avatar=generate_avatar(),
        allow_same_college=allow_same_college,
        college_hint=(college_hint or "").strip() or None,
        location=Location(is_remote=is_remote),
        tags=tags or [],
        ip_hash=hash_ip(ip_address),
        user_agent=user_agent,
    )
    if urgency_level:
        request.urgency_level = urgency_level
    request.save()
    logger.info("Anonymous request created: %s", request.session_id)
    return request


def active_feed(limit: int = 20, skills: list[str] | None = None, urgency: list[str] | None = None) -> list[AnonymousRequest]:
    queryset = AnonymousRequest.objects(status=AnonymousRequestStatus.ACTIVE.value, expires_at__gt=utcnow())
    if skills:
        queryset = queryset.filter(skills_needed__in=skills)
    if urgency:
        queryset = queryset.filter(urgency_level__in=urgency)
    return list(queryset.order_by("-urgency_rank", "-created_at").limit(limit))


def view_request(session_id: str) -> AnonymousRequest:
    request = get_request(session_id)
    AnonymousRequest.objects(id=request.id).update(inc__views=1)
    request.views += 1
    return request


def offer_help(session_id: str, helper: User, message: str, is_anonymous: bool = False) -> HelpOffer:
    request = get_request(session_id)
    if is_requester(request, helper):
        raise AppError(ErrorKind.FORBIDDEN, "You cannot offer help on your own request")
    helper_id = anonymous_id(helper.id, session_id) if is_anonymous else str(helper.id)
    offer = request.add_help_offer(helper_id, message, helper.karma_score, is_anonymous)
    logger.info("Help offered on %s (%d offers)", session_id, request.response_count)
    return offer


def match_helper(session_id: str, offer_id: str, user: User) -> HelpOffer:
    request = get_request(session_id)
    if not is_requester(request, user):
        raise AppError(ErrorKind.FORBIDDEN, "Only the requester can choose a helper")
    return request.match_with_helper(offer_id)


def update_status(session_id: str, status: str, user: User) -> AnonymousRequest:
    request = get_request(session_id)
    if not is_requester(request, user):
        raise AppError(ErrorKind.FORBIDDEN, "Only the requester can update this request")
    request.close(status)
    return request


def my_requests(user: User) -> list[AnonymousRequest]:
    return list(AnonymousRequest.objects(anonymous_user_id=anonymous_id(user.id)).order_by("-created_at"))
