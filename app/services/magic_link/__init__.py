import logging
import secrets
from urllib.parse import urlencode

from app.services.auth import sign_in
from app.services.cache import cache_pop, cache_set
from app.services.email import dispatch_magic_link_email
from app.services.otp import check_rate_limit, require_college_email
from app.utils.base import parse_duration
from app.utils.config import settings
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

KEY_PREFIX = "magic:"


def _key(token: str) -> str:
    return f"{KEY_PREFIX}{token}"


def build_link(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/auth/verify?{urlencode({'token': token})}"


def send_magic_link(email: str, ip_address: str | None = None, user_agent: str | None = None) -> dict:
    """Mail a single-use sign-in link; shares the OTP request quota."""
    email = (email or "").strip().lower()
    validation = require_college_email(email)
    check_rate_limit(email, ip_address, user_agent)

    token = secrets.token_hex(32)
    expires_in = int(parse_duration(settings.magic_link_expires_in).total_seconds())
    cache_set(_key(token), email, ttl_seconds=expires_in)

    link = build_link(token)
    if settings.debug:
        logger.warning("[DEV] Magic link for %s: %s", email, link)
    dispatch_magic_link_email(email, link, validation.institution)
    return {
        "message": "Magic link sent to your college email",
        "institution": validation.institution,
        "expires_in": expires_in,
    }


def verify_magic_link(token: str) -> dict:
    email = cache_pop(_key(token)) if token else None
    if not email:
        raise AppError(ErrorKind.MAGIC_LINK_INVALID, "Magic link is invalid or has expired")

    validation = require_college_email(email)
    user, access_token = sign_in(email=email, institution=validation.institution, domain=validation.domain)
    logger.info("Magic link verified for %s", email)
    return {"message": "Signed in successfully", "token": access_token, "user": user}
