import logging
import random
from datetime import timedelta

from pydantic import BaseModel

from app.models.base import utcnow
from app.models.otp import OTP, OTPRequest, hash_code
from app.services.auth import sign_in
from app.services.email import dispatch_otp_email
from app.services.otp.domains import get_college_domains, load_college_domains
from app.utils.config import settings
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

UNSUPPORTED_DOMAIN_REASON = (
    "Please use your college email from a supported institution (.ac.in, .edu.in, or .edu domains)"
)


class EmailValidation(BaseModel):
    is_valid: bool
    domain: str | None = None
    institution: str | None = None
    reason: str | None = None


def generate_otp() -> str:
    return str(random.randint(10 ** (settings.otp_length - 1), 10 ** settings.otp_length - 1))


def validate_college_email(email: str) -> EmailValidation:
    """Check the email's domain against the allow-list and resolve its institution."""
    local, sep, domain = (email or "").strip().partition("@")
    domain = domain.lower()
    if not sep or not local or not domain or "@" in domain:
        return EmailValidation(is_valid=False, reason="Invalid email format")

    domains = get_college_domains()
    if not domains.is_allowed(domain):
        return EmailValidation(is_valid=False, domain=domain, reason=UNSUPPORTED_DOMAIN_REASON)
    return EmailValidation(is_valid=True, domain=domain, institution=domains.institution_for(domain))


def require_college_email(email: str) -> EmailValidation:
    validation = validate_college_email(email)
    if not validation.is_valid:
        kind = ErrorKind.UNSUPPORTED_DOMAIN if validation.domain else ErrorKind.INVALID_EMAIL
        raise AppError(kind, validation.reason, supportedDomains=supported_domains()[:15])
    return validation


def is_supported_domain(email: str) -> bool:
    return validate_college_email(email).is_valid


def supported_domains() -> list[str]:
    return list(get_college_domains().allowed_domains)


def institution_mapping() -> dict[str, str]:
    return dict(get_college_domains().institution_mapping)


def college_name(domain: str) -> str:
    return get_college_domains().institution_for(domain.lower())


def check_rate_limit(email: str, ip_address: str | None = None, user_agent: str | None = None) -> None:
    """Admit at most `otp_max_per_hour` sends per email in the trailing window.

    The request is recorded first and counted second, so two racing requests can
    both be refused but never both admitted past the limit.
    """
    window = timedelta(minutes=settings.otp_rate_limit_window_minutes)
    entry = OTPRequest(email=email, ip_address=ip_address, user_agent=user_agent)
    entry.save()

    recent = OTPRequest.objects(email=email, created_at__gte=utcnow() - window).count()
    if recent > settings.otp_max_per_hour:
        entry.delete()
        logger.info("OTP rate limit hit for %s (%d requests)", email, recent)
        raise AppError(
            ErrorKind.RATE_LIMITED,
            f"Rate limit exceeded. Maximum {settings.otp_max_per_hour} OTP requests per hour.",
            retryAfter="1 hour",
        )


def send_otp(email: str, ip_address: str | None = None, user_agent: str | None = None) -> dict:
    """Issue a fresh code for a college email and mail it. The code is never returned."""
    email = (email or "").strip().lower()
    validation = require_college_email(email)
    check_rate_limit(email, ip_address, user_agent)

    code = generate_otp()
    expires_in = settings.otp_expiry_minutes * 60

    # At most one live code per email
    OTP.objects(email=email).delete()
    OTP(
        email=email,
        code_hash=hash_code(code),
        expires_at=utcnow() + timedelta(seconds=expires_in),
        institution=validation.institution,
        domain=validation.domain,
        ip_address=ip_address,
        user_agent=user_agent,
    ).save()

    if settings.debug:
        logger.warning("[DEV] OTP for %s (%s): %s", email, validation.institution, code)

    dispatch_otp_email(email, code, validation.institution)
    return {
        "message": "OTP sent successfully to your college email",
        "institution": validation.institution,
        "expires_in": expires_in,
    }


def verify_otp(email: str, code: str) -> dict:
    """Verify the latest unused code for an email and sign the user in."""
    email = (email or "").strip().lower()
    max_attempts = settings.otp_max_attempts

    otp: OTP | None = OTP.objects(email=email, is_verified=False).order_by("-created_at").first()
    if not otp:
        raise AppError(ErrorKind.OTP_NOT_FOUND, "OTP not found or already used. Please request a new one.")

    if otp.is_expired():
        otp.delete()
        raise AppError(ErrorKind.OTP_EXPIRED, "OTP has expired. Please request a new one.", action="request_new_otp")

    if otp.attempts >= max_attempts:
        otp.delete()
        raise AppError(
            ErrorKind.OTP_EXHAUSTED,
            "Maximum verification attempts exceeded. Please request a new OTP.",
            action="request_new_otp",
        )

    if not otp.matches(code):
        attempts = otp.increment_attempts()
        remaining = max(max_attempts - attempts, 0)
        if remaining == 0:
            otp.delete()
        raise AppError(
            ErrorKind.OTP_MISMATCH,
            f"Invalid OTP. {remaining} attempts remaining.",
            remainingAttempts=remaining,
            action="retry_verification" if remaining else "request_new_otp",
        )

    otp.mark_as_verified()
    user, token = sign_in(email=email, institution=otp.institution, domain=otp.domain)
    logger.info("User verified: %s from %s", email, otp.institution)
    return {"message": "OTP verified successfully", "token": token, "user": user}


__all__ = [
    "EmailValidation",
    "check_rate_limit",
    "college_name",
    "generate_otp",
    "institution_mapping",
    "is_supported_domain",
    "load_college_domains",
    "require_college_email",
    "send_otp",
    "supported_domains",
    "validate_college_email",
    "verify_otp",
]
