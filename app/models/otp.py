from datetime import datetime

from mongoengine import BooleanField, DateTimeField, IntField, StringField
from passlib.context import CryptContext

from app.models.base import BaseDocument, as_utc, utcnow
from app.utils.config import settings


otp_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.otp_hash_rounds)


def hash_code(code: str) -> str:
    return otp_context.hash(code)


class OTP(BaseDocument):
    """One-time login code for a college email.

    Fields:
    - email (str): lower-cased recipient
    - code_hash (str): bcrypt hash of the 6-digit code; the code itself is never stored
    - expires_at (datetime): TTL index removes the row once passed
    - attempts (int 0-3): failed verifications so far
    - is_verified (bool): set once the code has been used
    - institution/domain (str): resolved from the email at send time
    - ip_address/user_agent (str|None): requester fingerprint
    At most one row per email: older rows are deleted before a new one is inserted.
    """
    email = StringField(required=True, null=False)
    code_hash = StringField(required=True, null=False)
    expires_at = DateTimeField(required=True, null=False)
    attempts = IntField(required=True, null=False, default=0, min_value=0, max_value=settings.otp_max_attempts)
    is_verified = BooleanField(required=True, null=False, default=False)
    institution = StringField(required=False, null=True)
    domain = StringField(required=True, null=False)
    ip_address = StringField(required=False, null=True)
    user_agent = StringField(required=False, null=True)

    private_fields = ("code_hash",)

    meta = {
        "collection": "otps",
        "indexes": [
            {"fields": ["email", "-created_at"]},
            {"fields": ["expires_at"], "expireAfterSeconds": 0},
        ],
    }

    def clean(self):
        if self.email:
            self.email = self.email.strip().lower()

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > as_utc(self.expires_at)

    def matches(self, code: str) -> bool:
        return otp_context.verify(str(code), self.code_hash)

    def increment_attempts(self) -> int:
        self.attempts = int(self.attempts or 0) + 1
        self.save()
        return self.attempts

    def mark_as_verified(self) -> None:
        self.is_verified = True
        self.save()


class OTPRequest(BaseDocument):
    """Audit row written for every accepted OTP / magic-link send.

    The hourly send limit counts these rows; they expire after the window.
    """
    email = StringField(required=True, null=False)
    ip_address = StringField(required=False, null=True)
    user_agent = StringField(required=False, null=True)

    meta = {
        "collection": "otp_requests",
        "indexes": [
            {"fields": ["email", "created_at"]},
            {"fields": ["created_at"], "expireAfterSeconds": settings.otp_rate_limit_window_minutes * 60},
        ],
    }
