from typing import Any

from app.utils.base import BaseEnum


class ErrorKind(BaseEnum):
    INVALID_EMAIL = "INVALID_EMAIL"
    UNSUPPORTED_DOMAIN = "UNSUPPORTED_DOMAIN"
    RATE_LIMITED = "RATE_LIMITED"
    OTP_NOT_FOUND = "OTP_NOT_FOUND"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_EXHAUSTED = "OTP_EXHAUSTED"
    OTP_MISMATCH = "OTP_MISMATCH"
    INVALID_TOKEN = "INVALID_TOKEN"
    MAGIC_LINK_INVALID = "MAGIC_LINK_INVALID"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    BID_EXISTS = "BID_EXISTS"
    INVALID_BID = "INVALID_BID"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    VALIDATION = "VALIDATION"


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_EMAIL: 400,
    ErrorKind.UNSUPPORTED_DOMAIN: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.OTP_NOT_FOUND: 400,
    ErrorKind.OTP_EXPIRED: 400,
    ErrorKind.OTP_EXHAUSTED: 429,
    ErrorKind.OTP_MISMATCH: 400,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.MAGIC_LINK_INVALID: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.BID_EXISTS: 409,
    ErrorKind.INVALID_BID: 400,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.VALIDATION: 400,
}


class AppError(Exception):
    """Domain error tagged with an `ErrorKind`.

    Callers branch on `kind`, never on the message. `details` is merged into
    the JSON error envelope.
    """

    def __init__(self, kind: ErrorKind, message: str, **details: Any) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND.get(self.kind, 500)

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "code": self.kind.value, **self.details}

    def __repr__(self) -> str:
        return f"AppError({self.kind.value}, {self.message!r})"
