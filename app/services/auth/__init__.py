import logging
from datetime import datetime, timezone

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from pydantic import BaseModel

from app.models.user import College, User
from app.utils.base import parse_duration
from app.utils.config import settings
from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class TokenClaims(BaseModel):
    """Claims carried by every access token."""
    sub: str
    email: str
    institution: str | None = None
    domain: str | None = None
    verified: bool = True
    tv: str
    typ: str = "access"
    iat: int
    exp: int


def create_token(user: User) -> str:
    """Create a signed JWT for a user with its identity and token version."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "institution": user.institution,
        "domain": user.domain,
        "verified": bool(user.is_verified),
        "tv": user.token_version,
        "typ": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + parse_duration(settings.jwt_expires_in)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> TokenClaims:
    """Decode and validate a token; any failure is INVALID_TOKEN."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        claims = TokenClaims(**payload)
    except (JWTError, ValueError) as exc:
        logger.debug("Token rejected: %s", exc)
        raise AppError(ErrorKind.INVALID_TOKEN, "Invalid or expired token")
    if claims.typ != "access":
        raise AppError(ErrorKind.INVALID_TOKEN, "Invalid or expired token")
    return claims


def user_for_token(token: str) -> User:
    """Resolve the user behind a token, rejecting revoked tokens and inactive accounts."""
    claims = verify_token(token)
    user: User | None = User.objects(id=claims.sub).first()
    if not user or user.token_version != claims.tv:
        raise AppError(ErrorKind.INVALID_TOKEN, "Invalid or expired token")
    if not user.is_active:
        raise AppError(ErrorKind.FORBIDDEN, "Account has been deactivated")
    return user


def refresh_token(token: str) -> str:
    """Reissue a token with the same claim shape for a still-valid token."""
    return create_token(user_for_token(token))


def revoke_tokens(user: User) -> None:
    # Bump token_version so existing tokens become invalid immediately
    user.token_version = str(int(user.token_version) + 1)
    user.save()


def session_user(user: User) -> dict:
    """User payload returned alongside a token."""
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "first_name": user.email.split("@")[0].split(".")[0].capitalize(),
        "institution": user.institution,
        "domain": user.domain,
        "verified": bool(user.is_verified),
        "karma_score": user.karma_score,
        "trust_level": user.trust_level,
        "stats": {
            "tasks_completed": user.tasks_completed,
            "tasks_posted": user.tasks_posted,
            "total_earnings": user.total_earnings,
            "average_rating": user.average_rating,
        },
        "joined_at": user.to_output(fields=["created_at"])["created_at"],
        "last_login": user.to_output(fields=["last_login"])["last_login"],
    }


def sign_in(email: str, institution: str | None, domain: str | None) -> tuple[dict, str]:
    """Find or create the verified user for an email and issue a token."""
    user: User | None = User.objects(email=email).first()
    if user is None:
        user = User(email=email, college=College(name=institution or domain, domain=domain), is_verified=True)
        logger.info("Created user %s from %s", email, institution)
    elif not user.is_active:
        raise AppError(ErrorKind.FORBIDDEN, "Account has been deactivated")

    user.is_verified = True
    user.last_login = datetime.now(timezone.utc)
    user.last_active = user.last_login
    user.save()
    return session_user(user), create_token(user)


def get_bearer_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str:
    if credentials is None or not credentials.credentials:
        raise AppError(ErrorKind.INVALID_TOKEN, "No token provided")
    return credentials.credentials


def get_current_user(token: str = Depends(get_bearer_token)) -> User:
    """Auth dependency that validates an access token and returns the user."""
    user = user_for_token(token)
    user.last_active = datetime.now(timezone.utc)
    user.save()
    return user
