from __future__ import annotations
from fastapi import Depends, Request

from app.connections.redis import get_redis
from app.services.auth import get_current_user
from app.models.user import User
from app.utils.errors import AppError, ErrorKind


def _hit(key: str, max_requests: int, window_seconds: int) -> None:
    client = get_redis()
    count = int(client.incr(key))
    if count == 1:
        client.expire(key, window_seconds)
    if count > max_requests:
        ttl = client.ttl(key)
        wait = ttl if ttl and ttl > 0 else window_seconds
        raise AppError(ErrorKind.RATE_LIMITED, f"Rate limited. Try again in {wait}s", retryAfter=wait)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def limit_route(max_requests: int, window_seconds: int):
    """Return a FastAPI dependency allowing a user N calls to a route per window.

    Fixed window in Redis: the first hit sets the TTL, later hits only count.
    """

    def _dependency(request: Request, current_user: User = Depends(get_current_user)) -> User:
        _hit(f"rl:{current_user.id}:{request.url.path}", max_requests, window_seconds)
        return current_user

    return _dependency


def limit_ip(max_requests: int, window_seconds: int):
    """Same as limit_route, keyed on the client address for unauthenticated routes."""

    def _dependency(request: Request) -> None:
        _hit(f"rl:ip:{client_ip(request)}:{request.url.path}", max_requests, window_seconds)

    return _dependency
