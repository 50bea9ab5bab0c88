import logging
import redis
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from fastapi import FastAPI

from app.utils.config import settings


logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    assert _redis_client is not None, "Redis not initialized"
    return _redis_client


def set_redis(client: Optional[redis.Redis]) -> None:
    """Install an already-built client (worker processes, tests)."""
    global _redis_client
    _redis_client = client


def init_redis() -> None:
    global _redis_client
    _redis_client = redis.Redis(
        db=settings.redis_db,
        port=settings.redis_port,
        host=settings.redis_host,
        password=settings.redis_password,
        decode_responses=True,
        socket_timeout=2.0,
    )


def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        try:
            _redis_client.close()
        finally:
            _redis_client = None


def redis_status() -> str:
    if _redis_client is None:
        return "disconnected"
    try:
        _redis_client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis ping failed: %s", exc)
        return "disconnected"
    return "connected"


@asynccontextmanager
async def redis_lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_redis()
    try:
        yield
    finally:
        close_redis()
