from __future__ import annotations

from typing import Optional

from app.connections.redis import get_redis


def cache_set(key: str, value: str, ttl_seconds: int | None = None) -> bool:
    client = get_redis()
    if ttl_seconds is None:
        return bool(client.set(name=key, value=value))
    return bool(client.setex(name=key, time=ttl_seconds, value=value))


def cache_pop(key: str) -> Optional[str]:
    """Read and delete a key in one round trip."""
    client = get_redis()
    pipe = client.pipeline()
    pipe.get(key)
    pipe.delete(key)
    value, _ = pipe.execute()
    return value