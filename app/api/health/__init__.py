from datetime import datetime, timezone

from fastapi import APIRouter

from app.connections.mongo import mongo_status
from app.connections.redis import redis_status
from app.utils.config import settings


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """PUBLIC: Liveness plus the state of each backing store."""
    database = mongo_status()
    cache = redis_status()
    healthy = database in ("connected", "skipped") and cache == "connected"
    return {
        "status": "ok" if healthy else "degraded",
        "service": settings.app_name,
        "environment": settings.environment,
        "database": database,
        "redis": cache,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
