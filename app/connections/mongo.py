import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import certifi
from fastapi import FastAPI
from mongoengine import connect, disconnect
from mongoengine.connection import ConnectionFailure, get_connection
from pymongo.errors import PyMongoError

from app.utils.config import settings


logger = logging.getLogger(__name__)


def init_mongo() -> bool:
    """Connect the default mongoengine alias. Returns False when SKIP_DB is set."""
    if settings.skip_db:
        logger.warning("SKIP_DB is set; starting without a database")
        return False
    if not settings.mongodb_uri and settings.is_production:
        raise RuntimeError("MONGODB_URI is required in production")

    kwargs = {"tz_aware": True}
    if settings.mongo_uri.startswith("mongodb+srv://") or "tls=true" in settings.mongo_uri:
        kwargs["tlsCAFile"] = certifi.where()
    connect(host=settings.mongo_uri, alias="default", **kwargs)
    logger.info("Connected to MongoDB database %s", settings.mongo_db)
    return True


def close_mongo() -> None:
    disconnect(alias="default")


def mongo_status() -> str:
    if settings.skip_db:
        return "skipped"
    try:
        get_connection(alias="default").admin.command("ping")
    except ConnectionFailure:
        return "disconnected"
    except PyMongoError as exc:
        logger.warning("MongoDB ping failed: %s", exc)
        return "disconnected"
    return "connected"


@asynccontextmanager
async def mongo_lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_mongo()
    try:
        yield
    finally:
        close_mongo()
