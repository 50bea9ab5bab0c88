import logging
import logging.config
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.utils.config import settings


logger = logging.getLogger("app.requests")


def configure_logging(level: str | None = None) -> None:
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {"format": "%(levelname)s %(asctime)s %(name)s %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "simple"},
        },
        "root": {"handlers": ["console"], "level": (level or settings.log_level).upper()},
    })


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        logger.debug("REQ START %s %s", request.method, request.url.path)
        response = await call_next(request)
        duration = (time.perf_counter() - started) * 1000.0
        logger.debug("REQ END %s %s %s %.2fms", request.method, request.url.path, response.status_code, duration)
        return response
