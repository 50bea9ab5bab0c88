from fastapi import FastAPI
from contextlib import AsyncExitStack

from app.connections import mongo_lifespan
from app.connections.redis import redis_lifespan
from app.api.anonymous import router as anonymous_router
from app.api.auth import router as auth_router
from app.api.health import router as health_router
from app.api.review import router as review_router
from app.api.skill import router as skill_router
from app.api.task import router as task_router
from app.api.user import router as user_router
from app.services.otp import load_college_domains
from app.utils.config import settings
from app.utils.errors.handlers import register_exception_handlers
from app.utils.logging import RequestLoggingMiddleware, configure_logging


async def combined_lifespan(app: FastAPI):
    configure_logging()
    load_college_domains()
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(mongo_lifespan(app))
        await stack.enter_async_context(redis_lifespan(app))

        yield


app = FastAPI(title=f"{settings.app_name} API", version="1.0.0", lifespan=combined_lifespan)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

api_prefix = f"/api/{settings.api_version}"

app.include_router(auth_router, prefix=f"{api_prefix}/auth")
app.include_router(auth_router, prefix="/api/auth", include_in_schema=False)
app.include_router(task_router, prefix=f"{api_prefix}/tasks")
app.include_router(review_router, prefix=f"{api_prefix}/reviews")
app.include_router(user_router, prefix=f"{api_prefix}/users")
app.include_router(skill_router, prefix=f"{api_prefix}/skills")
app.include_router(anonymous_router, prefix=f"{api_prefix}/anonymous")
app.include_router(health_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=settings.debug)
