import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from mongoengine import NotUniqueError, ValidationError
from starlette.exceptions import HTTPException

from app.utils.errors import AppError, ErrorKind


logger = logging.getLogger(__name__)


def _envelope(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, "code": code, **extra})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = _envelope(exc.status_code, str(exc.detail), "HTTP_ERROR")
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return _envelope(400, "Validation failed", ErrorKind.VALIDATION.value, errors=errors)


async def document_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    errors = [{"field": field, "message": str(err)} for field, err in (exc.to_dict() or {}).items()]
    return _envelope(400, exc.message or "Validation failed", ErrorKind.VALIDATION.value, errors=errors)


async def not_unique_handler(request: Request, exc: NotUniqueError) -> JSONResponse:
    return _envelope(409, "Resource already exists", ErrorKind.CONFLICT.value)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, document_validation_handler)
    app.add_exception_handler(NotUniqueError, not_unique_handler)
