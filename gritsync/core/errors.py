import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gritsync.core.classifier import AppError, ErrorType, log_error

logger = logging.getLogger("gritsync.errors")

STATUS_BY_TYPE = {
    ErrorType.VALIDATION: 400,
    ErrorType.CLIENT: 400,
    ErrorType.AUTHENTICATION: 401,
    ErrorType.AUTHORIZATION: 403,
    ErrorType.NOT_FOUND: 404,
    ErrorType.RATE_LIMIT: 429,
    ErrorType.SERVER: 502,
    ErrorType.NETWORK: 503,
    ErrorType.TIMEOUT: 504,
    ErrorType.UNKNOWN: 500,
}


def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # exc.detail is meant for clients; path only in the log
    logger.info("HTTPException %s path=%s", exc.status_code, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("ValidationError path=%s", request.url.path)
    return JSONResponse(status_code=422, content={"detail": "Invalid request"})


def app_error_handler(request: Request, exc: AppError):
    log_error(exc, {"path": request.url.path, **exc.context})
    return JSONResponse(
        status_code=STATUS_BY_TYPE.get(exc.type, 500),
        content={
            "detail": str(exc),
            "type": exc.type.value,
            "retryable": exc.retryable,
        },
    )


def unhandled_exception_handler(request: Request, exc: Exception):
    # stack trace server-side, generic message client-side
    logger.exception("UnhandledException path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
