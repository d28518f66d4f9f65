"""
Custom exception handlers for FastAPI.
Maps domain errors onto status codes and keeps storage details out of responses.
"""

import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_500_INTERNAL_SERVER_ERROR

from receiptbox.core.exceptions import BulkOperationError, StorageError
from receiptbox.core.observability import sentry_capture

logger = logging.getLogger(__name__)


def bulk_operation_exception_handler(request: Request, exc: BulkOperationError):
    # The original storage error was already logged where it was wrapped
    if isinstance(exc, StorageError):
        sentry_capture(exc.__cause__ or exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # 401 / 429 / 503 from dependencies; Retry-After and friends must survive
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    sentry_capture(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )

# Usage in main.py:
# app.add_exception_handler(BulkOperationError, bulk_operation_exception_handler)
# app.add_exception_handler(StarletteHTTPException, http_exception_handler)
# app.add_exception_handler(RequestValidationError, validation_exception_handler)
# app.add_exception_handler(Exception, generic_exception_handler)
