"""
Translation of engine exceptions to HTTP responses.

Every error body has the shape ``{"error": {"code", "category", "message",
...structured fields}}``; the status code is chosen by the exception's
``category``.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from patronage_kernel.exceptions import PatronageEngineError
from patronage_kernel.logging_config import get_logger

logger = get_logger("api.errors")

STATUS_BY_CATEGORY: dict[str, int] = {
    "not_found": 404,
    "duplicate": 409,
    "conflict": 409,
    "invalid": 422,
    "insufficient_data": 422,
    "unavailable": 503,
    "internal": 500,
}


def status_for(exc: PatronageEngineError) -> int:
    return STATUS_BY_CATEGORY.get(exc.category, 500)


async def patronage_error_handler(request: Request, exc: PatronageEngineError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "request_failed",
        extra={
            "path": request.url.path,
            "status_code": status_code,
            "error_code": exc.code,
        },
    )
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "INVALID_REQUEST",
                "category": "invalid",
                "message": str(exc),
            }
        },
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "INVALID_REQUEST",
                "category": "invalid",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PatronageEngineError, patronage_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
