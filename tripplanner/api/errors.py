"""Maps the error taxonomy onto HTTP responses."""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tripplanner.errors import (
    ConflictingExecutionError,
    InvalidRecommendationError,
    NotFoundError,
    NotReadyError,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def error_body(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, **extra}}


def _field_name(location: tuple[Any, ...]) -> str:
    # Drop the "body"/"query"/"path" prefix FastAPI puts first
    parts = [str(part) for part in location[1:]] or [str(p) for p in location]
    return ".".join(parts)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": _field_name(tuple(error.get("loc", ()))), "message": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("validation_error", "Request validation failed", details=details),
    )


async def handle_validation(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("validation_error", str(exc), details=exc.details),
    )


async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND, content=error_body("not_found", str(exc))
    )


async def handle_invalid_recommendation(
    request: Request, exc: InvalidRecommendationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("invalid_recommendation", str(exc)),
    )


async def handle_not_ready(request: Request, exc: NotReadyError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body(
            "not_ready",
            str(exc),
            producer_type=exc.producer_type,
            producer_status=exc.producer_status,
        ),
    )


async def handle_conflict(request: Request, exc: ConflictingExecutionError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body("conflicting_execution", str(exc)),
    )


async def handle_persistence(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(
        f"Persistence error on {request.method} {request.url.path}: {exc}",
        extra={"structured": {"method": request.method, "path": request.url.path}},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("persistence_error", "Storage operation failed"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(
        RequestValidationError, handle_request_validation  # type: ignore[arg-type]
    )
    app.add_exception_handler(ValidationError, handle_validation)  # type: ignore[arg-type]
    app.add_exception_handler(NotFoundError, handle_not_found)  # type: ignore[arg-type]
    app.add_exception_handler(
        InvalidRecommendationError, handle_invalid_recommendation  # type: ignore[arg-type]
    )
    app.add_exception_handler(NotReadyError, handle_not_ready)  # type: ignore[arg-type]
    app.add_exception_handler(ConflictingExecutionError, handle_conflict)  # type: ignore[arg-type]
    app.add_exception_handler(PersistenceError, handle_persistence)  # type: ignore[arg-type]
