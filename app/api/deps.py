"""Shared API dependencies and error mapping."""

from fastapi import HTTPException, Request, status

from app.core.errors import (
    EngineError,
    GenerationFailure,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from app.core.logging import get_logger
from app.services.engine import Engine

logger = get_logger(__name__)

STATUS_BY_ERROR: list[tuple[type[EngineError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (GenerationFailure, status.HTTP_502_BAD_GATEWAY),
]


def get_engine(request: Request) -> Engine:
    """The engine started by the application lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not started",
        )
    return engine


def http_error(error: Exception, action: str) -> HTTPException:
    """Translate a domain error into an HTTPException; unknown errors become 500."""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))

    logger.exception(f"Failed to {action}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )
