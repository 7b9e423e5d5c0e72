"""FastAPI dependencies for progress tracking.

Provides dependency injection for:
- Progress service
- Current learner id (from the gateway's X-User-Id header)
- Error handlers
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from trailmark.core.context import set_user_id

from .service import (
    ProgressError,
    ProgressService,
)


# Seconds a client should wait before repeating a conflicted write
RETRY_AFTER_SECONDS = "1"


async def get_progress_service(request: Request) -> ProgressService:
    """Get progress service from app state.

    Args:
        request: FastAPI request

    Returns:
        ProgressService instance
    """
    app_state = request.app.state
    if not hasattr(app_state, "progress_service") or not app_state.progress_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress service not available",
        )
    return app_state.progress_service


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> UUID:
    """Learner id asserted by the authenticating gateway."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        user_id = UUID(x_user_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        ) from e

    set_user_id(user_id)
    return user_id


# Type aliases for dependency injection
ProgressServiceDep = Annotated[ProgressService, Depends(get_progress_service)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]


def handle_progress_error(error: ProgressError) -> HTTPException:
    """Convert progress errors to HTTP exceptions.

    Args:
        error: Progress error

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "validation_error": status.HTTP_422_UNPROCESSABLE_CONTENT,
        "not_found": status.HTTP_404_NOT_FOUND,
        "resolution_failed": status.HTTP_404_NOT_FOUND,
        "retryable": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    headers = {"Retry-After": RETRY_AFTER_SECONDS} if error.code == "retryable" else None

    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": error.message},
        headers=headers,
    )
