"""Learner progress API endpoints.

Provides routes for:
- Step progress updates (sent by the step-navigation UI)
- Lesson completion
- Resume state, lesson details and module progress
- Identifier resolution
- Per-user overview

The learner is identified by the X-User-Id header set by the gateway.
"""

from fastapi import APIRouter, HTTPException, Query, status

from .dependencies import CurrentUserId, ProgressServiceDep, handle_progress_error
from .schemas import (
    LessonDetail,
    MarkLessonCompleteRequest,
    ModuleProgressDetail,
    ProgressOverview,
    ResolvedIdentifier,
    ResumeState,
    StepResult,
    UpdateStepProgressRequest,
)
from .service import ProgressError


router = APIRouter(prefix="/v1/progress", tags=["progress"])


# ==============================================================================
# Write Endpoints
# ==============================================================================


@router.put(
    "/steps",
    response_model=StepResult,
    summary="Update step progress",
)
async def update_step_progress(
    data: UpdateStepProgressRequest,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> StepResult:
    """Record the learner's current step in a lesson.

    Out-of-range step indexes are clamped. Safe to repeat; a 409 response
    carries Retry-After.
    """
    try:
        return await progress_service.update_step_progress(
            user_id=user_id,
            module_id=data.module_id,
            lesson_id=data.lesson_id,
            current_step_index=data.current_step_index,
            total_steps=data.total_steps,
            time_spent_delta=data.time_spent_delta,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.post(
    "/lessons/complete",
    response_model=StepResult,
    summary="Mark lesson complete",
)
async def mark_lesson_complete(
    data: MarkLessonCompleteRequest,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> StepResult:
    """Mark a lesson complete; completes the module when it was the last one."""
    try:
        return await progress_service.mark_lesson_complete(
            user_id=user_id,
            module_id=data.module_id,
            lesson_id=data.lesson_id,
            total_steps=data.total_steps,
            time_spent_delta=data.time_spent_delta,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e


# ==============================================================================
# Read Endpoints
# ==============================================================================


@router.get(
    "/modules/{module_id}/resume",
    response_model=ResumeState,
    summary="Get resume state",
)
async def get_resume_state(
    module_id: str,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> ResumeState:
    try:
        return await progress_service.get_resume_state(user_id, module_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/modules/{module_id}",
    response_model=ModuleProgressDetail,
    summary="Get module progress",
)
async def get_module_progress(
    module_id: str,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> ModuleProgressDetail:
    try:
        return await progress_service.get_module_progress(user_id, module_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/lessons/{lesson_id}",
    response_model=LessonDetail,
    summary="Get lesson progress details",
)
async def get_lesson_progress_details(
    lesson_id: str,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
    module_id: str = Query(..., min_length=1, description="Module id"),
) -> LessonDetail:
    """Lesson progress; a lesson never started returns zero defaults."""
    try:
        return await progress_service.get_lesson_progress_details(user_id, module_id, lesson_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/resolve/{supplied_id}",
    response_model=ResolvedIdentifier,
    summary="Resolve lesson identifier",
)
async def resolve_identifier(
    supplied_id: str,
    progress_service: ProgressServiceDep,
    _user_id: CurrentUserId,
    module_hint: str | None = Query(None, description="Module to accept unknown ids under"),
) -> ResolvedIdentifier:
    resolved = await progress_service.resolve_identifier(supplied_id, module_hint=module_hint)
    if resolved is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "resolution_failed",
                "message": f"Lesson identifier could not be resolved: {supplied_id}",
            },
        )
    return resolved


@router.get(
    "/overview",
    response_model=ProgressOverview,
    summary="Get progress overview",
)
async def get_progress_overview(
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> ProgressOverview:
    """Aggregate progress across all modules the learner has started."""
    return await progress_service.get_user_progress_overview(user_id)
