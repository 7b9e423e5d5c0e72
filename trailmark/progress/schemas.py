"""Pydantic schemas for learner progress.

Request and response models for:
- Step progress updates and lesson completion
- Resume state and lesson details
- Identifier resolution
- Module and per-user aggregates
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .models import LessonProgress


# ==============================================================================
# Write Schemas
# ==============================================================================


class UpdateStepProgressRequest(BaseModel):
    """Request to record the learner's current step in a lesson."""

    module_id: str = Field(..., min_length=1, description="Module id")
    lesson_id: str = Field(..., min_length=1, description="Lesson id (canonical or legacy)")
    current_step_index: int = Field(
        ..., description="Zero-based step index; clamped into range, never rejected"
    )
    total_steps: int = Field(..., ge=1, description="Step count seen by the client")
    time_spent_delta: int = Field(0, ge=0, description="Seconds spent since last report")


class MarkLessonCompleteRequest(BaseModel):
    """Request to mark a lesson complete."""

    module_id: str = Field(..., min_length=1)
    lesson_id: str = Field(..., min_length=1)
    total_steps: int = Field(..., ge=1)
    time_spent_delta: int = Field(0, ge=0)


class StepResult(BaseModel):
    """Outcome of a step write or lesson completion."""

    module_id: str
    lesson_id: str
    current_step_index: int
    total_steps: int
    completed: bool
    progress_percentage: int = Field(description="0-100, floor")
    module_completed: bool = False
    next_lesson_id: str | None = None


# ==============================================================================
# Read Schemas
# ==============================================================================


class ResumeState(BaseModel):
    """Where a learner should continue within a module."""

    module_id: str
    current_lesson_id: str
    current_step_index: int
    total_steps_in_lesson: int
    module_progress: int = Field(description="0-100, floor of completed/total lessons")
    total_lessons: int
    completed_lessons: int
    is_module_complete: bool
    last_accessed_at: datetime | None = None


class LessonDetail(BaseModel):
    """Progress details for one lesson, zero defaults if not started."""

    module_id: str
    lesson_id: str
    current_step_index: int
    total_steps: int
    completed: bool
    time_spent: int
    last_accessed_at: datetime | None = None
    progress_percentage: int
    started: bool

    @classmethod
    def from_entity(cls, entity: LessonProgress, started: bool) -> "LessonDetail":
        """Create response from entity."""
        return cls(
            module_id=entity.module_id,
            lesson_id=entity.lesson_id,
            current_step_index=entity.current_step_index,
            total_steps=entity.total_steps,
            completed=entity.completed,
            time_spent=entity.time_spent,
            last_accessed_at=entity.last_accessed_at,
            progress_percentage=entity.progress_percentage if started else 0,
            started=started,
        )


class LessonProgressSummary(BaseModel):
    """Lesson progress summary inside a module view."""

    lesson_id: str
    order: int
    current_step_index: int
    total_steps: int
    completed: bool
    time_spent: int
    progress_percentage: int


class ModuleProgressDetail(BaseModel):
    """Module statistics plus per-lesson summaries in authored order."""

    module_id: str
    total_lessons: int
    completed_lessons: int
    module_progress: int
    time_spent: int
    is_module_complete: bool
    completed_at: datetime | None = None
    last_accessed_lesson_id: str | None = None
    last_accessed_at: datetime | None = None
    lessons: list[LessonProgressSummary] = Field(default_factory=list)


# ==============================================================================
# Identifier Resolution
# ==============================================================================


class IdentifierSource(str, Enum):
    """Which resolution rule matched."""

    CANONICAL = "canonical"
    LEGACY = "legacy"
    REVERSE = "reverse"
    MODULE_HINT = "module_hint"


class ResolvedIdentifier(BaseModel):
    """Canonical (module, lesson) pair for a supplied identifier."""

    module_id: str
    lesson_id: str
    source: IdentifierSource


# ==============================================================================
# Overview Schemas
# ==============================================================================


class ModuleOverviewEntry(BaseModel):
    """One module in the per-user overview."""

    module_id: str
    completed_lessons: int
    time_spent: int
    is_module_complete: bool
    last_accessed_lesson_id: str | None = None
    last_accessed_at: datetime | None = None


class LastActivity(BaseModel):
    module_id: str
    lesson_id: str | None = None
    accessed_at: datetime


class ProgressOverview(BaseModel):
    """Aggregate progress across every module a user has touched."""

    modules_started: int = 0
    modules_completed: int = 0
    lessons_completed: int = 0
    total_time_spent: int = 0
    last_activity: LastActivity | None = None
    modules: list[ModuleOverviewEntry] = Field(default_factory=list)
