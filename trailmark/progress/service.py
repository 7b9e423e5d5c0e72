"""Learner progress service layer.

Business logic for:
- Step progress updates with clamping and additive time
- Lesson completion with module completion cascade
- Resume state and lesson details (zero defaults, never not-found)
- Identifier resolution across content migration generations
- Module and per-user aggregates
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from uuid import UUID

import structlog

from trailmark.content import CatalogLesson, ContentCatalog
from trailmark.core.context import LearnerContext

from .cache import ProgressCache
from .events import CompletionEvent, CompletionEventEmitter, CompletionKind
from .models import (
    LessonProgress,
    ModuleProgress,
    ModuleSnapshot,
    clamp_step_index,
    floor_percentage,
    lookup_lesson,
    step_percentage,
)
from .resolver import IdentifierResolver
from .schemas import (
    LastActivity,
    LessonDetail,
    LessonProgressSummary,
    ModuleOverviewEntry,
    ModuleProgressDetail,
    ProgressOverview,
    ResolvedIdentifier,
    ResumeState,
    StepResult,
)
from .store import ProgressStore, WriteContentionError


logger = structlog.get_logger(__name__)

OVERVIEW_CACHE_NAME = "overview"


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(ProgressError):
    """Malformed write input."""

    def __init__(self, message: str = "Invalid progress input"):
        super().__init__(message, "validation_error")


class NotFoundError(ProgressError):
    """Unknown or inactive module or lesson."""

    def __init__(self, message: str = "Module or lesson not found"):
        super().__init__(message, "not_found")


class RetryableError(ProgressError):
    """Concurrent write conflict; the call is safe to repeat."""

    def __init__(self, message: str = "Progress was modified concurrently, retry"):
        super().__init__(message, "retryable")


class ResolutionFailedError(ProgressError):
    """Identifier could not be mapped to a canonical lesson."""

    def __init__(self, message: str = "Lesson identifier could not be resolved"):
        super().__init__(message, "resolution_failed")


# ==============================================================================
# Write Plans
# ==============================================================================


@dataclass(slots=True)
class WritePlan:
    """New partition state computed from one snapshot."""

    module: ModuleProgress
    lesson: LessonProgress
    events: list[CompletionEvent] = field(default_factory=list)
    module_completed_now: bool = False


Planner = Callable[[ModuleSnapshot, datetime], WritePlan]


def _touch(
    snapshot: ModuleSnapshot,
    lesson_id: str,
    step_index: int,
    total_steps: int,
    time_spent_delta: int,
    now: datetime,
) -> tuple[ModuleProgress, LessonProgress]:
    """Module and lesson state after a step write, before completion rules."""
    module = snapshot.module
    new_module = replace(
        module,
        version=module.version + 1,
        time_spent=module.time_spent + time_spent_delta,
        last_accessed_lesson_id=lesson_id,
        last_accessed_at=now,
    )

    existing = snapshot.lessons.get(lesson_id)
    if existing is None:
        lesson = LessonProgress(
            user_id=module.user_id,
            module_id=module.module_id,
            lesson_id=lesson_id,
            current_step_index=step_index,
            total_steps=total_steps,
            time_spent=time_spent_delta,
            last_accessed_at=now,
            created_at=now,
        )
    else:
        lesson = replace(
            existing,
            current_step_index=step_index,
            total_steps=total_steps,
            time_spent=existing.time_spent + time_spent_delta,
            last_accessed_at=now,
        )
    return new_module, lesson


def _next_lesson_id(active: list[CatalogLesson], lesson_id: str) -> str | None:
    ids = [lesson.lesson_id for lesson in active]
    if lesson_id not in ids:
        return None
    position = ids.index(lesson_id)
    return ids[position + 1] if position + 1 < len(ids) else None


def _validate_write(total_steps: int, time_spent_delta: int) -> None:
    if total_steps < 1:
        raise ValidationError(f"total_steps must be at least 1, got {total_steps}")
    if time_spent_delta < 0:
        raise ValidationError(f"time_spent_delta must not be negative, got {time_spent_delta}")


# ==============================================================================
# Progress Service
# ==============================================================================


class ProgressService:
    """Service for learner progress tracking."""

    def __init__(
        self,
        store: ProgressStore,
        catalog: ContentCatalog,
        resolver: IdentifierResolver | None = None,
        cache: ProgressCache | None = None,
        emitter: CompletionEventEmitter | None = None,
        write_retries: int = 1,
    ):
        """Initialize with storage and collaborators.

        Args:
            store: Progress persistence
            catalog: Curriculum metadata
            resolver: Identifier resolver (defaults to one over ``catalog``)
            cache: Per-user aggregate cache (defaults to pass-through)
            emitter: Completion event emitter (events are only logged if None)
            write_retries: Internal retries after a concurrent write conflict
        """
        self.store = store
        self.catalog = catalog
        self.resolver = resolver or IdentifierResolver(catalog)
        self.cache = cache or ProgressCache(None)
        self.emitter = emitter
        self.write_retries = write_retries

    # ==========================================================================
    # Identifier Resolution
    # ==========================================================================

    async def resolve_identifier(
        self, supplied_id: str, module_hint: str | None = None
    ) -> ResolvedIdentifier | None:
        """Map a canonical or legacy lesson id to its (module, lesson) pair."""
        return await self.resolver.resolve(supplied_id, module_hint=module_hint)

    async def _resolve_lesson(self, module_id: str, lesson_id: str) -> ResolvedIdentifier:
        resolved = await self.resolver.resolve(lesson_id, module_hint=module_id)
        if resolved is None:
            raise ResolutionFailedError(f"Lesson identifier could not be resolved: {lesson_id}")

        if resolved.module_id != module_id:
            # The content mapping is authoritative over the client's module id
            logger.warning(
                "identifier_module_mismatch",
                supplied_module_id=module_id,
                resolved_module_id=resolved.module_id,
                lesson_id=resolved.lesson_id,
                source=resolved.source.value,
            )
        return resolved

    async def _resolve_for_write(self, module_id: str, lesson_id: str) -> ResolvedIdentifier:
        """Resolve and check the target module and lesson are active."""
        resolved = await self._resolve_lesson(module_id, lesson_id)

        if not await self.catalog.module_exists(resolved.module_id):
            raise NotFoundError(f"Module not found: {resolved.module_id}")

        # Unknown lessons pass only via reverse mapping or module hint
        lesson = await self.catalog.get_lesson(resolved.lesson_id)
        if lesson is not None and not lesson.is_active:
            raise NotFoundError(f"Lesson not found: {resolved.lesson_id}")

        return resolved

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def update_step_progress(
        self,
        user_id: UUID,
        module_id: str,
        lesson_id: str,
        current_step_index: int,
        total_steps: int,
        time_spent_delta: int = 0,
    ) -> StepResult:
        """Record the learner's position within a lesson.

        The step index is clamped into range. Time is additive on both the
        lesson and the module. ``completed`` is never changed here.

        Raises:
            ValidationError: total_steps < 1 or negative time delta
            ResolutionFailedError: lesson id cannot be resolved
            NotFoundError: module or lesson inactive or unknown
            RetryableError: concurrent writes kept conflicting
        """
        _validate_write(total_steps, time_spent_delta)
        resolved = await self._resolve_for_write(module_id, lesson_id)
        step_index = clamp_step_index(current_step_index, total_steps)

        def plan(snapshot: ModuleSnapshot, now: datetime) -> WritePlan:
            module, lesson = _touch(
                snapshot, resolved.lesson_id, step_index, total_steps, time_spent_delta, now
            )
            return WritePlan(module=module, lesson=lesson)

        with LearnerContext(user_id, resolved.module_id):
            result = await self._commit(user_id, resolved.module_id, plan)

            logger.info(
                "step_progress_updated",
                lesson_id=resolved.lesson_id,
                current_step_index=result.lesson.current_step_index,
                total_steps=total_steps,
                time_spent_delta=time_spent_delta,
            )

        return StepResult(
            module_id=resolved.module_id,
            lesson_id=resolved.lesson_id,
            current_step_index=result.lesson.current_step_index,
            total_steps=result.lesson.total_steps,
            completed=result.lesson.completed,
            progress_percentage=step_percentage(
                result.lesson.current_step_index, result.lesson.total_steps
            ),
            module_completed=result.module.is_completed,
        )

    async def mark_lesson_complete(
        self,
        user_id: UUID,
        module_id: str,
        lesson_id: str,
        total_steps: int,
        time_spent_delta: int = 0,
    ) -> StepResult:
        """Complete a lesson and re-evaluate module completion.

        In the same conditional write as the lesson update, the module is
        marked complete when every active lesson is completed and it was
        not complete before. Completion events are emitted only for
        false -> true transitions.

        Raises:
            ValidationError, ResolutionFailedError, NotFoundError, RetryableError
        """
        _validate_write(total_steps, time_spent_delta)
        resolved = await self._resolve_for_write(module_id, lesson_id)
        active_lessons = await self.catalog.get_active_lessons(resolved.module_id)

        def plan(snapshot: ModuleSnapshot, now: datetime) -> WritePlan:
            module, lesson = _touch(
                snapshot, resolved.lesson_id, total_steps - 1, total_steps, time_spent_delta, now
            )
            events: list[CompletionEvent] = []

            if not lesson.completed:
                lesson.completed = True
                lesson.completed_at = now
                events.append(
                    CompletionEvent(
                        user_id=user_id,
                        kind=CompletionKind.LESSON_COMPLETED,
                        entity_id=resolved.lesson_id,
                        module_id=resolved.module_id,
                        timestamp=now,
                    )
                )

            # Live count over the snapshot this write is conditioned on
            completed_ids = snapshot.completed_lesson_ids() | {resolved.lesson_id}
            completed_count = sum(1 for al in active_lessons if al.lesson_id in completed_ids)
            module_completed_now = (
                module.completed_at is None
                and bool(active_lessons)
                and completed_count == len(active_lessons)
            )
            if module_completed_now:
                module.completed_at = now
                events.append(
                    CompletionEvent(
                        user_id=user_id,
                        kind=CompletionKind.MODULE_COMPLETED,
                        entity_id=resolved.module_id,
                        module_id=resolved.module_id,
                        timestamp=now,
                    )
                )

            return WritePlan(
                module=module,
                lesson=lesson,
                events=events,
                module_completed_now=module_completed_now,
            )

        with LearnerContext(user_id, resolved.module_id):
            result = await self._commit(user_id, resolved.module_id, plan)

            for event in result.events:
                logger.info(event.kind.value, entity_id=event.entity_id)
                self._emit(event)

        return StepResult(
            module_id=resolved.module_id,
            lesson_id=resolved.lesson_id,
            current_step_index=result.lesson.current_step_index,
            total_steps=result.lesson.total_steps,
            completed=True,
            progress_percentage=100,
            module_completed=result.module.is_completed,
            next_lesson_id=_next_lesson_id(active_lessons, resolved.lesson_id),
        )

    async def _commit(
        self,
        user_id: UUID,
        module_id: str,
        plan: Planner,
    ) -> WritePlan:
        """Read, plan and conditionally write, retrying on conflict.

        Lightweight-transaction contention that the store resolved counts as
        a conflict. Contention the store could not resolve raises
        ``RetryableError`` at once, without replanning.
        Invalidates the user's cached views before returning.
        """
        attempts = 1 + max(0, self.write_retries)
        for attempt in range(1, attempts + 1):
            try:
                snapshot, _ = await self.store.get_or_create_module(user_id, module_id)
                result = plan(snapshot, datetime.now(UTC))
                applied = await self.store.commit(
                    result.module, [result.lesson], expected_version=snapshot.version
                )
            except WriteContentionError as e:
                logger.warning(
                    "progress_write_contention", attempt=attempt, max_attempts=attempts, error=str(e)
                )
                raise RetryableError() from e

            if applied:
                await self.cache.invalidate(user_id)
                return result

            logger.warning(
                "progress_write_conflict",
                lesson_id=result.lesson.lesson_id,
                attempt=attempt,
                max_attempts=attempts,
                expected_version=snapshot.version,
            )

        raise RetryableError()

    def _emit(self, event: CompletionEvent) -> None:
        if self.emitter is None:
            return
        try:
            self.emitter.emit(event)
        except Exception:
            logger.exception(
                "completion_event_emit_failed",
                kind=event.kind.value,
                entity_id=event.entity_id,
            )

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def _load_or_create(self, user_id: UUID, module_id: str) -> ModuleSnapshot:
        snapshot, created = await self.store.get_or_create_module(user_id, module_id)
        if created:
            await self.cache.invalidate(user_id)
        return snapshot

    async def get_resume_state(self, user_id: UUID, module_id: str) -> ResumeState:
        """Compute where the learner should continue in a module.

        First active lesson not completed, else the last lesson. Never cached.

        Raises:
            NotFoundError: module has no active lessons
        """
        active = await self.catalog.get_active_lessons(module_id)
        if not active:
            raise NotFoundError(f"Module has no active lessons: {module_id}")

        snapshot = await self._load_or_create(user_id, module_id)
        completed_ids = snapshot.completed_lesson_ids()

        target = next((al for al in active if al.lesson_id not in completed_ids), active[-1])
        lookup = lookup_lesson(snapshot, target.lesson_id, default_total_steps=target.step_count)
        completed_count = sum(1 for al in active if al.lesson_id in completed_ids)

        return ResumeState(
            module_id=module_id,
            current_lesson_id=target.lesson_id,
            current_step_index=lookup.progress.current_step_index,
            total_steps_in_lesson=lookup.progress.total_steps,
            module_progress=floor_percentage(completed_count, len(active)),
            total_lessons=len(active),
            completed_lessons=completed_count,
            is_module_complete=snapshot.module.is_completed,
            last_accessed_at=snapshot.module.last_accessed_at,
        )

    async def get_lesson_progress_details(
        self, user_id: UUID, module_id: str, lesson_id: str
    ) -> LessonDetail:
        """Progress for one lesson, zero defaults if not started.

        Raises:
            ResolutionFailedError: lesson id cannot be resolved
        """
        resolved = await self._resolve_lesson(module_id, lesson_id)
        snapshot = await self._load_or_create(user_id, resolved.module_id)

        default_total_steps = 1
        if resolved.lesson_id not in snapshot.lessons:
            lesson = await self.catalog.get_lesson(resolved.lesson_id)
            if lesson is not None:
                default_total_steps = lesson.step_count

        lookup = lookup_lesson(snapshot, resolved.lesson_id, default_total_steps)
        return LessonDetail.from_entity(lookup.progress, started=lookup.started)

    async def get_next_lesson(self, user_id: UUID, module_id: str, lesson_id: str) -> str | None:
        """Next active lesson after ``lesson_id`` in authored order."""
        resolved = await self.resolver.resolve(lesson_id, module_hint=module_id)
        if resolved is None:
            return None
        active = await self.catalog.get_active_lessons(resolved.module_id)
        return _next_lesson_id(active, resolved.lesson_id)

    async def get_module_progress(self, user_id: UUID, module_id: str) -> ModuleProgressDetail:
        """Module statistics with every active lesson summarised.

        Raises:
            NotFoundError: module unknown or inactive
        """
        if not await self.catalog.module_exists(module_id):
            raise NotFoundError(f"Module not found: {module_id}")

        active = await self.catalog.get_active_lessons(module_id)
        snapshot = await self._load_or_create(user_id, module_id)

        summaries = []
        for al in active:
            lookup = lookup_lesson(snapshot, al.lesson_id, al.step_count)
            progress = lookup.progress
            summaries.append(
                LessonProgressSummary(
                    lesson_id=al.lesson_id,
                    order=al.order,
                    current_step_index=progress.current_step_index,
                    total_steps=progress.total_steps,
                    completed=progress.completed,
                    time_spent=progress.time_spent,
                    progress_percentage=progress.progress_percentage if lookup.started else 0,
                )
            )

        completed_count = sum(1 for s in summaries if s.completed)
        module = snapshot.module
        return ModuleProgressDetail(
            module_id=module_id,
            total_lessons=len(active),
            completed_lessons=completed_count,
            module_progress=floor_percentage(completed_count, len(active)),
            time_spent=module.time_spent,
            is_module_complete=module.is_completed,
            completed_at=module.completed_at,
            last_accessed_lesson_id=module.last_accessed_lesson_id,
            last_accessed_at=module.last_accessed_at,
            lessons=summaries,
        )

    async def get_user_progress_overview(self, user_id: UUID) -> ProgressOverview:
        """Aggregate progress across every module the user has touched (cached)."""
        return await self.cache.get_or_load(
            user_id,
            OVERVIEW_CACHE_NAME,
            lambda: self._build_overview(user_id),
            ProgressOverview,
        )

    async def _build_overview(self, user_id: UUID) -> ProgressOverview:
        overview = ProgressOverview()

        for module_id in await self.store.list_user_modules(user_id):
            snapshot = await self.store.load_module(user_id, module_id)
            if snapshot is None:
                continue

            module = snapshot.module
            completed_lessons = len(snapshot.completed_lesson_ids())

            overview.modules_started += 1
            overview.modules_completed += int(module.is_completed)
            overview.lessons_completed += completed_lessons
            overview.total_time_spent += module.time_spent
            overview.modules.append(
                ModuleOverviewEntry(
                    module_id=module_id,
                    completed_lessons=completed_lessons,
                    time_spent=module.time_spent,
                    is_module_complete=module.is_completed,
                    last_accessed_lesson_id=module.last_accessed_lesson_id,
                    last_accessed_at=module.last_accessed_at,
                )
            )

            if module.last_accessed_at and (
                overview.last_activity is None
                or module.last_accessed_at > overview.last_activity.accessed_at
            ):
                overview.last_activity = LastActivity(
                    module_id=module_id,
                    lesson_id=module.last_accessed_lesson_id,
                    accessed_at=module.last_accessed_at,
                )

        return overview
