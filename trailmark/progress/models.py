"""Database models for learner progress.

One Cassandra partition per (user, module) holds both aggregates:
- Module progress lives in STATIC columns (one value per partition)
- Lesson progress lives in clustering rows keyed by lesson_id

Keeping both in one partition lets a single conditional batch update the
module and lesson rows atomically. ``version`` is the optimistic
concurrency token every write conditions on.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar
from uuid import UUID


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def clamp_step_index(current_step_index: int, total_steps: int) -> int:
    """Normalize a reported step index into ``[0, total_steps - 1]``."""
    return max(0, min(current_step_index, total_steps - 1))


def step_percentage(current_step_index: int, total_steps: int) -> int:
    """Floor percentage of steps reached (index is zero-based)."""
    if total_steps < 1:
        return 0
    return min(100, ((current_step_index + 1) * 100) // total_steps)


def floor_percentage(part: int, whole: int) -> int:
    if whole < 1:
        return 0
    return (part * 100) // whole


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

LEARNER_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.learner_progress (
    user_id UUID,
    module_id TEXT,
    lesson_id TEXT,
    version INT STATIC,
    module_time_spent BIGINT STATIC,
    last_accessed_lesson_id TEXT STATIC,
    module_last_accessed_at TIMESTAMP STATIC,
    module_completed_at TIMESTAMP STATIC,
    module_created_at TIMESTAMP STATIC,
    module_write_id UUID STATIC,
    current_step_index INT,
    total_steps INT,
    completed BOOLEAN,
    time_spent BIGINT,
    last_accessed_at TIMESTAMP,
    completed_at TIMESTAMP,
    created_at TIMESTAMP,
    PRIMARY KEY ((user_id, module_id), lesson_id)
) WITH CLUSTERING ORDER BY (lesson_id ASC)
"""

# Lookup: modules a user has touched (for the per-user overview)
LEARNER_PROGRESS_BY_USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.learner_progress_modules_by_user (
    user_id UUID,
    module_id TEXT,
    started_at TIMESTAMP,
    PRIMARY KEY (user_id, module_id)
)
"""

PROGRESS_TABLES_CQL = [
    LEARNER_PROGRESS_TABLE_CQL,
    LEARNER_PROGRESS_BY_USER_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass(slots=True)
class ModuleProgress:
    """A learner's engagement with one module.

    Attributes:
        user_id: Learner UUID
        module_id: Canonical module id
        version: Optimistic concurrency token, bumped by every write
        time_spent: Aggregate seconds spent (only ever increases)
        last_accessed_lesson_id: Lesson of the most recent write
        last_accessed_at: Timestamp of the most recent write
        completed_at: Set once when every active lesson is complete
        created_at: First access timestamp
    """

    user_id: UUID
    module_id: str
    version: int = 0
    time_spent: int = 0
    last_accessed_lesson_id: str | None = None
    last_accessed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @classmethod
    def from_row(cls, row: Any) -> "ModuleProgress":
        """Create ModuleProgress from the static columns of any partition row."""
        return cls(
            user_id=row.user_id,
            module_id=row.module_id,
            version=row.version or 0,
            time_spent=row.module_time_spent or 0,
            last_accessed_lesson_id=row.last_accessed_lesson_id,
            last_accessed_at=ensure_utc_aware(row.module_last_accessed_at),
            completed_at=ensure_utc_aware(row.module_completed_at),
            created_at=ensure_utc_aware(row.module_created_at),
        )

    def __repr__(self) -> str:
        return (
            f"<ModuleProgress user={self.user_id} module={self.module_id} "
            f"v{self.version} completed={self.is_completed}>"
        )


@dataclass(slots=True)
class LessonProgress:
    """Step-granular progress through one lesson.

    Attributes:
        user_id: Learner UUID
        module_id: Owning module id (partition key with user_id)
        lesson_id: Canonical lesson id
        current_step_index: Zero-based position, always < total_steps
        total_steps: Last step count reported by the client
        completed: Sticky completion flag
        time_spent: Accumulated seconds (only ever increases)
        last_accessed_at: Timestamp of the most recent write
        completed_at: Timestamp of the false -> true transition
        created_at: First access timestamp
    """

    user_id: UUID
    module_id: str
    lesson_id: str
    current_step_index: int = 0
    total_steps: int = 1
    completed: bool = False
    time_spent: int = 0
    last_accessed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def progress_percentage(self) -> int:
        if self.completed:
            return 100
        return step_percentage(self.current_step_index, self.total_steps)

    @classmethod
    def from_row(cls, row: Any) -> "LessonProgress":
        """Create LessonProgress from a clustering row."""
        total_steps = max(1, row.total_steps or 1)
        return cls(
            user_id=row.user_id,
            module_id=row.module_id,
            lesson_id=row.lesson_id,
            current_step_index=clamp_step_index(row.current_step_index or 0, total_steps),
            total_steps=total_steps,
            completed=bool(row.completed),
            time_spent=row.time_spent or 0,
            last_accessed_at=ensure_utc_aware(row.last_accessed_at),
            completed_at=ensure_utc_aware(row.completed_at),
            created_at=ensure_utc_aware(row.created_at),
        )

    def __repr__(self) -> str:
        return (
            f"<LessonProgress user={self.user_id} lesson={self.lesson_id} "
            f"{self.current_step_index + 1}/{self.total_steps} completed={self.completed}>"
        )


@dataclass(slots=True)
class ModuleSnapshot:
    """Module progress plus all of its lesson rows, read at one version."""

    module: ModuleProgress
    lessons: dict[str, LessonProgress] = field(default_factory=dict)

    @property
    def version(self) -> int:
        return self.module.version

    def completed_lesson_ids(self) -> set[str]:
        return {lesson_id for lesson_id, lp in self.lessons.items() if lp.completed}


# ==============================================================================
# Lookup Result
# ==============================================================================


@dataclass(frozen=True, slots=True)
class Found:
    """Progress exists for the lesson."""

    progress: LessonProgress
    started: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class NotYetStarted:
    """No progress yet; ``progress`` holds zero-valued defaults."""

    progress: LessonProgress
    started: ClassVar[bool] = False


ProgressLookup = Found | NotYetStarted


def lookup_lesson(
    snapshot: ModuleSnapshot,
    lesson_id: str,
    default_total_steps: int = 1,
) -> ProgressLookup:
    """Look up a lesson in a snapshot, falling back to zero defaults."""
    existing = snapshot.lessons.get(lesson_id)
    if existing is not None:
        return Found(existing)
    return NotYetStarted(
        LessonProgress(
            user_id=snapshot.module.user_id,
            module_id=snapshot.module.module_id,
            lesson_id=lesson_id,
            total_steps=max(1, default_total_steps),
        )
    )
