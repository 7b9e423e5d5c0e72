"""Read models for curriculum content owned by the content service.

The content service authors modules, lessons and steps and maintains these
tables; this engine only reads them. Content identifiers are TEXT because
legacy identifiers (from the JSON curriculum era) are not UUIDs.

Tables:
- content_modules: module header and publication status
- content_lessons: lesson header, owning module, authored step count
- content_module_lessons: ordered lessons per module (denormalized status)
- content_legacy_ids / content_legacy_ids_by_lesson: migration mapping,
  legacy id -> canonical (module, lesson) and its reverse
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ContentStatus(str, Enum):
    """Content publication status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


def is_active_status(status: str | None) -> bool:
    """Only published content is reachable by learners."""
    return status == ContentStatus.PUBLISHED.value


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

CONTENT_MODULES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.content_modules (
    id TEXT PRIMARY KEY,
    title TEXT,
    status TEXT,
    updated_at TIMESTAMP
)
"""

CONTENT_LESSONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.content_lessons (
    id TEXT PRIMARY KEY,
    module_id TEXT,
    title TEXT,
    position INT,
    step_count INT,
    status TEXT,
    updated_at TIMESTAMP
)
"""

# Lessons of a module in authored order
CONTENT_MODULE_LESSONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.content_module_lessons (
    module_id TEXT,
    position INT,
    lesson_id TEXT,
    step_count INT,
    status TEXT,
    PRIMARY KEY (module_id, position, lesson_id)
) WITH CLUSTERING ORDER BY (position ASC, lesson_id ASC)
"""

CONTENT_LEGACY_IDS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.content_legacy_ids (
    legacy_id TEXT PRIMARY KEY,
    lesson_id TEXT,
    module_id TEXT,
    migrated_at TIMESTAMP
)
"""

# Reverse lookup: canonical lesson id -> mapping row
CONTENT_LEGACY_IDS_BY_LESSON_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.content_legacy_ids_by_lesson (
    lesson_id TEXT PRIMARY KEY,
    legacy_id TEXT,
    module_id TEXT
)
"""

CONTENT_TABLES_CQL = [
    CONTENT_MODULES_TABLE_CQL,
    CONTENT_LESSONS_TABLE_CQL,
    CONTENT_MODULE_LESSONS_TABLE_CQL,
    CONTENT_LEGACY_IDS_TABLE_CQL,
    CONTENT_LEGACY_IDS_BY_LESSON_TABLE_CQL,
]


# ==============================================================================
# Entities
# ==============================================================================


@dataclass(frozen=True, slots=True)
class CatalogLesson:
    """A lesson as seen by the progress engine.

    Attributes:
        lesson_id: Canonical lesson id
        module_id: Owning module id
        order: Authored position within the module
        step_count: Authored number of steps (at least 1)
        is_active: Whether the lesson is published
    """

    lesson_id: str
    module_id: str
    order: int
    step_count: int = 1
    is_active: bool = True

    @classmethod
    def from_lesson_row(cls, row: Any) -> "CatalogLesson":
        return cls(
            lesson_id=row.id,
            module_id=row.module_id,
            order=row.position or 0,
            step_count=max(1, row.step_count or 1),
            is_active=is_active_status(row.status),
        )

    @classmethod
    def from_module_lesson_row(cls, row: Any) -> "CatalogLesson":
        return cls(
            lesson_id=row.lesson_id,
            module_id=row.module_id,
            order=row.position,
            step_count=max(1, row.step_count or 1),
            is_active=is_active_status(row.status),
        )


@dataclass(frozen=True, slots=True)
class LegacyMapping:
    """One row of the content-migration mapping table."""

    legacy_id: str
    lesson_id: str
    module_id: str

    @classmethod
    def from_row(cls, row: Any) -> "LegacyMapping":
        return cls(
            legacy_id=row.legacy_id,
            lesson_id=row.lesson_id,
            module_id=row.module_id,
        )
