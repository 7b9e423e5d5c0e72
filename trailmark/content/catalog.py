"""Read-only access to curriculum metadata.

``ContentCatalog`` is the contract the progress engine consumes from the
content service; ``CassandraContentCatalog`` implements it over the tables
in :mod:`trailmark.content.models`.
"""

from typing import TYPE_CHECKING, Protocol

import structlog

from .models import CatalogLesson, LegacyMapping, is_active_status


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


class ContentCatalog(Protocol):
    """Curriculum metadata needed to validate writes and compute resume state."""

    async def get_active_lessons(self, module_id: str) -> list[CatalogLesson]:
        """Active lessons of a module, in authored order."""
        ...

    async def module_exists(self, module_id: str) -> bool:
        """True if the module exists and is active."""
        ...

    async def lesson_exists(self, lesson_id: str) -> bool:
        """True if the lesson exists and is active."""
        ...

    async def get_lesson(self, lesson_id: str) -> CatalogLesson | None:
        """Lesson by canonical id, active or not."""
        ...

    async def get_legacy_mapping(self, legacy_id: str) -> LegacyMapping | None:
        """Mapping row keyed by legacy id."""
        ...

    async def get_mapping_by_lesson(self, lesson_id: str) -> LegacyMapping | None:
        """Mapping row whose canonical side is ``lesson_id``."""
        ...


class CassandraContentCatalog:
    """ContentCatalog backed by the content service's Cassandra tables."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_module = self.session.prepare(f"""
            SELECT id, status FROM {self.keyspace}.content_modules WHERE id = ?
        """)

        self._get_lesson = self.session.prepare(f"""
            SELECT id, module_id, position, step_count, status
            FROM {self.keyspace}.content_lessons WHERE id = ?
        """)

        self._get_module_lessons = self.session.prepare(f"""
            SELECT module_id, position, lesson_id, step_count, status
            FROM {self.keyspace}.content_module_lessons WHERE module_id = ?
        """)

        self._get_legacy_mapping = self.session.prepare(f"""
            SELECT legacy_id, lesson_id, module_id
            FROM {self.keyspace}.content_legacy_ids WHERE legacy_id = ?
        """)

        self._get_mapping_by_lesson = self.session.prepare(f"""
            SELECT legacy_id, lesson_id, module_id
            FROM {self.keyspace}.content_legacy_ids_by_lesson WHERE lesson_id = ?
        """)

    async def get_active_lessons(self, module_id: str) -> list[CatalogLesson]:
        # Clustering order is (position ASC, lesson_id ASC)
        rows = await self.session.aexecute(self._get_module_lessons, [module_id])
        lessons = [CatalogLesson.from_module_lesson_row(row) for row in rows]
        return [lesson for lesson in lessons if lesson.is_active]

    async def module_exists(self, module_id: str) -> bool:
        result = await self.session.aexecute(self._get_module, [module_id])
        row = result.one()
        return row is not None and is_active_status(row.status)

    async def lesson_exists(self, lesson_id: str) -> bool:
        lesson = await self.get_lesson(lesson_id)
        return lesson is not None and lesson.is_active

    async def get_lesson(self, lesson_id: str) -> CatalogLesson | None:
        result = await self.session.aexecute(self._get_lesson, [lesson_id])
        row = result.one()
        return CatalogLesson.from_lesson_row(row) if row else None

    async def get_legacy_mapping(self, legacy_id: str) -> LegacyMapping | None:
        result = await self.session.aexecute(self._get_legacy_mapping, [legacy_id])
        row = result.one()
        return LegacyMapping.from_row(row) if row else None

    async def get_mapping_by_lesson(self, lesson_id: str) -> LegacyMapping | None:
        result = await self.session.aexecute(self._get_mapping_by_lesson, [lesson_id])
        row = result.one()
        return LegacyMapping.from_row(row) if row else None
