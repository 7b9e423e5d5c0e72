"""Identifier resolution across content migration generations.

Lessons authored before the content migration are still referenced by
their legacy ids in clients and bookmarks. Every id the public surface
accepts is mapped to one canonical (module, lesson) pair before progress
is read or written, so both generations land on the same row.
"""

import structlog

from trailmark.content import ContentCatalog

from .schemas import IdentifierSource, ResolvedIdentifier


logger = structlog.get_logger(__name__)


class IdentifierResolver:
    """Maps supplied lesson identifiers to canonical (module, lesson) pairs.

    Rules, first match wins:
    1. Canonical active lesson id
    2. Legacy id in the migration mapping
    3. Canonical side of a mapping row (partially migrated content)
    4. Any id under an existing, active ``module_hint``
    """

    def __init__(self, catalog: ContentCatalog):
        self.catalog = catalog

    async def resolve(
        self, supplied_id: str, module_hint: str | None = None
    ) -> ResolvedIdentifier | None:
        """Resolve an identifier; None when no rule matches."""
        resolved = await self._resolve(supplied_id, module_hint)
        if resolved is None:
            logger.info(
                "identifier_unresolved",
                supplied_id=supplied_id,
                module_hint=module_hint,
            )
            return None

        logger.debug(
            "identifier_resolved",
            supplied_id=supplied_id,
            module_id=resolved.module_id,
            lesson_id=resolved.lesson_id,
            source=resolved.source.value,
        )
        return resolved

    async def _resolve(
        self, supplied_id: str, module_hint: str | None
    ) -> ResolvedIdentifier | None:
        lesson = await self.catalog.get_lesson(supplied_id)
        if lesson is not None and lesson.is_active:
            return ResolvedIdentifier(
                module_id=lesson.module_id,
                lesson_id=lesson.lesson_id,
                source=IdentifierSource.CANONICAL,
            )

        mapping = await self.catalog.get_legacy_mapping(supplied_id)
        if mapping is not None:
            return ResolvedIdentifier(
                module_id=mapping.module_id,
                lesson_id=mapping.lesson_id,
                source=IdentifierSource.LEGACY,
            )

        mapping = await self.catalog.get_mapping_by_lesson(supplied_id)
        if mapping is not None:
            return ResolvedIdentifier(
                module_id=mapping.module_id,
                lesson_id=supplied_id,
                source=IdentifierSource.REVERSE,
            )

        if module_hint and await self.catalog.module_exists(module_hint):
            return ResolvedIdentifier(
                module_id=module_hint,
                lesson_id=supplied_id,
                source=IdentifierSource.MODULE_HINT,
            )

        return None
