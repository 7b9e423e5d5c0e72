"""Curriculum content read models.

Provides:
- Table definitions for the content service's modules, lessons and
  legacy-id migration mapping
- ContentCatalog contract and its Cassandra implementation
"""

from .catalog import CassandraContentCatalog, ContentCatalog
from .models import (
    CONTENT_TABLES_CQL,
    CatalogLesson,
    ContentStatus,
    LegacyMapping,
)


__all__ = [
    "CONTENT_TABLES_CQL",
    "CassandraContentCatalog",
    "CatalogLesson",
    "ContentCatalog",
    "ContentStatus",
    "LegacyMapping",
]
