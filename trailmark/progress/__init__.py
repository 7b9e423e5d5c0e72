"""Learner progress and resume state module.

Provides:
- Step-level lesson progress with additive time tracking
- Lesson completion with module completion cascade
- Resume state computed from live curriculum metadata
- Legacy identifier resolution
- Cached per-user overview and completion events
"""

from .models import (
    PROGRESS_TABLES_CQL,
    Found,
    LessonProgress,
    ModuleProgress,
    ModuleSnapshot,
    NotYetStarted,
    ProgressLookup,
)


__all__ = [
    "PROGRESS_TABLES_CQL",
    "Found",
    "LessonProgress",
    "ModuleProgress",
    "ModuleSnapshot",
    "NotYetStarted",
    "ProgressLookup",
]
