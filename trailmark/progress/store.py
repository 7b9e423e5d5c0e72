"""Cassandra persistence for learner progress.

All mutations of a (user, module) partition go through ``commit``: one
conditional single-partition batch that updates the static module columns
``IF version = ?`` and upserts the touched lesson rows. Either every
statement applies or none does.

Paxos contention surfaces as a ``WriteTimeout`` of type CAS, whose outcome
is unknown. Each commit stamps a fresh ``module_write_id`` so a serial read
can tell whether the timed-out batch landed.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import structlog
from cassandra import ConsistencyLevel, ReadTimeout, Unavailable, WriteTimeout
from cassandra.policies import WriteType
from cassandra.query import BatchStatement, BatchType

from .models import LessonProgress, ModuleProgress, ModuleSnapshot


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

_SERIAL_LEVELS = (ConsistencyLevel.SERIAL, ConsistencyLevel.LOCAL_SERIAL)


class WriteContentionError(Exception):
    """A lightweight transaction could not be confirmed either way."""


def _is_cas_timeout(error: WriteTimeout) -> bool:
    return error.write_type == WriteType.CAS


class ProgressStore:
    """Reads and conditionally writes progress partitions."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_partition = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.learner_progress
            WHERE user_id = ? AND module_id = ?
        """)

        self._get_write_id = self.session.prepare(f"""
            SELECT version, module_write_id FROM {self.keyspace}.learner_progress
            WHERE user_id = ? AND module_id = ?
            LIMIT 1
        """)
        self._get_write_id.consistency_level = ConsistencyLevel.LOCAL_SERIAL

        # Static-only insert: creates the partition's module row exactly once
        self._create_module = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.learner_progress
            (user_id, module_id, version, module_time_spent, module_created_at)
            VALUES (?, ?, 0, 0, ?)
            IF NOT EXISTS
        """)

        # Completion timestamps are only bound once set, so step writes
        # never write nulls
        self._update_module = self.session.prepare(f"""
            UPDATE {self.keyspace}.learner_progress
            SET version = ?, module_time_spent = ?, last_accessed_lesson_id = ?,
                module_last_accessed_at = ?, module_write_id = ?
            WHERE user_id = ? AND module_id = ?
            IF version = ?
        """)

        self._update_completed_module = self.session.prepare(f"""
            UPDATE {self.keyspace}.learner_progress
            SET version = ?, module_time_spent = ?, last_accessed_lesson_id = ?,
                module_last_accessed_at = ?, module_write_id = ?,
                module_completed_at = ?
            WHERE user_id = ? AND module_id = ?
            IF version = ?
        """)

        self._upsert_lesson = self.session.prepare(f"""
            UPDATE {self.keyspace}.learner_progress
            SET current_step_index = ?, total_steps = ?, completed = ?,
                time_spent = ?, last_accessed_at = ?, created_at = ?
            WHERE user_id = ? AND module_id = ? AND lesson_id = ?
        """)

        self._upsert_completed_lesson = self.session.prepare(f"""
            UPDATE {self.keyspace}.learner_progress
            SET current_step_index = ?, total_steps = ?, completed = ?,
                time_spent = ?, last_accessed_at = ?, created_at = ?,
                completed_at = ?
            WHERE user_id = ? AND module_id = ? AND lesson_id = ?
        """)

        # Per-user module index
        self._touch_user_module = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.learner_progress_modules_by_user
            (user_id, module_id, started_at)
            VALUES (?, ?, ?)
            IF NOT EXISTS
        """)

        self._get_user_modules = self.session.prepare(f"""
            SELECT module_id FROM {self.keyspace}.learner_progress_modules_by_user
            WHERE user_id = ?
        """)

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def load_module(self, user_id: UUID, module_id: str) -> ModuleSnapshot | None:
        """Load the module row and every lesson row of a partition.

        Returns None when the partition has no module row yet.
        """
        rows = list(await self.session.aexecute(self._get_partition, [user_id, module_id]))
        if not rows or rows[0].version is None:
            return None

        snapshot = ModuleSnapshot(module=ModuleProgress.from_row(rows[0]))
        for row in rows:
            # A partition holding only static columns yields one row with null lesson_id
            if row.lesson_id is None:
                continue
            snapshot.lessons[row.lesson_id] = LessonProgress.from_row(row)
        return snapshot

    async def list_user_modules(self, user_id: UUID) -> list[str]:
        rows = await self.session.aexecute(self._get_user_modules, [user_id])
        return [row.module_id for row in rows]

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def _execute_if_not_exists(self, statement, params: list) -> bool:
        """Run an ``IF NOT EXISTS`` insert; a contended one reports not applied."""
        try:
            result = await self.session.aexecute(statement, params)
        except WriteTimeout as e:
            if not _is_cas_timeout(e):
                raise
            logger.warning("progress_insert_contention", error=str(e))
            return False
        return bool(result.was_applied)

    async def create_module(self, user_id: UUID, module_id: str) -> bool:
        """Create the module row if absent.

        Returns:
            True if this call created it, False if it already existed
            or the insert was contended
        """
        now = datetime.now(UTC)
        await self._execute_if_not_exists(self._touch_user_module, [user_id, module_id, now])
        created = await self._execute_if_not_exists(self._create_module, [user_id, module_id, now])
        if created:
            logger.info("module_progress_created", user_id=str(user_id), module_id=module_id)
        return created

    async def get_or_create_module(
        self, user_id: UUID, module_id: str
    ) -> tuple[ModuleSnapshot, bool]:
        """Load a partition, creating its module row first when absent.

        Returns:
            Tuple of (snapshot, created)

        Raises:
            WriteContentionError: the row is still not visible after a contended create
        """
        snapshot = await self.load_module(user_id, module_id)
        if snapshot is not None:
            return snapshot, False

        created = await self.create_module(user_id, module_id)
        snapshot = await self.load_module(user_id, module_id)
        if snapshot is None:
            raise WriteContentionError(
                f"Module progress not visible after create: {user_id}/{module_id}"
            )
        return snapshot, created

    async def commit(
        self,
        module: ModuleProgress,
        lessons: list[LessonProgress],
        expected_version: int,
    ) -> bool:
        """Apply module and lesson changes atomically.

        Args:
            module: New module state (its ``version`` is the one to write)
            lessons: Lesson rows to upsert, all in ``module``'s partition
            expected_version: Version read before computing the changes

        Returns:
            False when another writer changed the partition first or the
            serial phase was unavailable

        Raises:
            WriteContentionError: a contended batch whose outcome could not be read back
        """
        write_id = uuid4()
        batch = BatchStatement(batch_type=BatchType.LOGGED)
        batch.add(*self._module_statement(module, write_id, expected_version))
        for lesson in lessons:
            batch.add(*self._lesson_statement(lesson))

        try:
            result = await self.session.aexecute(batch)
        except WriteTimeout as e:
            if not _is_cas_timeout(e):
                raise
            logger.warning(
                "progress_commit_contention",
                module_id=module.module_id,
                expected_version=expected_version,
                error=str(e),
            )
            return await self._write_landed(module, write_id)
        except Unavailable as e:
            if e.consistency not in _SERIAL_LEVELS:
                raise
            logger.warning(
                "progress_commit_unavailable",
                module_id=module.module_id,
                expected_version=expected_version,
                error=str(e),
            )
            return False

        return bool(result.was_applied)

    def _module_statement(self, module: ModuleProgress, write_id: UUID, expected_version: int):
        params = [
            module.version,
            module.time_spent,
            module.last_accessed_lesson_id,
            module.last_accessed_at,
            write_id,
        ]
        statement = self._update_module
        if module.completed_at is not None:
            statement = self._update_completed_module
            params.append(module.completed_at)
        return statement, [*params, module.user_id, module.module_id, expected_version]

    def _lesson_statement(self, lesson: LessonProgress):
        params = [
            lesson.current_step_index,
            lesson.total_steps,
            lesson.completed,
            lesson.time_spent,
            lesson.last_accessed_at,
            lesson.created_at,
        ]
        statement = self._upsert_lesson
        if lesson.completed_at is not None:
            statement = self._upsert_completed_lesson
            params.append(lesson.completed_at)
        return statement, [*params, lesson.user_id, lesson.module_id, lesson.lesson_id]

    async def _write_landed(self, module: ModuleProgress, write_id: UUID) -> bool:
        """Serial read deciding whether a timed-out commit was applied."""
        try:
            result = await self.session.aexecute(
                self._get_write_id, [module.user_id, module.module_id]
            )
        except (ReadTimeout, Unavailable) as e:
            raise WriteContentionError(
                f"Commit outcome unknown for {module.user_id}/{module.module_id}"
            ) from e

        row = result.one()
        landed = row is not None and row.module_write_id == write_id
        logger.info("progress_commit_outcome_read", module_id=module.module_id, landed=landed)
        return landed
