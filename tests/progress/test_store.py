"""Tests for ProgressStore against a mocked Cassandra session."""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch
from uuid import UUID, uuid4

import pytest
from cassandra import ConsistencyLevel, ReadTimeout, Unavailable, WriteTimeout
from cassandra.cluster import Session
from cassandra.policies import WriteType

from trailmark.progress.models import LessonProgress, ModuleProgress
from trailmark.progress.service import ProgressService, RetryableError
from trailmark.progress.store import ProgressStore, WriteContentionError

from tests.fakes import StaticContentCatalog


PARTITION_COLUMNS = (
    "user_id",
    "module_id",
    "lesson_id",
    "version",
    "module_time_spent",
    "last_accessed_lesson_id",
    "module_last_accessed_at",
    "module_completed_at",
    "module_created_at",
    "module_write_id",
    "current_step_index",
    "total_steps",
    "completed",
    "time_spent",
    "last_accessed_at",
    "completed_at",
    "created_at",
)


def partition_row(**values) -> SimpleNamespace:
    row = dict.fromkeys(PARTITION_COLUMNS)
    row.update(values)
    return SimpleNamespace(**row)


@pytest.fixture
def mock_session():
    """Mock Cassandra session."""
    session = Mock(spec=Session)
    session.prepare = Mock(return_value=Mock())
    # Make aexecute awaitable (cassandra-asyncio-driver)
    session.aexecute = AsyncMock(return_value=Mock())
    return session


@pytest.fixture
def store(mock_session) -> ProgressStore:
    return ProgressStore(session=mock_session, keyspace="test_keyspace")


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


class TestLoadModule:
    @pytest.mark.asyncio
    async def test_missing_partition(self, store: ProgressStore, mock_session, user_id: UUID):
        mock_session.aexecute.return_value = []

        assert await store.load_module(user_id, "M") is None

    @pytest.mark.asyncio
    async def test_static_only_partition_has_no_lessons(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        mock_session.aexecute.return_value = [
            partition_row(user_id=user_id, module_id="M", version=0, module_time_spent=0)
        ]

        snapshot = await store.load_module(user_id, "M")

        assert snapshot is not None
        assert snapshot.version == 0
        assert snapshot.lessons == {}

    @pytest.mark.asyncio
    async def test_rows_become_module_and_lessons(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        accessed = datetime(2026, 3, 1, 12, 0)
        static = {
            "user_id": user_id,
            "module_id": "M",
            "version": 7,
            "module_time_spent": 90,
            "last_accessed_lesson_id": "L2",
            "module_last_accessed_at": accessed,
        }
        mock_session.aexecute.return_value = [
            partition_row(**static, lesson_id="L1", current_step_index=4, total_steps=5,
                          completed=True, time_spent=60),
            partition_row(**static, lesson_id="L2", current_step_index=1, total_steps=3,
                          completed=False, time_spent=30, last_accessed_at=accessed),
        ]

        snapshot = await store.load_module(user_id, "M")

        assert snapshot is not None
        assert snapshot.module.version == 7
        assert snapshot.module.time_spent == 90
        assert snapshot.module.last_accessed_at.tzinfo is not None
        assert set(snapshot.lessons) == {"L1", "L2"}
        assert snapshot.completed_lesson_ids() == {"L1"}
        assert snapshot.lessons["L2"].current_step_index == 1


class TestCreateModule:
    @pytest.mark.asyncio
    async def test_reports_whether_insert_applied(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        mock_session.aexecute.return_value = Mock(was_applied=True)
        assert await store.create_module(user_id, "M") is True

        mock_session.aexecute.return_value = Mock(was_applied=False)
        assert await store.create_module(user_id, "M") is False

    @pytest.mark.asyncio
    async def test_get_or_create_creates_then_reloads(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        created_row = partition_row(user_id=user_id, module_id="M", version=0)
        mock_session.aexecute.side_effect = [
            [],  # initial load
            Mock(),  # user index insert
            Mock(was_applied=True),  # module insert
            [created_row],  # reload
        ]

        snapshot, created = await store.get_or_create_module(user_id, "M")

        assert created is True
        assert snapshot.module.module_id == "M"
        assert mock_session.aexecute.await_count == 4


class TestCommit:
    @pytest.mark.asyncio
    async def test_single_conditional_batch(self, store: ProgressStore, mock_session, user_id: UUID):
        module = ModuleProgress(user_id=user_id, module_id="M", version=4, time_spent=10)
        lesson = LessonProgress(user_id=user_id, module_id="M", lesson_id="L1", total_steps=5)
        mock_session.aexecute.return_value = Mock(was_applied=True)

        with patch("trailmark.progress.store.BatchStatement") as batch_cls:
            applied = await store.commit(module, [lesson], expected_version=3)

        assert applied is True
        batch = batch_cls.return_value
        assert batch.add.call_count == 2
        module_params = batch.add.call_args_list[0].args[1]
        assert module_params[0] == 4
        assert module_params[-1] == 3
        lesson_params = batch.add.call_args_list[1].args[1]
        assert lesson_params[-3:] == [user_id, "M", "L1"]
        mock_session.aexecute.assert_awaited_once_with(batch)

    @pytest.mark.asyncio
    async def test_version_conflict(self, store: ProgressStore, mock_session, user_id: UUID):
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        mock_session.aexecute.return_value = Mock(was_applied=False)

        with patch("trailmark.progress.store.BatchStatement"):
            assert await store.commit(module, [], expected_version=1) is False


@pytest.fixture
def statement_store(mock_session) -> ProgressStore:
    """Store whose prepared statements are distinguishable by query text."""
    mock_session.prepare = Mock(side_effect=lambda query: Mock(query=query))
    return ProgressStore(session=mock_session, keyspace="test_keyspace")


class TestCompletionColumns:
    @pytest.mark.asyncio
    async def test_step_write_binds_no_completion_timestamps(
        self, statement_store: ProgressStore, mock_session, user_id: UUID
    ):
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        lesson = LessonProgress(user_id=user_id, module_id="M", lesson_id="L1", total_steps=5)
        mock_session.aexecute.return_value = Mock(was_applied=True)

        with patch("trailmark.progress.store.BatchStatement") as batch_cls:
            await statement_store.commit(module, [lesson], expected_version=1)

        (module_stmt, module_params), (lesson_stmt, lesson_params) = [
            call.args for call in batch_cls.return_value.add.call_args_list
        ]
        assert module_stmt is statement_store._update_module
        assert "completed_at" not in module_stmt.query
        assert len(module_params) == 8
        assert lesson_stmt is statement_store._upsert_lesson
        assert "completed_at" not in lesson_stmt.query
        assert None not in lesson_params[:3]

    @pytest.mark.asyncio
    async def test_completion_write_sets_timestamps(
        self, statement_store: ProgressStore, mock_session, user_id: UUID
    ):
        done = datetime(2026, 4, 2, 9, 0, tzinfo=UTC)
        module = ModuleProgress(user_id=user_id, module_id="M", version=5, completed_at=done)
        lesson = LessonProgress(
            user_id=user_id, module_id="M", lesson_id="L3", total_steps=4,
            current_step_index=3, completed=True, completed_at=done,
        )
        mock_session.aexecute.return_value = Mock(was_applied=True)

        with patch("trailmark.progress.store.BatchStatement") as batch_cls:
            await statement_store.commit(module, [lesson], expected_version=4)

        (module_stmt, module_params), (lesson_stmt, lesson_params) = [
            call.args for call in batch_cls.return_value.add.call_args_list
        ]
        assert module_stmt is statement_store._update_completed_module
        assert module_params[5] == done
        assert module_params[-1] == 4
        assert lesson_stmt is statement_store._upsert_completed_lesson
        assert lesson_params[6] == done
        assert lesson_params[-3:] == [user_id, "M", "L3"]


class TestContention:
    """Paxos contention on the conditional writes."""

    @pytest.mark.asyncio
    async def test_cas_timeout_that_did_not_land_is_a_conflict(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        mock_session.aexecute.side_effect = [
            WriteTimeout("CAS contention", write_type=WriteType.CAS),
            Mock(one=Mock(return_value=SimpleNamespace(version=2, module_write_id=uuid4()))),
        ]

        with patch("trailmark.progress.store.BatchStatement"):
            assert await store.commit(module, [], expected_version=1) is False

        assert store._get_write_id.consistency_level == ConsistencyLevel.LOCAL_SERIAL

    @pytest.mark.asyncio
    async def test_cas_timeout_that_landed_is_applied(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        write_id = uuid4()
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        mock_session.aexecute.side_effect = [
            WriteTimeout("CAS contention", write_type=WriteType.CAS),
            Mock(one=Mock(return_value=SimpleNamespace(version=2, module_write_id=write_id))),
        ]

        with (
            patch("trailmark.progress.store.BatchStatement"),
            patch("trailmark.progress.store.uuid4", return_value=write_id),
        ):
            assert await store.commit(module, [], expected_version=1) is True

    @pytest.mark.asyncio
    async def test_unreadable_outcome_raises_contention(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        mock_session.aexecute.side_effect = [
            WriteTimeout("CAS contention", write_type=WriteType.CAS),
            ReadTimeout("serial read timed out"),
        ]

        with patch("trailmark.progress.store.BatchStatement"), pytest.raises(WriteContentionError):
            await store.commit(module, [], expected_version=1)

    @pytest.mark.asyncio
    async def test_non_cas_timeout_propagates(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        mock_session.aexecute.side_effect = WriteTimeout(
            "batch log timeout", write_type=WriteType.BATCH_LOG
        )

        with patch("trailmark.progress.store.BatchStatement"), pytest.raises(WriteTimeout):
            await store.commit(module, [], expected_version=1)

    @pytest.mark.asyncio
    async def test_serial_unavailable_is_a_conflict(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        mock_session.aexecute.side_effect = Unavailable(
            "not enough replicas", consistency=ConsistencyLevel.LOCAL_SERIAL
        )

        with patch("trailmark.progress.store.BatchStatement"):
            assert await store.commit(module, [], expected_version=1) is False

    @pytest.mark.asyncio
    async def test_quorum_unavailable_propagates(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        module = ModuleProgress(user_id=user_id, module_id="M", version=2)
        mock_session.aexecute.side_effect = Unavailable(
            "not enough replicas", consistency=ConsistencyLevel.LOCAL_QUORUM
        )

        with patch("trailmark.progress.store.BatchStatement"), pytest.raises(Unavailable):
            await store.commit(module, [], expected_version=1)

    @pytest.mark.asyncio
    async def test_contended_create_reports_not_created(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        mock_session.aexecute.side_effect = WriteTimeout(
            "CAS contention", write_type=WriteType.CAS
        )

        assert await store.create_module(user_id, "M") is False

    @pytest.mark.asyncio
    async def test_invisible_module_after_contended_create(
        self, store: ProgressStore, mock_session, user_id: UUID
    ):
        mock_session.aexecute.side_effect = [
            [],
            WriteTimeout("CAS contention", write_type=WriteType.CAS),
            WriteTimeout("CAS contention", write_type=WriteType.CAS),
            [],
        ]

        with pytest.raises(WriteContentionError):
            await store.get_or_create_module(user_id, "M")

    @pytest.mark.asyncio
    async def test_service_turns_repeated_cas_timeouts_into_retryable(
        self, statement_store: ProgressStore, mock_session, catalog: StaticContentCatalog,
        user_id: UUID,
    ):
        existing = partition_row(user_id=user_id, module_id="M", version=1, module_time_spent=0)
        batch = Mock(spec=["add"])

        async def aexecute(statement, params=None):
            if statement is batch:
                raise WriteTimeout("CAS contention", write_type=WriteType.CAS)
            if statement is statement_store._get_write_id:
                return Mock(one=Mock(return_value=SimpleNamespace(version=1, module_write_id=None)))
            return [existing]

        mock_session.aexecute = AsyncMock(side_effect=aexecute)
        service = ProgressService(store=statement_store, catalog=catalog, write_retries=1)

        with (
            patch("trailmark.progress.store.BatchStatement", return_value=batch),
            pytest.raises(RetryableError),
        ):
            await service.update_step_progress(user_id, "M", "L1", 1, 5)

        batch_attempts = [
            call for call in mock_session.aexecute.await_args_list if call.args[0] is batch
        ]
        assert len(batch_attempts) == 2


@pytest.mark.asyncio
async def test_list_user_modules(store: ProgressStore, mock_session, user_id: UUID):
    mock_session.aexecute.return_value = [SimpleNamespace(module_id="A"), SimpleNamespace(module_id="B")]

    assert await store.list_user_modules(user_id) == ["A", "B"]
