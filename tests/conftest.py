"""Shared fixtures."""

from unittest.mock import Mock
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from trailmark.content import CatalogLesson, LegacyMapping
from trailmark.progress.events import CompletionEventEmitter
from trailmark.progress.service import ProgressService

from tests.fakes import MODULE_ID, InMemoryProgressStore, StaticContentCatalog


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def user_id() -> UUID:
    """Test learner ID."""
    return uuid4()


@pytest.fixture
def catalog() -> StaticContentCatalog:
    """Module M with lessons L1 (5 steps), L2 (3 steps), L3 (4 steps).

    L9 is a draft lesson of M; ``legacy-l2`` is the pre-migration id of L2;
    EMPTY is an active module without lessons.
    """
    return StaticContentCatalog(
        lessons=[
            CatalogLesson("L1", MODULE_ID, order=1, step_count=5),
            CatalogLesson("L2", MODULE_ID, order=2, step_count=3),
            CatalogLesson("L3", MODULE_ID, order=3, step_count=4),
            CatalogLesson("L9", MODULE_ID, order=9, step_count=2, is_active=False),
        ],
        modules={MODULE_ID, "EMPTY"},
        legacy=[LegacyMapping(legacy_id="legacy-l2", lesson_id="L2", module_id=MODULE_ID)],
    )


@pytest.fixture
def store() -> InMemoryProgressStore:
    return InMemoryProgressStore()


@pytest.fixture
def emitter() -> Mock:
    """Mock completion emitter recording emitted events."""
    return Mock(spec=CompletionEventEmitter)


@pytest.fixture
def progress_service(
    store: InMemoryProgressStore,
    catalog: StaticContentCatalog,
    emitter: Mock,
) -> ProgressService:
    """ProgressService over in-memory doubles."""
    return ProgressService(store=store, catalog=catalog, emitter=emitter)


@pytest.fixture
def app(progress_service: ProgressService):
    """Application with the progress service wired, lifespan not started."""
    from trailmark.main import create_app

    application = create_app()
    application.state.progress_service = progress_service
    return application


@pytest.fixture
def client(app) -> TestClient:
    """Test client (no lifespan, so no Cassandra or Redis connections)."""
    return TestClient(app)
