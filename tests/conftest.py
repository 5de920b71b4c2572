"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Integration tests run against an in-memory SQLite database, so no server is needed.
"""
import sys

from pathlib import Path

import pytest
from sqlalchemy.pool import StaticPool

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from practice_engine.config import Settings  # noqa: E402
from practice_engine.db.database import (  # noqa: E402
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from practice_engine.db.repository import SqlItemCatalog  # noqa: E402
from practice_engine.learning.item_selector import SelectionScorer  # noqa: E402
from practice_engine.learning.items import PracticeItem  # noqa: E402
from practice_engine.study.session_coordinator import SessionCoordinator  # noqa: E402
from tests.helpers import NOW, FakeClock, ZeroRandom  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def zero_random():
    return ZeroRandom()


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def seed_items(session_factory):
    """Write items into the practice_items table."""

    def _seed(*items: PracticeItem) -> None:
        with session_scope(session_factory) as db:
            SqlItemCatalog(db).upsert_items(items)

    return _seed


@pytest.fixture
def coordinator(session_factory, clock, zero_random):
    """SessionCoordinator with deterministic selection, fixed clock, daily target 3."""
    return SessionCoordinator(
        session_factory=session_factory,
        scorer=SelectionScorer(rng=zero_random),
        settings=Settings(default_daily_target=3),
        clock=clock,
    )
