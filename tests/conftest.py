"""
Pytest configuration and shared fixtures for Skyrapport tests.

Provides in-memory and SQLite-backed repositories, a scripted XRPC transport
and a client wired to both.
"""
import shutil
import tempfile
from pathlib import Path

import pytest

from skyrapport.network import BlueskyClient, RateLimiter
from skyrapport.settings import EngineSettings
from skyrapport.storage import MemoryStore, Repository, SQLiteStore
from tests.fixtures.mock_data import FakeClock, FakeXrpc, create_mock_session


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def repository():
    """Repository over a fresh in-memory store."""
    return Repository(MemoryStore())


@pytest.fixture
def sqlite_repository(temp_dir):
    """Repository over a throwaway SQLite database."""
    return Repository(SQLiteStore(temp_dir / "test.db"))


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fast_limiter():
    """A limiter that never has to wait."""
    return RateLimiter(max_requests=100_000, window_seconds=300.0, min_delay_seconds=0.0)


@pytest.fixture
def xrpc():
    """Scripted stand-in for requests.Session."""
    return FakeXrpc()


@pytest.fixture
def mock_session():
    return create_mock_session()


@pytest.fixture
def client(fast_limiter, xrpc, mock_session):
    """Authenticated client whose HTTP goes to the scripted transport."""
    return BlueskyClient(fast_limiter, session=mock_session, http=xrpc, page_size=2)


@pytest.fixture
def settings():
    return EngineSettings(batch_size=2)


# Custom markers for different test categories
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "sqlite: marks tests that touch a SQLite database file"
    )
    config.addinivalue_line(
        "markers", "concurrency: marks tests that start threads"
    )
    config.addinivalue_line(
        "markers", "api: marks tests that mock API interactions"
    )
    config.addinivalue_line(
        "markers", "auth: marks tests that exercise SDK login"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add automatic markers based on location."""
    for item in items:
        # Add unit marker to tests in unit directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
