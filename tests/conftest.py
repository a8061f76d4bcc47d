# tests/conftest.py
"""
Shared pytest configuration and fixtures for the stream reader test suite.
"""

import logging

import pytest

from splitread.coders import JsonCoder
from splitread.config import ReadOptions
from splitread.resilience import RetryConfig
from splitread.source import StreamSource
from tests.fixtures.mock_clients import FakeStorageServices, InMemoryStorageBackend
from tests.fixtures.test_data import TEST_SCHEMA, TEST_TABLE, create_test_rows, identity_parse

logging.basicConfig(level=logging.INFO)


@pytest.fixture
def test_rows():
    """100 rows with ids 0..99"""
    return create_test_rows(100)


@pytest.fixture
def backend():
    """Fake storage backend serving batches of 10 rows"""
    return InMemoryStorageBackend(schema=TEST_SCHEMA, batch_sizes=[10])


@pytest.fixture
def services(backend):
    return FakeStorageServices(backend)


@pytest.fixture
def read_options():
    """Read options with fast, jitter-free retries"""
    return ReadOptions(retry=RetryConfig(max_retries=2, initial_backoff_ms=1, max_backoff_ms=5, jitter=False))


@pytest.fixture
def make_source(backend, services, test_rows):
    """Factory creating a single-stream source over the given rows (default: test_rows)"""

    def _make(rows=None, parse_fn=identity_parse):
        rows = test_rows if rows is None else rows
        session = backend.create_read_session(TEST_TABLE, rows, max_streams=1)
        return StreamSource.create(session, session.streams[0], TEST_SCHEMA, parse_fn, JsonCoder(), services)

    return _make


@pytest.fixture
def source(make_source):
    return make_source()
