"""
Integration tests for reading and splitting streams over Arrow Flight.

Runs an in-process Flight storage server and drives StreamSource/StreamReader
through FlightStorageClient.
"""

import pytest

from splitread.coders import JsonCoder
from splitread.config import ReadOptions
from splitread.flight import FlightStorageClient, FlightStorageServices
from splitread.resilience import RetryConfig
from splitread.source import StreamSource
from splitread.types import SplitOutcome
from tests.fixtures.flight_server import StorageFlightServer
from tests.fixtures.mock_clients import InMemoryStorageBackend
from tests.fixtures.test_data import TEST_SCHEMA, create_test_rows

TABLE = 'project.dataset.flight_table'


def parse_id(row, table_schema):
    return row['id']


@pytest.fixture
def table_rows():
    return create_test_rows(200)


@pytest.fixture
def flight_server(table_rows):
    backend = InMemoryStorageBackend(schema=TEST_SCHEMA, batch_sizes=[16])
    server = StorageFlightServer(backend, tables={TABLE: table_rows})
    yield server
    server.shutdown()


@pytest.fixture
def location(flight_server):
    return f'grpc://localhost:{flight_server.port}'


@pytest.fixture
def options(location):
    return ReadOptions(endpoint=location, retry=RetryConfig(enabled=False))


@pytest.fixture
def session(location):
    with FlightStorageClient(location) as client:
        return client.create_read_session(TABLE, max_streams=2)


def make_source(session, stream_index=0):
    return StreamSource.create(
        session, session.streams[stream_index], session.schema, parse_id, JsonCoder(), FlightStorageServices()
    )


def start_and_read(reader, count):
    ids = []
    assert reader.start()
    ids.append(reader.get_current())
    for _ in range(count - 1):
        assert reader.advance()
        ids.append(reader.get_current())
    return ids


def read_rest(reader):
    ids = []
    while reader.advance():
        ids.append(reader.get_current())
    return ids


@pytest.mark.integration
class TestFlightReadSession:
    """Test planning and reading a session over Flight"""

    def test_create_read_session(self, session):
        assert session.table == TABLE
        assert len(session.streams) == 2
        assert session.schema.equals(TEST_SCHEMA)

    def test_read_all_streams(self, session, options, table_rows):
        ids = []
        for index in range(len(session.streams)):
            with make_source(session, index).create_reader(options) as reader:
                ids.extend(reader)

        assert ids == [row['id'] for row in table_rows]

    def test_services_require_a_location(self, session):
        with pytest.raises(ValueError, match='location'):
            FlightStorageServices().get_storage_client(ReadOptions())

    def test_close_before_start(self, session, options):
        reader = make_source(session).create_reader(options)
        reader.close()
        reader.close()


@pytest.mark.integration
class TestFlightSplit:
    """Test split_at_fraction against a Flight server"""

    def test_successful_split(self, session, options):
        reader = make_source(session).create_reader(options)
        before = start_and_read(reader, 20)

        result = reader.try_split_at_fraction(0.5)

        assert result.is_split, result.detail
        primary = read_rest(reader)
        with result.remainder.create_reader(options) as remainder_reader:
            remainder = list(remainder_reader)
        reader.close()

        assert before + primary + remainder == list(range(100))
        assert primary == list(range(20, 50))

    def test_stale_split(self, session, options):
        reader = make_source(session).create_reader(options)
        before = start_and_read(reader, 70)

        result = reader.try_split_at_fraction(0.5)

        assert result.outcome == SplitOutcome.STALE
        assert before + read_rest(reader) == list(range(100))
        reader.close()

    def test_split_of_fully_consumed_stream(self, session, options):
        reader = make_source(session).create_reader(options)
        ids = start_and_read(reader, 100)
        assert read_rest(reader) == []

        assert reader.split_at_fraction(0.5) is None
        assert reader.advance() is False
        assert ids == list(range(100))
        reader.close()
