"""
Arrow Flight transport for storage read services.

Wire protocol:
- do_get with a JSON ticket {"stream": <name>, "offset": <n>} streams the rows of a stream
- do_action 'split_read_stream' with {"original_stream": <name>, "fraction": <f>} returns
  {"primary_stream": <name|null>, "remainder_stream": <name|null>}
- do_action 'create_read_session' with {"table": <name>, "max_streams": <n>} returns
  {"name": <session>, "table": <name>, "schema": <Arrow IPC schema, hex>, "streams": [<name>, ...]}
"""

import json
import logging
from typing import Any, Dict, Iterator, Optional

import pyarrow as pa
from pyarrow import flight

from .client import ServerStream, StorageClient, StorageServices
from .config import ReadOptions
from .errors import StalePreconditionError
from .types import ReadSession, ResponseBatch, SplitReadStreamResponse, Stream, StreamPosition

SPLIT_READ_STREAM_ACTION = 'split_read_stream'
CREATE_READ_SESSION_ACTION = 'create_read_session'

# Marker carried by server errors for positions past the end of a split primary
FAILED_PRECONDITION = 'FAILED_PRECONDITION'


def _translate_flight_error(error: flight.FlightError, stream: str) -> Exception:
    if FAILED_PRECONDITION in str(error):
        return StalePreconditionError(str(error), stream)
    return error


def encode_ticket(position: StreamPosition) -> flight.Ticket:
    return flight.Ticket(json.dumps(position.to_dict()).encode('utf-8'))


def decode_ticket(ticket: flight.Ticket) -> StreamPosition:
    return StreamPosition.from_dict(json.loads(ticket.ticket.decode('utf-8')))


class FlightServerStream(ServerStream):
    """
    Server stream that yields ResponseBatch objects from a Flight stream reader.
    """

    def __init__(self, reader: flight.FlightStreamReader, stream: str):
        self.reader = reader
        self.stream = stream
        self.logger = logging.getLogger(__name__)
        self._cancelled = False

    def __iter__(self) -> Iterator[ResponseBatch]:
        while not self._cancelled:
            try:
                chunk = self.reader.read_chunk()
            except StopIteration:
                return
            except flight.FlightError as e:
                raise _translate_flight_error(e, self.stream) from e

            metadata: Dict[str, Any] = {}
            if chunk.app_metadata:
                try:
                    metadata = json.loads(chunk.app_metadata.to_pybytes().decode('utf-8'))
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    self.logger.warning(f'Failed to parse batch metadata: {e}')

            yield ResponseBatch(data=chunk.data, metadata=metadata)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.logger.debug(f'Cancelling Flight read of stream {self.stream}')
        self.reader.cancel()


class FlightStorageClient(StorageClient):
    """Storage client speaking Arrow Flight"""

    def __init__(self, location: str):
        self.location = location
        self.conn = flight.connect(location)
        self.logger = logging.getLogger(__name__)
        self._closed = False

    def read_rows(self, position: StreamPosition) -> FlightServerStream:
        try:
            reader = self.conn.do_get(encode_ticket(position))
        except flight.FlightError as e:
            raise _translate_flight_error(e, position.stream.name) from e
        return FlightServerStream(reader, position.stream.name)

    def split_read_stream(self, stream: Stream, fraction: float) -> SplitReadStreamResponse:
        body = {'original_stream': stream.name, 'fraction': fraction}
        result = self._do_action(SPLIT_READ_STREAM_ACTION, body)
        return SplitReadStreamResponse.from_dict(result)

    def create_read_session(self, table: str, max_streams: int = 1) -> ReadSession:
        """Ask the service to plan a read of a table into at most max_streams streams"""
        result = self._do_action(CREATE_READ_SESSION_ACTION, {'table': table, 'max_streams': max_streams})
        schema = pa.ipc.read_schema(pa.py_buffer(bytes.fromhex(result['schema'])))
        session = ReadSession(
            name=result['name'],
            table=result['table'],
            schema=schema,
            streams=[Stream(name) for name in result['streams']],
        )
        self.logger.info(f'Created read session {session.name} with {len(session.streams)} streams for {table}')
        return session

    def _do_action(self, action_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        action = flight.Action(action_type, json.dumps(body).encode('utf-8'))
        results = list(self.conn.do_action(action))
        if not results:
            raise ValueError(f"Action '{action_type}' returned no result")
        return json.loads(results[0].body.to_pybytes().decode('utf-8'))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.conn.close()


class FlightStorageServices(StorageServices):
    """Creates one FlightStorageClient per reader"""

    def __init__(self, location: Optional[str] = None):
        self.location = location

    def get_storage_client(self, options: Optional[ReadOptions] = None) -> FlightStorageClient:
        location = self.location or (options.endpoint if options else None)
        if not location:
            raise ValueError('No Flight location configured; pass one or set ReadOptions.endpoint')
        return FlightStorageClient(location)
