"""
Stream source: an immutable descriptor of one stream of a read session.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import pyarrow as pa

from .client import StorageServices
from .coders import Coder
from .config import ReadOptions
from .reader import StreamReader
from .types import ReadSession, Stream

T = TypeVar('T')

# Parse function applied to every decoded row: (row, table_schema) -> output value
ParseFn = Callable[[Dict[str, Any], pa.Schema], T]

# Size reported by get_estimated_size_bytes(). Streams are sharded dynamically by the
# server, so no meaningful estimate exists before reading.
UNKNOWN_SIZE = 0

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamSource(Generic[T]):
    """
    A source representing a single stream in a read session.

    Instances are immutable. from_existing() rebinds the descriptor to another
    stream of the same session without any I/O; all other fields are shared.
    """

    read_session: ReadSession
    stream: Stream
    table_schema: pa.Schema
    parse_fn: ParseFn
    output_coder: Coder
    storage_services: StorageServices

    def __post_init__(self):
        for f in dataclasses.fields(self):
            if getattr(self, f.name) is None:
                raise ValueError(f'{f.name} must not be None')

    @classmethod
    def create(
        cls,
        read_session: ReadSession,
        stream: Stream,
        table_schema: pa.Schema,
        parse_fn: ParseFn,
        output_coder: Coder,
        storage_services: StorageServices,
    ) -> 'StreamSource[T]':
        """Create a source for one stream of a read session.

        Raises:
            ValueError: If any argument is None
        """
        return cls(
            read_session=read_session,
            stream=stream,
            table_schema=table_schema,
            parse_fn=parse_fn,
            output_coder=output_coder,
            storage_services=storage_services,
        )

    def from_existing(self, new_stream: Stream) -> 'StreamSource[T]':
        """Create a new source with the same properties as this one, except with a different stream."""
        return dataclasses.replace(self, stream=new_stream)

    def get_output_coder(self) -> Coder:
        return self.output_coder

    def get_estimated_size_bytes(self, options: Optional[ReadOptions] = None) -> int:
        # The size of a stream can't be estimated due to server-side dynamic sharding.
        return UNKNOWN_SIZE

    def split(self, desired_bundle_size_bytes: int, options: Optional[ReadOptions] = None) -> List['StreamSource[T]']:
        # A stream can't be split without reading from it; see StreamReader.split_at_fraction().
        return [self]

    def create_reader(self, options: Optional[ReadOptions] = None) -> StreamReader[T]:
        """Create a reader bound to this source; the reader owns its own storage client."""
        options = options or ReadOptions()
        logger.debug(f'Creating reader for stream {self.stream.name}')
        return StreamReader(self, options)

    def __str__(self) -> str:
        return self.stream.name
