"""
Storage client interfaces used by stream readers.

A StorageClient opens server streams of ResponseBatch at a StreamPosition and asks the
service to split a stream. StorageServices hands out one client per reader.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterator, Optional

from .types import ResponseBatch, SplitReadStreamResponse, Stream, StreamPosition

if TYPE_CHECKING:
    from .config import ReadOptions


class ServerStream(ABC):
    """A live server-streaming read RPC yielding ResponseBatch objects"""

    @abstractmethod
    def __iter__(self) -> Iterator[ResponseBatch]:
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the RPC server-side and release its resources"""
        pass


class StorageClient(ABC):
    """Client for a storage read service"""

    @abstractmethod
    def read_rows(self, position: StreamPosition) -> ServerStream:
        """Open a read of position.stream starting at position.offset.

        Raises:
            StalePreconditionError: If the offset lies past the end of a split primary
        """
        pass

    @abstractmethod
    def split_read_stream(self, stream: Stream, fraction: float) -> SplitReadStreamResponse:
        """Ask the service to split the unread part of a stream at a fraction"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release transport resources. Must be safe to call more than once."""
        pass

    def __enter__(self) -> 'StorageClient':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class StorageServices(ABC):
    """Factory of storage clients; each reader owns the client it gets"""

    @abstractmethod
    def get_storage_client(self, options: Optional['ReadOptions'] = None) -> StorageClient:
        pass


class PeekingIterator:
    """Iterator with one element of look-ahead.

    has_next() pulls from the underlying iterator eagerly, so transport errors
    surface there rather than on the following next().
    """

    _EMPTY = object()

    def __init__(self, iterator: Iterator[ResponseBatch]):
        self._iterator = iterator
        self._peeked = self._EMPTY
        self._exhausted = False

    def __iter__(self) -> 'PeekingIterator':
        return self

    def has_next(self) -> bool:
        if self._peeked is not self._EMPTY:
            return True
        if self._exhausted:
            return False
        try:
            self._peeked = next(self._iterator)
        except StopIteration:
            self._exhausted = True
            return False
        return True

    def __next__(self) -> ResponseBatch:
        if not self.has_next():
            raise StopIteration
        item = self._peeked
        self._peeked = self._EMPTY
        return item
