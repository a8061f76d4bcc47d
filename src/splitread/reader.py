"""
Stream reader with dynamic work rebalancing.

A StreamReader owns one live server stream at a time and decodes rows from it
sequentially. While it is being read, a control thread may call
split_at_fraction() to hand the unread tail of the stream back for independent
scheduling; on success the reader swaps its server stream for the primary half
and keeps serving rows with no gap and no duplicate.
"""

import logging
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, Generic, Iterator, Optional, Tuple, TypeVar

from .client import PeekingIterator, ServerStream
from .config import ReadOptions
from .decoding import RowCursor
from .errors import NoCurrentRowError, StalePreconditionError
from .metrics import get_metrics
from .resilience import ErrorClassifier, ExponentialBackoff
from .types import SplitResult, Stream, StreamPosition

if TYPE_CHECKING:
    from .source import StreamSource

T = TypeVar('T')

logger = logging.getLogger(__name__)


class ReaderState(Enum):
    """Lifecycle of a StreamReader"""

    UNSTARTED = 'unstarted'
    ACTIVE = 'active'
    CLOSED = 'closed'


class StreamReader(Generic[T]):
    """
    Reader of the rows of one stream source.

    The decode path (start, advance, get_current) is driven by a single consumer.
    split_at_fraction() may be called concurrently from another thread. All mutable
    state is guarded by one lock; split RPCs are made outside of it, and the lock is
    only taken to commit the swap to the primary stream.
    """

    def __init__(self, source: 'StreamSource[T]', options: ReadOptions):
        self._source = source
        self._options = options
        self._parse_fn = source.parse_fn
        self._table_schema = source.table_schema
        self._session_schema = source.read_session.schema
        self._table = source.read_session.table
        self._storage_client = source.storage_services.get_storage_client(options)
        self._metrics = get_metrics(options.metrics)

        self._lock = threading.Lock()
        self._state = ReaderState.UNSTARTED
        self._server_stream: Optional[ServerStream] = None
        self._responses: Optional[PeekingIterator] = None
        self._cursor: Optional[RowCursor] = None
        self._current: Optional[T] = None
        self._has_current = False
        self._at_end = False
        self._offset = 0
        self._split_in_progress = False

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def offset(self) -> int:
        """Offset of the current row within the stream currently being read"""
        return self._offset

    def start(self) -> bool:
        """
        Open the stream and decode its first row.

        Returns:
            True if a row is available via get_current()

        Raises:
            RuntimeError: If the reader was already started or closed
        """
        with self._lock:
            if self._state != ReaderState.UNSTARTED:
                raise RuntimeError(f'Cannot start a reader that is {self._state.value}')

            stream = self._source.stream
            self._server_stream, self._responses = self._open_read_stream(
                StreamPosition(stream=stream, offset=self._offset), retry=True
            )
            self._state = ReaderState.ACTIVE
            self._metrics.active_readers.labels(table=self._table).inc()
            logger.info(f'Started storage read from stream {stream.name}.')
            return self._read_next_row()

    def advance(self) -> bool:
        """
        Move to the next row.

        Returns:
            False once the stream is exhausted, and on every call after that
        """
        with self._lock:
            if self._state == ReaderState.UNSTARTED:
                raise RuntimeError('advance() called before start()')
            if self._state == ReaderState.CLOSED:
                raise RuntimeError('advance() called on a closed reader')
            if self._at_end:
                return False

            self._offset += 1
            return self._read_next_row()

    def _read_next_row(self) -> bool:
        # Caller holds self._lock
        while self._cursor is None or self._cursor.is_end():
            if not self._responses.has_next():
                self._at_end = True
                self._has_current = False
                self._current = None
                logger.debug(f'Reached end of stream {self._source.stream.name} at offset {self._offset}.')
                return False

            response = next(self._responses)
            self._metrics.response_batches_received.labels(table=self._table).inc()
            self._cursor = RowCursor(response.data, self._session_schema, self._source.stream.name)

        row = self._cursor.read()
        self._current = self._parse_fn(row, self._table_schema)
        self._has_current = True
        self._metrics.rows_read.labels(table=self._table).inc()
        return True

    def get_current(self) -> T:
        """
        Return the row decoded by the last successful start() or advance().

        Raises:
            NoCurrentRowError: If no row is available
        """
        if not self._has_current:
            raise NoCurrentRowError('No current row; start() or advance() did not return True', self._source.stream.name)
        return self._current

    def get_current_source(self) -> 'StreamSource[T]':
        """Source of the stream currently being read; replaced by the primary after each split"""
        with self._lock:
            return self._source

    def close(self) -> None:
        """Cancel the active server stream and close the storage client. Safe to call in any state."""
        with self._lock:
            if self._state == ReaderState.CLOSED:
                return
            was_active = self._state == ReaderState.ACTIVE
            self._state = ReaderState.CLOSED
            server_stream = self._server_stream
            self._server_stream = None
            self._responses = None
            self._cursor = None
            self._has_current = False
            self._current = None

        if server_stream is not None:
            self._cancel_quietly(server_stream)
        self._storage_client.close()
        if was_active:
            self._metrics.active_readers.labels(table=self._table).dec()
        logger.info(f'Closed storage read of stream {self._source.stream.name}.')

    def split_at_fraction(self, fraction: float) -> Optional['StreamSource[T]']:
        """
        Split the unread part of the stream at a fraction.

        Returns:
            A source for the remainder stream, or None if no split happened
        """
        return self.try_split_at_fraction(fraction).remainder

    def try_split_at_fraction(self, fraction: float) -> SplitResult:
        """
        Split the unread part of the stream at a fraction in (0.0, 1.0).

        The service decides whether the split is feasible. On success this reader
        continues on the primary stream, and the returned result carries a source for
        the remainder stream starting at offset 0. Failures never affect the read path.

        Raises:
            ValueError: If fraction is not strictly between 0 and 1
        """
        if not 0.0 < fraction < 1.0:
            raise ValueError(f'Split fraction must be in (0.0, 1.0), got {fraction}')

        counters = self._metrics.split_counters(self._table)
        counters['attempted'].inc()

        with self._lock:
            if self._split_in_progress:
                counters['other'].inc()
                logger.warning(f'Split of stream {self._source.stream.name} rejected: another split is in progress.')
                return SplitResult.other('Another split of this reader is in progress')
            if self._state != ReaderState.ACTIVE:
                counters['other'].inc()
                logger.warning(f'Split of stream {self._source.stream.name} rejected: reader is {self._state.value}.')
                return SplitResult.other(f'Reader is {self._state.value}')

            self._split_in_progress = True
            source = self._source

        try:
            return self._split(source, fraction, counters)
        finally:
            with self._lock:
                self._split_in_progress = False

    def _split(self, source: 'StreamSource[T]', fraction: float, counters) -> SplitResult:
        stream = source.stream
        logger.debug(f'Received split request for stream {stream.name} at fraction {fraction}.')

        try:
            response = self._storage_client.split_read_stream(stream, fraction)
        except Exception as e:
            counters['other'].inc()
            logger.error(f'Storage stream split request for {stream.name} failed.', exc_info=True)
            return SplitResult.other(f'Split request failed: {e}')

        if not response.is_feasible:
            counters['infeasible'].inc()
            logger.info(f'Stream {stream.name} cannot be split at {fraction}.')
            return SplitResult.infeasible(f'Stream {stream.name} cannot be split at {fraction}')

        primary = response.primary_stream
        remainder = response.remainder_stream

        # The consumer keeps reading while the primary is opened. Open it right after the last
        # row returned; rows returned meanwhile are skipped on the primary at commit, since a
        # primary stream holds the same rows at the same offsets as its parent.
        with self._lock:
            abandon_reason = self._check_swap_precondition(stream)
            state = self._state
            offset = self._offset

        if abandon_reason is None:
            try:
                new_server_stream, new_responses = self._open_read_stream(
                    StreamPosition(stream=primary, offset=offset + 1), retry=False
                )
            except StalePreconditionError as e:
                counters['stale'].inc()
                logger.info(
                    f'Split of stream {stream.name} abandoned because the primary stream is to the left of '
                    f'the split fraction {fraction}.'
                )
                return SplitResult.stale(str(e))
            except Exception as e:
                counters['other'].inc()
                logger.error(f'Storage stream split of {stream.name} failed.', exc_info=True)
                return SplitResult.other(f'Failed to open primary stream {primary.name}: {e}')

            skip_error = None
            with self._lock:
                abandon_reason = self._check_swap_precondition(stream)
                state = self._state
                if abandon_reason is None:
                    skipped = self._offset - offset
                    try:
                        reached, new_cursor = self._skip_rows(new_responses, skipped, primary.name)
                    except Exception as e:
                        skip_error = e
                    else:
                        if not reached:
                            abandon_reason = (
                                f'reader advanced from offset {offset} to {self._offset}, past the end of '
                                f'primary stream {primary.name}'
                            )
                        else:
                            if skipped:
                                logger.debug(
                                    f'Skipped {skipped} rows of {primary.name} returned while it was opening.'
                                )
                            # Cancel the parent stream before replacing it with the primary stream
                            self._cancel_quietly(self._server_stream)
                            self._source = self._source.from_existing(primary)
                            self._server_stream = new_server_stream
                            self._responses = new_responses
                            self._cursor = new_cursor

            if skip_error is not None:
                self._cancel_quietly(new_server_stream)
                counters['other'].inc()
                logger.error(f'Storage stream split of {stream.name} failed.', exc_info=skip_error)
                return SplitResult.other(f'Failed to read primary stream {primary.name}: {skip_error}')
            if abandon_reason is not None:
                self._cancel_quietly(new_server_stream)

        if abandon_reason is not None:
            if state == ReaderState.CLOSED:
                counters['other'].inc()
                logger.warning(f'Split of stream {stream.name} abandoned: {abandon_reason}.')
                return SplitResult.other(abandon_reason)
            counters['stale'].inc()
            logger.info(f'Split of stream {stream.name} at {fraction} abandoned: {abandon_reason}.')
            return SplitResult.stale(abandon_reason)

        counters['successful'].inc()
        logger.info(
            f'Successfully split stream {stream.name} at {fraction}: primary {primary.name}, '
            f'remainder {remainder.name}.'
        )
        return SplitResult.successful(source.from_existing(remainder))

    def _skip_rows(
        self, responses: PeekingIterator, count: int, stream_name: str
    ) -> Tuple[bool, Optional[RowCursor]]:
        """
        Skip the first `count` rows of a freshly opened stream.

        Returns:
            (False, None) if the stream ends first, otherwise True and the cursor
            positioned after the skipped rows (None if nothing was skipped)
        """
        # Caller holds self._lock
        cursor = None
        while count > 0:
            if cursor is None or cursor.is_end():
                if not responses.has_next():
                    return False, None
                cursor = RowCursor(next(responses).data, self._session_schema, stream_name)
                continue
            count -= cursor.skip(count)
        return True, cursor

    def _check_swap_precondition(self, stream: Stream) -> Optional[str]:
        # Caller holds self._lock
        if self._state != ReaderState.ACTIVE:
            return f'reader is {self._state.value}'
        if self._source.stream != stream:
            return f'reader moved to stream {self._source.stream.name}'
        if self._at_end:
            return 'reader reached the end of the stream'
        return None

    def _open_read_stream(self, position: StreamPosition, retry: bool) -> Tuple[ServerStream, PeekingIterator]:
        """
        Open a read stream and probe for its first response so that failures surface here.

        With retry=True, transient errors are retried with exponential backoff.
        """
        backoff = ExponentialBackoff(self._options.retry)

        while True:
            server_stream = None
            try:
                server_stream = self._storage_client.read_rows(position)
                responses = PeekingIterator(iter(server_stream))
                responses.has_next()
                self._metrics.read_streams_opened.labels(table=self._table).inc()
                return server_stream, responses
            except StalePreconditionError:
                if server_stream is not None:
                    self._cancel_quietly(server_stream)
                raise
            except Exception as e:
                if server_stream is not None:
                    self._cancel_quietly(server_stream)

                if not retry or not self._options.retry.enabled or not ErrorClassifier.is_transient(str(e)):
                    raise

                delay = backoff.next_delay()
                if delay is None:
                    logger.error(
                        f'Max retries ({self._options.retry.max_retries}) exceeded opening stream '
                        f'{position.stream.name} at offset {position.offset}: {e}'
                    )
                    raise

                logger.warning(
                    f'Transient error opening stream {position.stream.name} '
                    f'(attempt {backoff.attempt}/{self._options.retry.max_retries}): {e}. '
                    f'Retrying in {delay:.1f}s...'
                )
                time.sleep(delay)

    def _cancel_quietly(self, server_stream: Optional[ServerStream]) -> None:
        if server_stream is None:
            return
        try:
            server_stream.cancel()
        except Exception as e:
            logger.warning(f'Error cancelling server stream: {e}')

    def __iter__(self) -> Iterator[T]:
        """Yield every remaining row, starting the reader"""
        available = self.start()
        while available:
            yield self.get_current()
            available = self.advance()

    def __enter__(self) -> 'StreamReader[T]':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
