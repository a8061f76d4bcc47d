"""splitread - partition reader for storage read sessions with dynamic work rebalancing."""

from splitread.client import ServerStream, StorageClient, StorageServices
from splitread.config import ReadOptions
from splitread.reader import ReaderState, StreamReader
from splitread.source import UNKNOWN_SIZE, StreamSource
from splitread.types import (
    ReadSession,
    ResponseBatch,
    SplitOutcome,
    SplitReadStreamResponse,
    SplitResult,
    Stream,
    StreamPosition,
)

__all__ = [
    'ReadOptions',
    'ReadSession',
    'ReaderState',
    'ResponseBatch',
    'ServerStream',
    'SplitOutcome',
    'SplitReadStreamResponse',
    'SplitResult',
    'StorageClient',
    'StorageServices',
    'Stream',
    'StreamPosition',
    'StreamReader',
    'StreamSource',
    'UNKNOWN_SIZE',
]
