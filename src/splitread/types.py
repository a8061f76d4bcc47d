"""
Core types for reading partitioned streams from a storage read session.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import pyarrow as pa

if TYPE_CHECKING:
    from .source import StreamSource


@dataclass(frozen=True)
class Stream:
    """A named partition of a read session; the unit of reading and splitting"""

    name: str

    def __post_init__(self):
        if not self.name:
            raise ValueError('Stream name must be non-empty')

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ReadSession:
    """Server-assigned plan covering a full table read"""

    name: str
    table: str
    schema: pa.Schema
    streams: List[Stream] = field(default_factory=list)

    def stream(self, name: str) -> Stream:
        """Look up a stream of this session by name"""
        for stream in self.streams:
            if stream.name == name:
                return stream
        raise KeyError(f"Stream '{name}' is not part of read session '{self.name}'")


@dataclass(frozen=True)
class StreamPosition:
    """Position sent to the server to start or resume reading a stream"""

    stream: Stream
    offset: int = 0

    def __post_init__(self):
        if self.offset < 0:
            raise ValueError(f'Invalid offset: {self.offset} (must be >= 0)')

    def to_dict(self) -> Dict[str, Any]:
        return {'stream': self.stream.name, 'offset': self.offset}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StreamPosition':
        return cls(stream=Stream(data['stream']), offset=int(data.get('offset', 0)))


@dataclass(frozen=True)
class SplitReadStreamResponse:
    """Server decision for a split request.

    Either stream may be missing when the server cannot split at the requested fraction.
    """

    primary_stream: Optional[Stream] = None
    remainder_stream: Optional[Stream] = None

    @property
    def is_feasible(self) -> bool:
        """True only when the server returned both halves of the split"""
        return self.primary_stream is not None and self.remainder_stream is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'primary_stream': self.primary_stream.name if self.primary_stream else None,
            'remainder_stream': self.remainder_stream.name if self.remainder_stream else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SplitReadStreamResponse':
        primary = data.get('primary_stream')
        remainder = data.get('remainder_stream')
        return cls(
            primary_stream=Stream(primary) if primary else None,
            remainder_stream=Stream(remainder) if remainder else None,
        )


@dataclass
class ResponseBatch:
    """One RPC response holding a contiguous block of rows"""

    data: pa.RecordBatch
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def num_rows(self) -> int:
        """Number of rows in the batch"""
        return self.data.num_rows


class SplitOutcome(Enum):
    """Outcome of a split attempt"""

    SUCCESSFUL = 'successful'
    INFEASIBLE = 'infeasible'
    STALE = 'stale'
    OTHER = 'other'


@dataclass(frozen=True)
class SplitResult:
    """Result of split_at_fraction: either a remainder source or the reason no split happened"""

    outcome: SplitOutcome
    remainder: Optional['StreamSource'] = None
    detail: Optional[str] = None

    @property
    def is_split(self) -> bool:
        """True if the split committed and a remainder is available"""
        return self.outcome == SplitOutcome.SUCCESSFUL

    @classmethod
    def successful(cls, remainder: 'StreamSource') -> 'SplitResult':
        return cls(outcome=SplitOutcome.SUCCESSFUL, remainder=remainder)

    @classmethod
    def infeasible(cls, detail: str) -> 'SplitResult':
        return cls(outcome=SplitOutcome.INFEASIBLE, detail=detail)

    @classmethod
    def stale(cls, detail: str) -> 'SplitResult':
        return cls(outcome=SplitOutcome.STALE, detail=detail)

    @classmethod
    def other(cls, detail: str) -> 'SplitResult':
        return cls(outcome=SplitOutcome.OTHER, detail=detail)
