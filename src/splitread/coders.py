"""Coders for values produced by a stream source's parse function."""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict

import pyarrow as pa


class Coder(ABC):
    """Serializes output values of a stream source"""

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        pass

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        pass


class JsonCoder(Coder):
    """UTF-8 JSON coder for dicts, lists and scalars"""

    def encode(self, value: Any) -> bytes:
        return json.dumps(value, sort_keys=True, default=str).encode('utf-8')

    def decode(self, data: bytes) -> Any:
        return json.loads(data.decode('utf-8'))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, JsonCoder)

    def __hash__(self) -> int:
        return hash(JsonCoder)


class ArrowRowCoder(Coder):
    """Encodes a single row dict as a one-row Arrow IPC stream"""

    def __init__(self, schema: pa.Schema):
        self.schema = schema

    def encode(self, value: Dict[str, Any]) -> bytes:
        batch = pa.RecordBatch.from_pylist([value], schema=self.schema)
        sink = pa.BufferOutputStream()
        with pa.ipc.new_stream(sink, self.schema) as writer:
            writer.write_batch(batch)
        return sink.getvalue().to_pybytes()

    def decode(self, data: bytes) -> Dict[str, Any]:
        table = pa.ipc.open_stream(pa.py_buffer(data)).read_all()
        if table.num_rows != 1:
            raise ValueError(f'Expected exactly one encoded row, found {table.num_rows}')
        return table.to_pylist()[0]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ArrowRowCoder) and self.schema.equals(other.schema)

    def __hash__(self) -> int:
        return hash(tuple(self.schema.names))
