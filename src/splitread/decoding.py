"""
Row decoding for response batches.
"""

from typing import Any, Dict, Optional

import pyarrow as pa

from .errors import RowDecodeError


class RowCursor:
    """
    Decoder cursor over the rows of one response batch.

    Rows are decoded one at a time into dicts of column name to Python value.
    A batch whose schema differs from the session schema is cast to it first.
    """

    def __init__(self, batch: pa.RecordBatch, schema: Optional[pa.Schema] = None, stream: str = None):
        table = pa.Table.from_batches([batch])
        if schema is not None and not table.schema.equals(schema):
            try:
                table = table.cast(schema)
            except (pa.ArrowException, ValueError) as e:
                raise RowDecodeError(f'Response batch does not match the session schema: {e}', stream) from e

        self._stream = stream
        self._names = table.schema.names
        self._columns = table.columns
        self._num_rows = table.num_rows
        self._position = 0

    @property
    def num_rows(self) -> int:
        return self._num_rows

    def is_end(self) -> bool:
        """True once every row of the batch has been read"""
        return self._position >= self._num_rows

    def skip(self, count: int) -> int:
        """Move past up to `count` rows without decoding them; returns how many were skipped"""
        skipped = min(count, self._num_rows - self._position)
        self._position += skipped
        return skipped

    def read(self) -> Dict[str, Any]:
        """Decode the next row of the batch"""
        if self.is_end():
            raise RowDecodeError(f'Read past the end of a {self._num_rows}-row batch', self._stream)

        position = self._position
        try:
            row = {name: column[position].as_py() for name, column in zip(self._names, self._columns)}
        except pa.ArrowException as e:
            raise RowDecodeError(f'Failed to decode row {position} of response batch: {e}', self._stream) from e

        self._position += 1
        return row
