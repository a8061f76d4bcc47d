# tests/fixtures/test_data.py
"""
Test data generation utilities for stream reader tests.
"""

from typing import Any, Dict, List

import pyarrow as pa

TEST_SCHEMA = pa.schema([('id', pa.int64()), ('name', pa.string()), ('score', pa.float64())])


def create_test_rows(num_rows: int = 100, start: int = 0) -> List[Dict[str, Any]]:
    """
    Create rows with a unique, increasing id so ordering and loss can be checked.

    Args:
        num_rows: Number of rows to generate
        start: First id

    Returns:
        List of row dicts matching TEST_SCHEMA
    """
    return [{'id': i, 'name': f'row_{i:05d}', 'score': i * 0.5} for i in range(start, start + num_rows)]


def rows_to_batch(rows: List[Dict[str, Any]], schema: pa.Schema = TEST_SCHEMA) -> pa.RecordBatch:
    """Convert row dicts to a RecordBatch"""
    return pa.RecordBatch.from_pylist(rows, schema=schema)


def partition_sizes(total: int, sizes: List[int]) -> List[int]:
    """
    Cut `total` rows into batch sizes by cycling over `sizes`.

    A zero in `sizes` produces an empty batch. The last size is truncated to fit.
    """
    if not any(size > 0 for size in sizes):
        raise ValueError('sizes must contain at least one positive size')

    result = []
    remaining = total
    i = 0
    while remaining > 0:
        size = min(sizes[i % len(sizes)], remaining)
        result.append(size)
        remaining -= size
        i += 1
    return result


TEST_TABLE = 'project.dataset.test_table'


def identity_parse(row, table_schema):
    """Parse function returning the decoded row unchanged"""
    return row
