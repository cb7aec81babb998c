#!/usr/bin/env python3
"""
Bucket label generation for continuous numeric facets.
Partitions a numeric column into exactly N labelled ranges and emits the
matching first-match CASE expression for DuckDB.
"""

from dataclasses import dataclass
from typing import List, Sequence
import math


CONTENT_LENGTH_COLUMN = 'content_length'
TIME_ELAPSED_COLUMN = 'time_elapsed_ms'

EMPTY_BUCKET_LABEL = '0 (empty)'
OPEN_RANGE_PREFIX = '≥ '


@dataclass(frozen=True)
class BucketSpec:
    """Bucket expression plus its ordered labels"""
    expression: str
    labels: List[str]
    boundaries: List[int]


def generate_125_sequence(min_val: int, max_val: int) -> List[int]:
    """
    Generate 1/2/5 boundaries (three per decade) between min_val and max_val.

    Args:
        min_val: First decade start, e.g. 10
        max_val: Largest allowed boundary

    Returns:
        Ascending list of boundary values
    """
    boundaries = []
    val = min_val
    while val <= max_val:
        boundaries.extend([val, val * 2, val * 5])
        val *= 10
    return [v for v in boundaries if min_val <= v <= max_val]


def select_boundaries(candidates: Sequence[int], count: int) -> List[int]:
    """Pick exactly `count` boundaries evenly spaced by index.

    The first and last candidates are always kept when count >= 2; a count of
    one or less keeps only the last candidate.
    """
    if count >= len(candidates):
        return list(candidates)
    if count <= 1:
        return [candidates[-1]]

    last = len(candidates) - 1
    selected = []
    for i in range(count):
        # round half up
        idx = math.floor(i * last / (count - 1) + 0.5)
        selected.append(candidates[idx])
    return selected


def format_bytes(num_bytes: int) -> str:
    """Format a byte count using decimal KB/MB units"""
    if num_bytes == 0:
        return '0'
    if num_bytes < 1000:
        return f"{num_bytes} B"
    if num_bytes < 1000000:
        return f"{num_bytes / 1000:g} KB"
    return f"{num_bytes / 1000000:g} MB"


def format_ms(ms: int) -> str:
    """Format milliseconds, switching to seconds from 1000ms up"""
    if ms < 1000:
        return f"{ms}ms"
    s = ms / 1000
    if s.is_integer():
        return f"{int(s)}s"
    if (s * 2).is_integer():
        return f"{s:g}s"
    return f"{s:.1f}s"


# 10 B to 100 MB
CONTENT_LENGTH_SEQUENCE = generate_125_sequence(10, 100000000)

# 1ms to 60s; human-meaningful latency steps are not uniform per decade
TIME_ELAPSED_SEQUENCE = [
    1, 2, 3, 5, 7, 10, 15, 20, 30, 50, 70, 100,
    150, 200, 300, 500, 700, 1000,
    1500, 2000, 3000, 5000, 7000, 10000,
    15000, 20000, 30000, 60000,
]


def _case_expression(conditions: List[str], else_label: str) -> str:
    whens = " ".join(conditions)
    return f"CASE {whens} ELSE '{else_label}' END"


def generate_byte_buckets(n: int, column: str = CONTENT_LENGTH_COLUMN) -> BucketSpec:
    """
    Build n byte-size buckets: an empty bucket, n-2 ranges and an open top range.

    Args:
        n: Number of buckets wanted (the facet's top-N)
        column: Column or alias the expression compares against

    Returns:
        BucketSpec with the CASE expression and ordered labels
    """
    boundaries = select_boundaries(CONTENT_LENGTH_SEQUENCE, max(1, n - 2))

    labels = [EMPTY_BUCKET_LABEL]
    conditions = [f"WHEN {column} = 0 THEN '{EMPTY_BUCKET_LABEL}'"]

    first_label = f"1 B-{format_bytes(boundaries[0])}"
    labels.append(first_label)
    conditions.append(f"WHEN {column} < {boundaries[0]} THEN '{first_label}'")

    for prev, curr in zip(boundaries, boundaries[1:]):
        label = f"{format_bytes(prev)}-{format_bytes(curr)}"
        labels.append(label)
        conditions.append(f"WHEN {column} < {curr} THEN '{label}'")

    top_label = f"{OPEN_RANGE_PREFIX}{format_bytes(boundaries[-1])}"
    labels.append(top_label)

    return BucketSpec(_case_expression(conditions, top_label), labels, boundaries)


def generate_duration_buckets(n: int, column: str = TIME_ELAPSED_COLUMN) -> BucketSpec:
    """
    Build n latency buckets: a below-first range, n-2 ranges and an open top range.

    Args:
        n: Number of buckets wanted (the facet's top-N)
        column: Column or alias holding milliseconds

    Returns:
        BucketSpec with the CASE expression and ordered labels
    """
    boundaries = select_boundaries(TIME_ELAPSED_SEQUENCE, max(1, n - 1))

    first_label = f"< {format_ms(boundaries[0])}"
    labels = [first_label]
    conditions = [f"WHEN {column} < {boundaries[0]} THEN '{first_label}'"]

    for prev, curr in zip(boundaries, boundaries[1:]):
        label = f"{format_ms(prev)}-{format_ms(curr)}"
        labels.append(label)
        conditions.append(f"WHEN {column} < {curr} THEN '{label}'")

    top_label = f"{OPEN_RANGE_PREFIX}{format_ms(boundaries[-1])}"
    labels.append(top_label)

    return BucketSpec(_case_expression(conditions, top_label), labels, boundaries)
