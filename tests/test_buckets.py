#!/usr/bin/env python3
"""Tests for bucket label generation."""

import pytest

from logfacets.buckets import (
    CONTENT_LENGTH_SEQUENCE,
    EMPTY_BUCKET_LABEL,
    TIME_ELAPSED_SEQUENCE,
    format_bytes,
    format_ms,
    generate_125_sequence,
    generate_byte_buckets,
    generate_duration_buckets,
    select_boundaries,
)

SIZES = [3, 5, 7, 10, 12, 15, 20]


@pytest.mark.parametrize('n', SIZES)
def test_byte_buckets_have_exactly_n_unique_labels(n):
    spec = generate_byte_buckets(n)
    assert len(spec.labels) == n
    assert len(set(spec.labels)) == n
    assert spec.labels[0] == EMPTY_BUCKET_LABEL
    assert spec.labels[-1].startswith('≥')


@pytest.mark.parametrize('n', SIZES)
def test_duration_buckets_have_exactly_n_unique_labels(n):
    spec = generate_duration_buckets(n)
    assert len(spec.labels) == n
    assert len(set(spec.labels)) == n
    assert spec.labels[0].startswith('<')
    assert spec.labels[-1].startswith('≥')


def test_125_sequence_stays_inside_range():
    seq = generate_125_sequence(10, 1000)
    assert seq == [10, 20, 50, 100, 200, 500, 1000]
    assert CONTENT_LENGTH_SEQUENCE[0] == 10
    assert CONTENT_LENGTH_SEQUENCE[-1] == 100000000


def test_select_boundaries_edges():
    candidates = [1, 2, 3, 4, 5]
    assert select_boundaries(candidates, 1) == [5]
    assert select_boundaries(candidates, 0) == [5]
    assert select_boundaries(candidates, 2) == [1, 5]
    assert select_boundaries(candidates, 3) == [1, 3, 5]
    assert select_boundaries(candidates, 10) == candidates


def test_byte_bucket_labels_for_five():
    spec = generate_byte_buckets(5)
    assert spec.boundaries == [10, 50000, 100000000]
    assert spec.labels == ['0 (empty)', '1 B-10 B', '10 B-50 KB', '50 KB-100 MB', '≥ 100 MB']


def test_duration_bucket_labels_for_five():
    spec = generate_duration_buckets(5)
    assert spec.boundaries == [1, 50, 1500, 60000]
    assert spec.labels == ['< 1ms', '1ms-50ms', '50ms-1.5s', '1.5s-60s', '≥ 60s']


def test_expression_is_first_match_case():
    spec = generate_duration_buckets(3, column='val')
    assert spec.expression == (
        "CASE WHEN val < 1 THEN '< 1ms' WHEN val < 60000 THEN '1ms-60s' ELSE '≥ 60s' END"
    )
    byte_spec = generate_byte_buckets(3)
    assert byte_spec.expression.startswith("CASE WHEN content_length = 0 THEN '0 (empty)'")


def test_formatting():
    assert format_bytes(0) == '0'
    assert format_bytes(500) == '500 B'
    assert format_bytes(2000) == '2 KB'
    assert format_bytes(1500) == '1.5 KB'
    assert format_bytes(5000000) == '5 MB'
    assert format_ms(700) == '700ms'
    assert format_ms(1000) == '1s'
    assert format_ms(1500) == '1.5s'
    assert format_ms(60000) == '60s'


def test_duration_candidates_are_ascending():
    assert TIME_ELAPSED_SEQUENCE == sorted(TIME_ELAPSED_SEQUENCE)
