#!/usr/bin/env python3
"""
Breakdown (facet) definitions.
Each facet summarizes one dimension of the request log as a top-N table.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Set, Union

from .buckets import (
    BucketSpec,
    CONTENT_LENGTH_COLUMN,
    TIME_ELAPSED_COLUMN,
    generate_byte_buckets,
    generate_duration_buckets,
)
from .columns import get_facet_columns
from .config import TOP_N_OPTIONS


@dataclass(frozen=True)
class StaticColumn:
    """Facet grouped by a fixed column expression"""
    expression: str

    is_bucketed = False

    def resolve(self, top_n: int) -> str:
        return self.expression


@dataclass(frozen=True)
class BucketedColumn:
    """Facet grouped by generated numeric ranges over a raw column"""
    generator: Callable[[int, str], BucketSpec]
    source_column: str

    is_bucketed = True

    def buckets(self, top_n: int, column: Optional[str] = None) -> BucketSpec:
        return self.generator(top_n, column or self.source_column)

    def resolve(self, top_n: int) -> str:
        return self.buckets(top_n).expression

    def expected_labels(self, top_n: int) -> List[str]:
        return list(self.buckets(top_n).labels)


FacetColumn = Union[StaticColumn, BucketedColumn]


@dataclass(frozen=True)
class BreakdownDefinition:
    """Static descriptor of one facet"""
    id: str
    title: str
    column: FacetColumn
    filter_column: Optional[str] = None
    filter_operator: str = '='
    filter_value_transform: Optional[Callable[[str], Any]] = None
    extra_predicate: Optional[str] = None
    high_cardinality: bool = False
    raw_column: Optional[str] = None
    order_by: Optional[str] = None
    summary_predicate: Optional[str] = None
    summary_label: Optional[str] = None
    label_prefixes: Optional[Sequence[str]] = None
    mode_toggle: Optional[str] = None

    @property
    def is_bucketed(self) -> bool:
        return self.column.is_bucketed

    def resolve_column(self, top_n: int) -> str:
        """Column expression for a request with the given top-N"""
        return self.column.resolve(top_n)

    def expected_labels(self, top_n: int) -> Optional[List[str]]:
        """Complete ordered label list for continuous-range facets, else None"""
        if isinstance(self.column, BucketedColumn):
            return self.column.expected_labels(top_n)
        return None


def parse_asn(value: str) -> int:
    """'15169 Google LLC' -> 15169"""
    return int(str(value).split(' ')[0])


def content_type_family_pattern(value: str) -> str:
    """'image/*' -> 'image/%' for LIKE matching"""
    return str(value).replace('*', '%')


ALL_BREAKDOWNS: List[BreakdownDefinition] = [
    BreakdownDefinition(
        id='breakdown-status-range',
        title='Status Range',
        column=StaticColumn("CAST(status // 100 AS VARCHAR) || 'xx'"),
        summary_predicate='status >= 500',
        summary_label='errors',
    ),
    BreakdownDefinition(
        id='breakdown-hosts',
        title='Hosts',
        column=StaticColumn('host'),
        label_prefixes=('main--',),
    ),
    BreakdownDefinition(
        id='breakdown-forwarded-hosts',
        title='Forwarded Hosts',
        column=StaticColumn('forwarded_host'),
    ),
    BreakdownDefinition(
        id='breakdown-content-types',
        title='Content Types',
        column=StaticColumn('content_type'),
        mode_toggle='content_type_mode',
    ),
    BreakdownDefinition(
        id='breakdown-content-type-families',
        title='Content Type Families',
        column=StaticColumn("split_part(content_type, '/', 1) || '/*'"),
        filter_column='content_type',
        filter_operator='LIKE',
        filter_value_transform=content_type_family_pattern,
    ),
    BreakdownDefinition(
        id='breakdown-status',
        title='Status',
        column=StaticColumn('CAST(status AS VARCHAR)'),
    ),
    BreakdownDefinition(
        id='breakdown-errors',
        title='Errors',
        column=StaticColumn('x_error'),
        extra_predicate="x_error != ''",
    ),
    BreakdownDefinition(
        id='breakdown-cache',
        title='Cache Status',
        column=StaticColumn('upper(cache_status)'),
        summary_predicate="upper(cache_status) = 'HIT'",
        summary_label='hit rate',
    ),
    BreakdownDefinition(
        id='breakdown-paths',
        title='Paths',
        column=StaticColumn('url'),
        high_cardinality=True,
    ),
    BreakdownDefinition(
        id='breakdown-referers',
        title='Referers',
        column=StaticColumn('referer'),
        high_cardinality=True,
        label_prefixes=('https://', 'http://'),
    ),
    BreakdownDefinition(
        id='breakdown-user-agents',
        title='User Agents',
        column=StaticColumn('user_agent'),
        high_cardinality=True,
        label_prefixes=('Mozilla/5.0 ',),
    ),
    BreakdownDefinition(
        id='breakdown-ips',
        title='Client IPs',
        column=StaticColumn("CASE WHEN forwarded_for != '' THEN forwarded_for ELSE client_ip END"),
        high_cardinality=True,
    ),
    BreakdownDefinition(
        id='breakdown-request-type',
        title='Request Type',
        column=StaticColumn('request_type'),
        extra_predicate="request_type != ''",
    ),
    BreakdownDefinition(
        id='breakdown-backend-type',
        title='Backend Type',
        column=StaticColumn('backend_type'),
        extra_predicate="backend_type != ''",
    ),
    BreakdownDefinition(
        id='breakdown-methods',
        title='Methods',
        column=StaticColumn('method'),
    ),
    BreakdownDefinition(
        id='breakdown-datacenters',
        title='Datacenters',
        column=StaticColumn('datacenter'),
    ),
    BreakdownDefinition(
        id='breakdown-asn',
        title='ASN',
        column=StaticColumn("CAST(asn AS VARCHAR) || ' ' || asn_name"),
        filter_column='asn',
        filter_value_transform=parse_asn,
        extra_predicate='asn != 0',
    ),
    BreakdownDefinition(
        id='breakdown-content-length',
        title='Content Length',
        column=BucketedColumn(generate_byte_buckets, CONTENT_LENGTH_COLUMN),
        raw_column=CONTENT_LENGTH_COLUMN,
        order_by='min_val',
    ),
    BreakdownDefinition(
        id='breakdown-time-elapsed',
        title='Response Time',
        column=BucketedColumn(generate_duration_buckets, TIME_ELAPSED_COLUMN),
        raw_column=TIME_ELAPSED_COLUMN,
        order_by='min_val',
        summary_predicate=f'{TIME_ELAPSED_COLUMN} >= 1000',
        summary_label='slow',
    ),
]


def find_breakdown(column: str, breakdowns: Optional[Sequence[BreakdownDefinition]] = None,
                   top_n_options: Sequence[int] = TOP_N_OPTIONS) -> Optional[BreakdownDefinition]:
    """Find the facet whose display column matches, trying every top-N for bucketed facets"""
    for b in breakdowns if breakdowns is not None else ALL_BREAKDOWNS:
        if isinstance(b.column, StaticColumn):
            if b.column.expression == column:
                return b
        elif any(b.resolve_column(n) == column for n in top_n_options):
            return b
    return None


def build_allowed_columns(breakdowns: Optional[Sequence[BreakdownDefinition]] = None,
                          top_n_options: Sequence[int] = TOP_N_OPTIONS) -> Set[str]:
    """
    Every column expression a filter may legally target.

    Args:
        breakdowns: Facet definitions (defaults to ALL_BREAKDOWNS)
        top_n_options: Top-N values whose bucket expressions are allowed

    Returns:
        Set of SQL column expressions
    """
    allowed = set(get_facet_columns())
    for b in breakdowns if breakdowns is not None else ALL_BREAKDOWNS:
        if isinstance(b.column, StaticColumn):
            allowed.add(b.column.expression)
        else:
            for n in top_n_options:
                allowed.add(b.resolve_column(n))
        if b.filter_column:
            allowed.add(b.filter_column)
        if b.raw_column:
            allowed.add(b.raw_column)
    return allowed
