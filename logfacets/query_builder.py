#!/usr/bin/env python3
"""
SQL query builder for facet breakdowns.
Builds DuckDB queries from reusable SQL fragments.
"""

from pathlib import Path
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging
import re

from .buckets import CONTENT_LENGTH_COLUMN
from .filters import format_literal
from .sampling import SamplingStage

DEFAULT_FRAGMENTS_PATH = Path(__file__).parent / 'sql' / 'fragments'

_PLACEHOLDER_RE = re.compile(r'#([A-Z_]+)#')

# Alias of the raw value column inside the bucketed template
BUCKET_VALUE_ALIAS = 'val'

STATUS_CLASSES = [
    ('cnt_ok', 'status < 400'),
    ('cnt_4xx', 'status >= 400 AND status < 500'),
    ('cnt_5xx', 'status >= 500'),
]


class FragmentLoader:
    """Loads and caches SQL fragments from disk"""

    def __init__(self, fragments_path: Optional[Path] = None):
        self.fragments_path = fragments_path or DEFAULT_FRAGMENTS_PATH
        self.cache: Dict[str, str] = {}
        self.logger = logging.getLogger('logfacets.fragments')

    def load(self, fragment_name: str) -> str:
        """Load a SQL fragment by name (without .sql extension)"""
        if fragment_name in self.cache:
            return self.cache[fragment_name]

        fragment_file = self.fragments_path / f"{fragment_name}.sql"
        if not fragment_file.exists():
            raise FileNotFoundError(f"Fragment not found: {fragment_file}")

        with open(fragment_file, 'r') as f:
            content = f.read()

        self.cache[fragment_name] = content
        self.logger.debug(f"Loaded fragment: {fragment_name}")
        return content

    def render(self, fragment_name: str, values: Dict[str, Any]) -> str:
        """
        Load a fragment and substitute its #PLACEHOLDER# markers.

        Raises:
            KeyError: a placeholder in the fragment has no value
        """
        template = self.load(fragment_name)

        def substitute(match):
            key = match.group(1)
            if key not in values:
                raise KeyError(f"No value for placeholder #{key}# in {fragment_name}")
            return str(values[key])

        return _PLACEHOLDER_RE.sub(substitute, template)

    def clear_cache(self):
        """Clear the fragment cache"""
        self.cache.clear()


@dataclass(frozen=True)
class Aggregation:
    """One aggregate output column and how it rolls up into the totals row"""
    alias: str
    expression: str
    rollup: str = 'SUM'


def build_aggregations(row_multiplier: int = 1, bytes_mode: bool = False,
                       summary_predicate: Optional[str] = None) -> List[Aggregation]:
    """
    Aggregate expressions for a facet query.

    Args:
        row_multiplier: Scale-up factor for sampled stages (1 when unsampled)
        bytes_mode: Sum content_length instead of counting requests
        summary_predicate: Optional highlight predicate counted as summary_cnt

    Returns:
        List of Aggregation, always starting with cnt
    """
    def measure(condition: Optional[str]) -> str:
        if bytes_mode:
            expr = f"SUM({CONTENT_LENGTH_COLUMN})"
            if condition:
                expr += f" FILTER (WHERE {condition})"
            expr = f"COALESCE({expr}, 0)"
        else:
            expr = "COUNT(*)"
            if condition:
                expr += f" FILTER (WHERE {condition})"
        if row_multiplier != 1:
            expr = f"{expr} * {row_multiplier}"
        return expr

    aggregations = [Aggregation('cnt', measure(None))]
    for alias, condition in STATUS_CLASSES:
        aggregations.append(Aggregation(alias, measure(condition)))
    if summary_predicate:
        aggregations.append(Aggregation('summary_cnt', measure(summary_predicate)))
    return aggregations


class QueryBuilder:
    """Builds facet SQL queries using modular fragments"""

    def __init__(self, fragments_path: Optional[Path] = None):
        """
        Initialize query builder.

        Args:
            fragments_path: Path to SQL fragments directory
        """
        self.fragments = FragmentLoader(fragments_path)
        self.logger = logging.getLogger('logfacets.query_builder')

    @staticmethod
    def build_where(time_filter: str, predicate_text: str = '',
                    extra_predicate: Optional[str] = None) -> str:
        """Combine the time window, compiled filters and a facet's extra predicate"""
        parts = [time_filter or '1=1']
        if predicate_text:
            parts.append(predicate_text)
        if extra_predicate:
            parts.append(f"AND {extra_predicate}")
        return " ".join(parts)

    @staticmethod
    def _select_list(aggregations: Sequence[Aggregation]) -> str:
        return ",\n    ".join(f"{a.expression} AS {a.alias}" for a in aggregations)

    def _wrap_top_totals(self, grouped_query: str, aggregations: Sequence[Aggregation],
                         order_by: str, limit: int, extra_columns: Sequence[Aggregation] = ()) -> str:
        outputs = list(aggregations) + list(extra_columns)
        columns = ", ".join(['dim'] + [a.alias for a in outputs])
        totals = ", ".join(f"{a.rollup}({a.alias}) AS {a.alias}" for a in outputs)
        return self.fragments.render('breakdown_top_totals', {
            'GROUPED_QUERY': grouped_query,
            'ORDER_BY': order_by,
            'LIMIT': int(limit),
            'COLUMNS': columns,
            'TOTALS': totals,
        })

    def build_breakdown_query(self, dim_expr: str, aggregations: Sequence[Aggregation],
                              stage: SamplingStage, where: str, limit: int,
                              order_by: Optional[str] = None) -> str:
        """
        Top-N breakdown with a totals row (is_total = TRUE) over all groups.

        Args:
            dim_expr: Dimension expression to group by
            aggregations: Aggregate columns (see build_aggregations)
            stage: Sampling stage providing source table and sample clause
            where: Full WHERE condition (see build_where)
            limit: Top-N
            order_by: Ordering of the top rows (defaults to count descending)

        Returns:
            SQL query string
        """
        grouped = self.fragments.render('breakdown_grouped', {
            'DIM_EXPR': dim_expr,
            'AGGREGATIONS': self._select_list(aggregations),
            'SOURCE': stage.backing_source,
            'SAMPLE_CLAUSE': stage.sample_clause,
            'WHERE': where,
        })
        query = self._wrap_top_totals(grouped, aggregations, order_by or 'cnt DESC, dim', limit)
        self.logger.debug(f"Breakdown query:\n{query}")
        return query

    def build_bucketed_query(self, bucket_expr: str, raw_column: str,
                             aggregations: Sequence[Aggregation], stage: SamplingStage,
                             where: str, limit: int, order_by: Optional[str] = None) -> str:
        """
        Two-level breakdown for continuous-range facets.

        The inner level groups by the raw value; the outer level maps raw values
        to bucket labels. bucket_expr must compare against BUCKET_VALUE_ALIAS.
        """
        outer = [Aggregation(a.alias, f"SUM({a.alias})", a.rollup) for a in aggregations]
        grouped = self.fragments.render('breakdown_bucketed_grouped', {
            'BUCKET_EXPR': bucket_expr,
            'OUTER_AGGREGATIONS': self._select_list(outer),
            'RAW_COLUMN': raw_column,
            'AGGREGATIONS': self._select_list(aggregations),
            'SOURCE': stage.backing_source,
            'SAMPLE_CLAUSE': stage.sample_clause,
            'WHERE': where,
        })
        query = self._wrap_top_totals(grouped, aggregations, order_by or 'min_val', limit,
                                      extra_columns=[Aggregation('min_val', 'min_val', 'MIN')])
        self.logger.debug(f"Bucketed breakdown query:\n{query}")
        return query

    def build_approx_top_query(self, dim_expr: str, aggregations: Sequence[Aggregation],
                               source: str, where: str, limit: int,
                               totals_where: Optional[str] = None) -> str:
        """
        Approximate top-K candidates, exact counts for them, plus a totals row.

        Candidates and their counts are restricted to `where`. The totals row
        (dim = '', is_total TRUE) covers every row matching `totals_where`,
        which callers set to the time window and extra predicate only so the
        totals ignore facet filters. Falls back to `where` when not given.
        """
        query = self.fragments.render('breakdown_approx_top', {
            'DIM_EXPR': dim_expr,
            'AGGREGATIONS': self._select_list(aggregations),
            'SOURCE': source,
            'WHERE': where,
            'TOTALS_WHERE': totals_where or where,
            'LIMIT': int(limit),
        })
        self.logger.debug(f"Approximate top-K query:\n{query}")
        return query

    def build_missing_values_query(self, dim_expr: str, search_column: str, values: Sequence[Any],
                                   aggregations: Sequence[Aggregation], stage: SamplingStage,
                                   where: str) -> str:
        """Exact rows for specific filter values that fell outside the top-N"""
        if not values:
            raise ValueError("No values to look up")
        query = self.fragments.render('breakdown_missing', {
            'DIM_EXPR': dim_expr,
            'AGGREGATIONS': self._select_list(aggregations),
            'SOURCE': stage.backing_source,
            'SAMPLE_CLAUSE': stage.sample_clause,
            'WHERE': where,
            'SEARCH_COLUMN': search_column,
            'VALUES': ", ".join(format_literal(v) for v in values),
        })
        self.logger.debug(f"Missing values query:\n{query}")
        return query
