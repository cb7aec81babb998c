#!/usr/bin/env python3
"""
Filter compilation for facet queries.
Turns the active filter list into a WHERE-clause fragment that is safe to
interpolate into DuckDB SQL, plus a structured per-column group map.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
import logging

from .columns import find_by_expression
from .definitions import BreakdownDefinition, build_allowed_columns, find_breakdown
from .errors import InvalidFilterRejected

logger = logging.getLogger('logfacets.filters')

ALLOWED_OPERATORS = ('=', 'LIKE')
NEGATED_OPERATORS = {'=': '!=', 'LIKE': 'NOT LIKE'}


@dataclass(frozen=True)
class Filter:
    """One active facet filter"""
    column: str
    value: Any
    exclude: bool = False
    filter_column: Optional[str] = None
    filter_value: Optional[Any] = None
    filter_operator: str = '='

    @property
    def sql_column(self) -> str:
        return self.filter_column or self.column

    @property
    def sql_value(self) -> Any:
        return self.filter_value if self.filter_value is not None else self.value


@dataclass
class FilterGroup:
    """Include/exclude (value, operator) pairs for one SQL column"""
    sql_column: str
    includes: List[Tuple[Any, str]] = field(default_factory=list)
    excludes: List[Tuple[Any, str]] = field(default_factory=list)


@dataclass
class CompiledFilters:
    """Result of compiling a filter list"""
    predicate_text: str
    groups: Dict[str, FilterGroup]
    rejected: List[InvalidFilterRejected] = field(default_factory=list)


def format_literal(value: Any) -> str:
    """Render a value as a SQL literal: numbers bare, everything else quoted"""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    escaped = str(value).replace("'", "''")
    return "'" + escaped + "'"


def _comparison(column: str, value: Any, operator: str, negate: bool) -> str:
    op = NEGATED_OPERATORS[operator] if negate else operator
    return f"{column} {op} {format_literal(value)}"


class FilterCompiler:
    """Compiles filters against an allow-list of column expressions"""

    def __init__(self, allowed_columns: Optional[Iterable[str]] = None):
        """
        Initialize compiler.

        Args:
            allowed_columns: Column expressions filters may target.
                Defaults to everything the facet catalog knows about.
        """
        if allowed_columns is None:
            allowed_columns = build_allowed_columns()
        self.allowed_columns: Set[str] = set(allowed_columns)

    def _validate(self, f: Filter) -> Optional[InvalidFilterRejected]:
        if f.sql_column not in self.allowed_columns:
            return InvalidFilterRejected(f.sql_column, "column not in allow-list")
        if f.filter_operator not in ALLOWED_OPERATORS:
            return InvalidFilterRejected(f.sql_column, f"operator {f.filter_operator!r} not allowed")
        return None

    def compile(self, filters: Sequence[Filter]) -> CompiledFilters:
        """
        Compile filters into predicate text and a group map.

        Args:
            filters: Active filters, in the order they were added

        Returns:
            CompiledFilters; rejected filters are dropped and listed in `rejected`
        """
        groups: Dict[str, FilterGroup] = {}
        rejected: List[InvalidFilterRejected] = []

        for f in filters or []:
            problem = self._validate(f)
            if problem is not None:
                logger.warning(f"Dropping filter: {problem}")
                rejected.append(problem)
                continue

            group = groups.setdefault(f.sql_column, FilterGroup(f.sql_column))
            pair = (f.sql_value, f.filter_operator)
            if f.exclude:
                group.excludes.append(pair)
            else:
                group.includes.append(pair)

        clauses = []
        for group in groups.values():
            parts = []
            if group.includes:
                include_parts = [_comparison(group.sql_column, v, op, False) for v, op in group.includes]
                if len(include_parts) == 1:
                    parts.append(include_parts[0])
                else:
                    parts.append("(" + " OR ".join(include_parts) + ")")
            if group.excludes:
                parts.append(" AND ".join(
                    _comparison(group.sql_column, v, op, True) for v, op in group.excludes))

            if len(parts) == 1:
                clauses.append(parts[0])
            else:
                clauses.append("(" + " AND ".join(parts) + ")")

        predicate_text = " ".join(f"AND {clause}" for clause in clauses)
        return CompiledFilters(predicate_text, groups, rejected)

    def compile_excluding(self, filters: Sequence[Filter], column: str) -> CompiledFilters:
        """Compile every filter except those on the given display column"""
        return self.compile([f for f in filters or [] if f.column != column])


def compile_filters(filters: Sequence[Filter],
                    allowed_columns: Optional[Iterable[str]] = None) -> CompiledFilters:
    """Convenience wrapper around FilterCompiler.compile"""
    return FilterCompiler(allowed_columns).compile(filters)


def is_filter_superset(current: Dict[str, FilterGroup], cached: Dict[str, FilterGroup]) -> bool:
    """
    Check whether the current group map narrows (or equals) a cached one.

    Every (value, operator) pair in each cached group must also be present in
    the matching current group, includes against includes and excludes
    against excludes. Values are compared as strings.
    """
    for sql_column, cached_group in (cached or {}).items():
        current_group = current.get(sql_column)
        if current_group is None:
            return False

        current_includes = {(str(v), op) for v, op in current_group.includes}
        current_excludes = {(str(v), op) for v, op in current_group.excludes}

        for v, op in cached_group.includes:
            if (str(v), op) not in current_includes:
                return False
        for v, op in cached_group.excludes:
            if (str(v), op) not in current_excludes:
                return False
    return True


class FilterState:
    """Ordered list of the session's active filters"""

    def __init__(self, breakdowns: Optional[Sequence[BreakdownDefinition]] = None):
        self.breakdowns = breakdowns
        self.filters: List[Filter] = []

    def __len__(self):
        return len(self.filters)

    def __iter__(self):
        return iter(self.filters)

    def make_filter(self, column: str, value: Any, exclude: bool = False) -> Filter:
        """Build a filter, resolving the facet's filter column and value transform"""
        breakdown = find_breakdown(column, self.breakdowns)
        if breakdown is None or not breakdown.filter_column:
            catalog = find_by_expression(column)
            if catalog is not None and catalog.filter_transform is not None:
                return Filter(column=column, value=value, exclude=exclude,
                              filter_value=catalog.filter_transform(value))
            return Filter(column=column, value=value, exclude=exclude)

        filter_value = value
        if breakdown.filter_value_transform is not None:
            filter_value = breakdown.filter_value_transform(value)
        return Filter(
            column=column,
            value=value,
            exclude=exclude,
            filter_column=breakdown.filter_column,
            filter_value=filter_value,
            filter_operator=breakdown.filter_operator,
        )

    def add(self, column: str, value: Any, exclude: bool = False) -> Filter:
        """Add a filter, replacing any existing one on the same (column, value)"""
        self.remove_value(column, value)
        new_filter = self.make_filter(column, value, exclude)
        self.filters.append(new_filter)
        return new_filter

    def remove(self, index: int):
        del self.filters[index]

    def remove_value(self, column: str, value: Any):
        self.filters = [f for f in self.filters
                        if not (f.column == column and str(f.value) == str(value))]

    def clear_column(self, column: str):
        self.filters = [f for f in self.filters if f.column != column]

    def clear(self):
        self.filters = []

    def for_column(self, column: str) -> List[Filter]:
        return [f for f in self.filters if f.column == column]
