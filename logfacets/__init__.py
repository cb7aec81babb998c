#!/usr/bin/env python3
"""
logfacets: faceted breakdown query planner for HTTP request logs.
"""

__version__ = '0.1.0'

from .definitions import ALL_BREAKDOWNS, BreakdownDefinition, BucketedColumn, StaticColumn
from .errors import (
    InvalidFilterRejected,
    LogFacetsError,
    MissingValueLookupFailed,
    QueryCancelled,
    QueryError,
)
from .filters import Filter, FilterCompiler, FilterState, compile_filters, is_filter_superset
from .sampling import SamplingPlanner, SamplingStage, retention_ceiling
from .runner import FacetPhase, StagedQueryRunner

__all__ = [
    'ALL_BREAKDOWNS',
    'BreakdownDefinition',
    'BucketedColumn',
    'StaticColumn',
    'InvalidFilterRejected',
    'LogFacetsError',
    'MissingValueLookupFailed',
    'QueryCancelled',
    'QueryError',
    'Filter',
    'FilterCompiler',
    'FilterState',
    'compile_filters',
    'is_filter_superset',
    'SamplingPlanner',
    'SamplingStage',
    'retention_ceiling',
    'FacetPhase',
    'StagedQueryRunner',
]
