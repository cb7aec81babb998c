#!/usr/bin/env python3
"""
Staged facet query runner.

For every facet: plan sampling stages, build each stage's query, run it
through the concurrency limiter under the scope's cancellation token, and
render each stage as soon as it completes. Later stages supersede earlier,
coarser ones.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging
import time

from .concurrency import ConcurrencyLimiter
from .config import Settings
from .definitions import ALL_BREAKDOWNS, BreakdownDefinition
from .errors import MissingValueLookupFailed, QueryCancelled
from .filters import Filter, FilterCompiler
from .query_builder import BUCKET_VALUE_ALIAS, Aggregation, QueryBuilder, build_aggregations
from .query_engine import QueryExecutor, QueryResult
from .render import Renderer
from .request_context import RequestContext, RequestContextRegistry
from .sampling import SamplingPlanner, SamplingStage, global_sample_rate
from .time_utils import TimeWindow

COUNT_KEYS = ('cnt', 'cnt_ok', 'cnt_4xx', 'cnt_5xx')


class FacetPhase(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    SETTLED = 'settled'
    ERRORED = 'errored'
    CANCELLED = 'cancelled'


@dataclass
class FacetProgress:
    """Per-facet state owned by the runner"""
    facet_id: str
    phase: FacetPhase = FacetPhase.IDLE
    stage_index: Optional[int] = None
    stage_count: int = 0
    rendered: bool = False
    sample_rate: Optional[float] = None
    elapsed_ms: Optional[float] = None
    error: Optional[str] = None


@dataclass
class StageResult:
    """Rows and totals of one completed stage"""
    rows: List[Dict[str, Any]]
    totals: Optional[Dict[str, Any]]
    elapsed_ms: float
    sample_rate: float
    summary_ratio: Optional[float] = None


@dataclass
class FacetRequest:
    """Everything resolved once per facet request"""
    definition: BreakdownDefinition
    column: str
    decomposed: bool
    where: str
    top_n: int
    stages: List[SamplingStage] = field(default_factory=list)
    # time window and extra predicate only, for the approximate template's totals row
    totals_where: str = ''

    @property
    def is_continuous_range(self) -> bool:
        return self.definition.is_bucketed and not self.decomposed


def zero_row(label: str, with_summary: bool = False) -> Dict[str, Any]:
    row = {'dim': label}
    row.update({key: 0 for key in COUNT_KEYS})
    if with_summary:
        row['summary_cnt'] = 0
    return row


def fill_bucket_rows(rows: List[Dict[str, Any]], labels: Sequence[str],
                     with_summary: bool = False) -> List[Dict[str, Any]]:
    """Rows for every expected label, in label order, zero-filled where absent"""
    by_label = {row.get('dim'): row for row in rows}
    return [by_label.get(label) or zero_row(label, with_summary) for label in labels]


def sort_by_count(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Count descending, then dimension; UNION ALL output carries no order"""
    data = list(rows)
    data.sort(key=lambda r: (-(r.get('cnt') or 0), str(r.get('dim'))))
    return data


def summary_ratio(totals: Optional[Dict[str, Any]]) -> Optional[float]:
    """summary_cnt / cnt from the totals row, None when unavailable"""
    if not totals:
        return None
    cnt = totals.get('cnt') or 0
    summary = totals.get('summary_cnt')
    if cnt <= 0 or summary is None:
        return None
    return summary / cnt


class StagedQueryRunner:
    """Runs sampled, progressively refined facet queries"""

    def __init__(self, engine: QueryExecutor, renderer: Renderer, *,
                 compiler: Optional[FilterCompiler] = None,
                 planner: Optional[SamplingPlanner] = None,
                 builder: Optional[QueryBuilder] = None,
                 limiter: Optional[ConcurrencyLimiter] = None,
                 contexts: Optional[RequestContextRegistry] = None,
                 settings: Optional[Settings] = None,
                 breakdowns: Optional[Sequence[BreakdownDefinition]] = None,
                 reference_time: Optional[datetime] = None):
        """
        Initialize runner.

        Args:
            engine: Query executor
            renderer: Render sink
            settings: Runtime settings (top-N, concurrency, sampling mode, table)
            breakdowns: Facets loaded by load_all (defaults to ALL_BREAKDOWNS)
            reference_time: "Now" used for data-age decisions (defaults to wall clock)
        """
        self.settings = settings or Settings()
        self.engine = engine
        self.renderer = renderer
        self.compiler = compiler or FilterCompiler()
        self.planner = planner or SamplingPlanner(self.settings.sampling_mode, self.settings.table)
        self.builder = builder or QueryBuilder()
        self.limiter = limiter or ConcurrencyLimiter(self.settings.max_concurrent)
        self.contexts = contexts or RequestContextRegistry()
        self.breakdowns = list(breakdowns) if breakdowns is not None else list(ALL_BREAKDOWNS)
        self.reference_time = reference_time
        self.top_n = self.settings.top_n
        # mode toggle name -> 'count' | 'bytes'
        self.modes: Dict[str, str] = {}
        self.progress: Dict[str, FacetProgress] = {}
        self.logger = logging.getLogger('logfacets.runner')

    # Runner-owned UI affordances

    def reset_progress(self):
        self.progress = {}

    def slowest_facet(self) -> Optional[FacetProgress]:
        timed = [p for p in self.progress.values() if p.elapsed_ms is not None]
        return max(timed, key=lambda p: p.elapsed_ms, default=None)

    def global_sample_rate(self) -> float:
        return global_sample_rate(
            p.sample_rate for p in self.progress.values() if p.rendered and p.sample_rate is not None)

    def _progress_for(self, facet_id: str) -> FacetProgress:
        if facet_id not in self.progress:
            self.progress[facet_id] = FacetProgress(facet_id)
        return self.progress[facet_id]

    # Request preparation

    def prepare(self, definition: BreakdownDefinition, filters: Sequence[Filter],
                window: TimeWindow) -> FacetRequest:
        """Resolve column, predicate and sampling plan for one facet"""
        top_n = self.top_n
        column = definition.resolve_column(top_n)

        decomposed = (definition.filter_operator == 'LIKE'
                      and bool(definition.filter_column)
                      and any(f.column == column for f in filters))
        if decomposed:
            column = definition.filter_column
            # the family filter stays applied while its values are broken out
            compiled = self.compiler.compile(filters)
        else:
            compiled = self.compiler.compile_excluding(filters, column)
        where = self.builder.build_where(window.to_sql(), compiled.predicate_text, definition.extra_predicate)
        totals_where = self.builder.build_where(window.to_sql(), '', definition.extra_predicate)
        data_age_ms = window.data_age_ms(self.reference_time)
        stages = self.planner.plan(definition.high_cardinality, window.period_ms, data_age_ms)
        return FacetRequest(definition, column, decomposed, where, top_n, stages, totals_where)

    def aggregations(self, definition: BreakdownDefinition, stage: SamplingStage) -> List[Aggregation]:
        bytes_mode = bool(definition.mode_toggle) and self.modes.get(definition.mode_toggle) == 'bytes'
        return build_aggregations(stage.row_multiplier, bytes_mode, definition.summary_predicate)

    def is_approx_stage(self, request: FacetRequest, index: int) -> bool:
        stage = request.stages[index]
        return (index == len(request.stages) - 1
                and request.definition.high_cardinality
                and not request.is_continuous_range
                and stage.sample_rate >= 1.0)

    def build_stage_query(self, request: FacetRequest, index: int) -> str:
        """Query text for one stage of a facet request"""
        definition = request.definition
        stage = request.stages[index]
        aggs = self.aggregations(definition, stage)

        if self.is_approx_stage(request, index):
            return self.builder.build_approx_top_query(
                request.column, aggs, stage.backing_source, request.where, request.top_n,
                totals_where=request.totals_where)

        if request.is_continuous_range and definition.raw_column:
            bucket_expr = definition.column.buckets(request.top_n, BUCKET_VALUE_ALIAS).expression
            return self.builder.build_bucketed_query(
                bucket_expr, definition.raw_column, aggs, stage, request.where,
                request.top_n, definition.order_by)

        return self.builder.build_breakdown_query(
            request.column, aggs, stage, request.where, request.top_n,
            None if request.decomposed else definition.order_by)

    async def _execute(self, query_text: str, ctx: RequestContext) -> Tuple[QueryResult, float]:
        async def run():
            start = time.monotonic()
            result = await self.engine.execute(query_text, ctx.token)
            return result, (time.monotonic() - start) * 1000
        return await self.limiter.run(run)

    async def _lookup_missing_values(self, request: FacetRequest, stage: SamplingStage,
                                     rows: List[Dict[str, Any]], filters: Sequence[Filter],
                                     ctx: RequestContext) -> List[Dict[str, Any]]:
        """
        Exact rows for active filter values on this facet that fell outside the top-N.

        Raises:
            QueryCancelled: the scope token fired
            MissingValueLookupFailed: the lookup query failed
        """
        present = {str(row.get('dim')) for row in rows}
        missing = [f for f in filters
                   if f.column == request.column and str(f.value) != '' and str(f.value) not in present]
        if not missing:
            return []

        definition = request.definition
        if definition.filter_column and not request.decomposed:
            search_column = definition.filter_column
        else:
            search_column = request.column
        values = []
        for f in missing:
            value = f.sql_value if f.sql_column == search_column else f.value
            if value not in values:
                values.append(value)

        query = self.builder.build_missing_values_query(
            request.column, search_column, values, self.aggregations(definition, stage), stage, request.where)
        try:
            result, _ = await self._execute(query, ctx)
        except QueryCancelled:
            raise
        except Exception as e:
            raise MissingValueLookupFailed(f"{definition.id}: {e}") from e

        extra = []
        for row in result.rows:
            if str(row.get('dim')) in present:
                continue
            row = dict(row)
            row['is_filtered_value'] = True
            extra.append(row)
        return extra

    async def run_stage(self, request: FacetRequest, index: int, filters: Sequence[Filter],
                        ctx: RequestContext) -> Optional[StageResult]:
        """Execute one stage; None when the result is stale"""
        definition = request.definition
        stage = request.stages[index]
        query = self.build_stage_query(request, index)

        result, elapsed_ms = await self._execute(query, ctx)
        if not self.contexts.is_current(ctx):
            return None

        if self.is_approx_stage(request, index):
            rows, totals = sort_by_count(result.rows), result.totals
        else:
            rows, totals = list(result.rows), result.totals

        if request.is_continuous_range:
            rows = fill_bucket_rows(rows, definition.expected_labels(request.top_n),
                                    bool(definition.summary_predicate))
        else:
            try:
                rows = rows + await self._lookup_missing_values(request, stage, rows, filters, ctx)
            except MissingValueLookupFailed as e:
                self.logger.debug(f"Missing value lookup failed: {e}")
            if not self.contexts.is_current(ctx):
                return None

        ratio = summary_ratio(totals) if definition.summary_predicate else None
        return StageResult(rows, totals, elapsed_ms, stage.sample_rate, ratio)

    def _render(self, request: FacetRequest, stage_result: StageResult, filters: Sequence[Filter]):
        definition = request.definition
        self.renderer.render(
            definition.id,
            stage_result.rows,
            stage_result.totals,
            request.column,
            stage_result.elapsed_ms,
            label_prefixes=definition.label_prefixes,
            summary_ratio=stage_result.summary_ratio,
            summary_label=definition.summary_label,
            is_continuous_range=request.is_continuous_range,
            filter_column=None if request.decomposed else definition.filter_column,
            filter_value_transform=None if request.decomposed else definition.filter_value_transform,
            filter_operator=None if request.decomposed else definition.filter_operator,
            sample_rate=stage_result.sample_rate,
            active_filters=list(filters),
        )

    async def load_facet(self, definition: BreakdownDefinition, filters: Sequence[Filter],
                         window: TimeWindow, scope: str = 'facets',
                         ctx: Optional[RequestContext] = None) -> FacetProgress:
        """
        Load one facet through all of its sampling stages.

        Never raises for query failures: errors render an error state (if
        nothing rendered yet) or are logged, cancellations end the load quietly.

        Args:
            definition: Facet to load
            filters: Active filters
            window: Queried time window
            scope: Activity scope whose token governs cancellation
            ctx: Request context to run under (defaults to the scope's current one)

        Returns:
            The facet's FacetProgress record
        """
        filters = list(filters)
        if ctx is None:
            ctx = self.contexts.current(scope) or self.contexts.start(scope)

        progress = self._progress_for(definition.id)
        progress.phase = FacetPhase.RUNNING
        progress.rendered = False
        progress.error = None

        request = self.prepare(definition, filters, window)
        progress.stage_count = len(request.stages)

        for index in range(len(request.stages)):
            progress.stage_index = index
            try:
                stage_result = await self.run_stage(request, index, filters, ctx)
            except QueryCancelled:
                progress.phase = FacetPhase.CANCELLED
                return progress
            except Exception as e:
                if not self.contexts.is_current(ctx):
                    progress.phase = FacetPhase.CANCELLED
                    return progress
                progress.error = str(e)
                if progress.rendered:
                    self.logger.warning(f"{definition.id} stage {index + 1} failed, keeping previous stage: {e}")
                    progress.phase = FacetPhase.SETTLED
                else:
                    self.logger.error(f"{definition.id} failed: {e}")
                    self.renderer.render_error(definition.id, str(e))
                    progress.phase = FacetPhase.ERRORED
                return progress

            if stage_result is None:
                self.logger.debug(f"Discarding stale result for {definition.id}")
                progress.phase = FacetPhase.CANCELLED
                return progress

            self._render(request, stage_result, filters)
            progress.rendered = True
            progress.sample_rate = stage_result.sample_rate
            progress.elapsed_ms = stage_result.elapsed_ms

        progress.phase = FacetPhase.SETTLED
        return progress

    async def load_all(self, filters: Sequence[Filter], window: TimeWindow,
                       scope: str = 'facets') -> Dict[str, FacetProgress]:
        """Start a new activity in scope and load every facet concurrently"""
        ctx = self.contexts.start(scope)
        self.reset_progress()
        filters = list(filters)
        await asyncio.gather(*(
            self.load_facet(definition, filters, window, scope, ctx=ctx)
            for definition in self.breakdowns
        ))
        return dict(self.progress)
