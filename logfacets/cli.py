#!/usr/bin/env python3
"""
Text-based reporting interface for logfacets.
Loads request logs into DuckDB, runs every facet through the staged runner
and prints each stage's table.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from tabulate import tabulate

from . import __version__
from .columns import find_column, COLUMN_DEFS
from .config import TIME_RANGES, TOP_N_OPTIONS, Settings
from .data_source import RequestLogDataSource
from .definitions import ALL_BREAKDOWNS, BreakdownDefinition
from .filters import FilterState
from .materializer import SampleTierMaterializer
from .query_engine import DuckDBQueryEngine
from .render import ConsoleRenderer
from .runner import FacetProgress, StagedQueryRunner
from .time_utils import TimeWindow, parse_time_spec, resolve_window

FACET_ID_PREFIX = 'breakdown-'


def find_facet(key: str, breakdowns: Sequence[BreakdownDefinition] = ALL_BREAKDOWNS) -> Optional[BreakdownDefinition]:
    """Look up a facet by id, with or without the 'breakdown-' prefix"""
    for b in breakdowns:
        if key in (b.id, b.id[len(FACET_ID_PREFIX):]):
            return b
    return None


def resolve_filter_column(key: str, top_n: int) -> str:
    """Map a facet id, catalog key or log field to the column expression filters use"""
    facet = find_facet(key)
    if facet is not None:
        return facet.resolve_column(top_n)
    if key in COLUMN_DEFS:
        return COLUMN_DEFS[key].facet_column
    column = find_column(key)
    if column is not None:
        return column.facet_column
    return key


def parse_filter_arg(text: str) -> Tuple[str, str]:
    """Split 'column=value' (value may itself contain '=')"""
    if '=' not in text:
        raise argparse.ArgumentTypeError(f"Filter must look like column=value: {text!r}")
    key, value = text.split('=', 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError(f"Filter has an empty column: {text!r}")
    return key, value


class FacetReport:
    """Runs facet queries against request logs without any UI"""

    def __init__(self, settings: Settings, fmt: str = 'simple', materialize: bool = True):
        """Initialize report harness"""
        self.settings = settings
        self.data_source = RequestLogDataSource(
            settings.datadir, database=settings.database,
            table=settings.table, duckdb_threads=settings.duckdb_threads)
        self.materialize = materialize
        self.renderer = ConsoleRenderer(
            fmt=fmt, titles={b.id: b.title for b in ALL_BREAKDOWNS}, top_n=settings.top_n)
        self.logger = logging.getLogger('logfacets.cli')

    def prepare_data(self) -> int:
        """Load log files (when a datadir is given) and build the sampled tiers"""
        if self.data_source.datadir is not None:
            rows = self.data_source.load()
            self.logger.info(f"Loaded {rows} requests")
        else:
            self.data_source.create_table()

        if self.materialize and self.settings.sampling_mode == 'tables':
            materializer = SampleTierMaterializer(self.data_source.connect(), self.settings.table)
            timings = materializer.materialize_all()
            if not materializer.is_materialized:
                self.logger.error(f"Sampled tiers incomplete: {timings}")
        return self.data_source.row_count()

    def reference_time(self, now_spec: Optional[str]) -> datetime:
        """'Now' for relative windows: explicit --now, else the newest request"""
        if now_spec:
            return parse_time_spec(now_spec).timestamp
        _, latest = self.data_source.get_time_range()
        if latest is None:
            return datetime.now()
        # windows are half-open, keep the newest request inside
        return latest + timedelta(seconds=1)

    async def run(self, filter_state: FilterState, window: TimeWindow,
                  facets: Sequence[BreakdownDefinition], modes: Dict[str, str],
                  reference_time: datetime) -> Dict[str, FacetProgress]:
        runner = StagedQueryRunner(
            DuckDBQueryEngine(self.data_source),
            self.renderer,
            settings=self.settings,
            breakdowns=facets,
            reference_time=reference_time,
        )
        runner.modes.update(modes)
        progress = await runner.load_all(list(filter_state), window)

        slowest = runner.slowest_facet()
        summary = [
            ['window', window.describe()],
            ['facets', len(progress)],
            ['sample rate', f"{runner.global_sample_rate() * 100:g}%"],
        ]
        if slowest is not None:
            summary.append(['slowest', f"{slowest.facet_id} ({slowest.elapsed_ms:.0f}ms)"])
        print(tabulate(summary, tablefmt='plain'))
        return progress

    def close(self):
        self.data_source.close()


def list_facets():
    rows = [[b.id[len(FACET_ID_PREFIX):], b.title, b.resolve_column(TOP_N_OPTIONS[0])[:60],
             'yes' if b.high_cardinality else '']
            for b in ALL_BREAKDOWNS]
    print(tabulate(rows, headers=['facet', 'title', 'column', 'high card.'], tablefmt='simple'))


def list_columns():
    rows = [[key, col.log_key, col.label, col.short_label or '', col.facet_column]
            for key, col in COLUMN_DEFS.items()]
    print(tabulate(rows, headers=['key', 'log field', 'label', 'short', 'expression'], tablefmt='simple'))


def build_parser() -> argparse.ArgumentParser:
    defaults = Settings()
    parser = argparse.ArgumentParser(description='Faceted breakdowns over HTTP request logs')

    # Data source
    parser.add_argument('-d', '--datadir', type=str, default=defaults.datadir,
                        help='Directory with request log CSV/Parquet files (default: $LOGFACETS_DATADIR)')
    parser.add_argument('--database', type=str, default=defaults.database,
                        help='DuckDB database file (default: in-memory)')
    parser.add_argument('--table', type=str, default=defaults.table,
                        help='Requests table name')
    parser.add_argument('--no-materialize', action='store_true',
                        help='Do not (re)build the sampled tier tables')

    # Time window
    parser.add_argument('-r', '--range', dest='time_range', type=str, default='1h',
                        help=f"Named time range ({', '.join(TIME_RANGES)}) or a duration like 3h")
    parser.add_argument('--from', dest='from_time', type=str,
                        help='Start time (ISO format or relative like 2h ago)')
    parser.add_argument('--to', dest='to_time', type=str,
                        help='End time (ISO format or relative)')
    parser.add_argument('--now', dest='now', type=str,
                        help='Reference "now" (default: newest request in the data)')

    # Facets and filters
    parser.add_argument('-f', '--filter', action='append', type=parse_filter_arg, default=[],
                        help='Include filter column=value (repeatable)')
    parser.add_argument('-x', '--exclude', action='append', type=parse_filter_arg, default=[],
                        help='Exclude filter column=value (repeatable)')
    parser.add_argument('--facet', action='append', default=[],
                        help='Facet id to load (repeatable, default: all)')
    parser.add_argument('-n', '--top-n', type=int, choices=TOP_N_OPTIONS, default=defaults.top_n,
                        help='Rows per facet')
    parser.add_argument('--bytes', action='store_true',
                        help='Sum bytes instead of counting requests for facets with a mode toggle')
    parser.add_argument('--list-facets', action='store_true',
                        help='List facets and exit')
    parser.add_argument('--list-columns', action='store_true',
                        help='List filterable log columns and exit')

    # Execution
    parser.add_argument('--sampling-mode', choices=('tables', 'clause'), default=defaults.sampling_mode,
                        help='Read pre-sampled tier tables or use TABLESAMPLE')
    parser.add_argument('--concurrency', type=int, default=defaults.max_concurrent,
                        help='Maximum in-flight facet queries')
    parser.add_argument('--duckdb-threads', type=int, default=defaults.duckdb_threads,
                        help='Number of DuckDB threads (1 for deterministic results, default: auto)')
    parser.add_argument('--format', type=str, default='simple',
                        help="Table format: 'rich' or any tabulate format (simple, grid, plain, ...)")

    # Logging
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--debuglog', type=str,
                        help='Debug log file')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def setup_logging(debug: bool, debuglog: Optional[str]):
    log_level = logging.DEBUG if debug else logging.INFO
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    if debuglog:
        logging.basicConfig(level=log_level, format=log_format, filename=debuglog, filemode='w')
    else:
        logging.basicConfig(level=log_level, format=log_format)


def build_filter_state(includes: List[Tuple[str, str]], excludes: List[Tuple[str, str]],
                       top_n: int) -> FilterState:
    state = FilterState()
    for key, value in includes:
        state.add(resolve_filter_column(key, top_n), value, exclude=False)
    for key, value in excludes:
        state.add(resolve_filter_column(key, top_n), value, exclude=True)
    return state


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the reporting CLI"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_facets:
        list_facets()
        return 0
    if args.list_columns:
        list_columns()
        return 0

    setup_logging(args.debug, args.debuglog)

    facets = list(ALL_BREAKDOWNS)
    if args.facet:
        facets = []
        for key in args.facet:
            facet = find_facet(key)
            if facet is None:
                print(f"Error: unknown facet: {key}", file=sys.stderr)
                return 1
            facets.append(facet)

    try:
        settings = Settings(
            datadir=args.datadir,
            database=args.database,
            table=args.table,
            max_concurrent=args.concurrency,
            top_n=args.top_n,
            sampling_mode=args.sampling_mode,
            duckdb_threads=args.duckdb_threads,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not settings.datadir and settings.database == ':memory:':
        print("Error: Data directory not specified.", file=sys.stderr)
        print("Please either:", file=sys.stderr)
        print("  1. Set the LOGFACETS_DATADIR environment variable", file=sys.stderr)
        print("  2. Use the -d/--datadir command line option", file=sys.stderr)
        print("  3. Point --database at an existing DuckDB file", file=sys.stderr)
        return 1

    try:
        report = FacetReport(settings, fmt=args.format, materialize=not args.no_materialize)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        report.prepare_data()
        reference = report.reference_time(args.now)
        window = resolve_window(args.time_range, args.from_time, args.to_time, now=reference)
        filter_state = build_filter_state(args.filter, args.exclude, settings.top_n)
        modes = {b.mode_toggle: 'bytes' for b in facets if b.mode_toggle and args.bytes}
        asyncio.run(report.run(filter_state, window, facets, modes, reference))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        report.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
