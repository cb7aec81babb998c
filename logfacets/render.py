#!/usr/bin/env python3
"""
Render collaborator for facet results.
build_facet_view turns a stage's rows into a display-ready view model;
ConsoleRenderer prints views as plain tables (tabulate) or coloured
tables (rich).
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, TextIO, Tuple
import logging
import sys

from rich.console import Console
from rich.table import Table
from rich.text import Text
from tabulate import tabulate

from .config import DEFAULT_TOP_N, TOP_N_OPTIONS

FAST_MS = 2500
MEDIUM_MS = 4000
EMPTY_DIM_LABEL = '(empty)'
OTHER_LABEL = '(other)'
BAR_WIDTH = 24


class Renderer(Protocol):
    """Sink for facet results; return values are ignored"""

    def render(self, facet_id: str, rows: List[Dict[str, Any]], totals: Optional[Dict[str, Any]],
               column: str, elapsed_ms: float, *,
               label_prefixes: Optional[Sequence[str]] = None,
               summary_ratio: Optional[float] = None,
               summary_label: Optional[str] = None,
               is_continuous_range: bool = False,
               filter_column: Optional[str] = None,
               filter_value_transform: Optional[Callable[[str], Any]] = None,
               filter_operator: Optional[str] = None,
               sample_rate: float = 1.0,
               active_filters: Sequence[Any] = ()) -> None:
        ...

    def render_error(self, facet_id: str, message: str) -> None:
        ...


@dataclass
class FacetRowView:
    """One displayed row of a facet table"""
    dim: str
    prefix: str
    label: str
    cnt: int
    bar_width: float
    pct_ok: float
    pct_4xx: float
    pct_5xx: float
    filter_state: Optional[str] = None
    is_filtered_value: bool = False
    is_other: bool = False
    overflow: bool = False


@dataclass
class FacetView:
    """Display-ready state of one facet"""
    facet_id: str
    title: str
    column: str
    elapsed_ms: float
    speed_class: str
    rows: List[FacetRowView] = field(default_factory=list)
    empty: bool = False
    show_clear: bool = False
    summary_ratio: Optional[float] = None
    summary_label: Optional[str] = None
    sample_rate: float = 1.0
    is_continuous_range: bool = False
    next_top_n: Optional[int] = None


def speed_class(elapsed_ms: float) -> str:
    """'fast' under 2.5s, 'medium' under 4s, otherwise 'slow'"""
    if elapsed_ms < FAST_MS:
        return 'fast'
    if elapsed_ms < MEDIUM_MS:
        return 'medium'
    return 'slow'


def next_top_n(top_n: int) -> Optional[int]:
    """Next larger top-N option, or None at the maximum"""
    for option in TOP_N_OPTIONS:
        if option > top_n:
            return option
    return None


def split_prefix(dim: str, prefixes: Optional[Sequence[str]]) -> Tuple[str, str]:
    """Split a dimension value into a known (dimmed) prefix and the rest"""
    for prefix in prefixes or ():
        if dim.startswith(prefix) and len(dim) > len(prefix):
            return prefix, dim[len(prefix):]
    return '', dim


def format_number(n: float) -> str:
    """Compact count: 950, 1.2K, 3.4M, 5.6B"""
    n = float(n)
    for divisor, suffix in ((1e9, 'B'), (1e6, 'M'), (1e3, 'K')):
        if abs(n) >= divisor:
            return f"{n / divisor:.1f}{suffix}"
    return f"{int(n)}"


def _to_int(value: Any) -> int:
    if value is None or value == '':
        return 0
    return int(float(value))


def _segments(cnt: int, row: Dict[str, Any]):
    if cnt <= 0:
        return 0.0, 0.0, 0.0
    return (
        _to_int(row.get('cnt_ok')) / cnt * 100,
        _to_int(row.get('cnt_4xx')) / cnt * 100,
        _to_int(row.get('cnt_5xx')) / cnt * 100,
    )


def build_facet_view(facet_id: str, rows: List[Dict[str, Any]], totals: Optional[Dict[str, Any]],
                     column: str, elapsed_ms: float, *,
                     title: Optional[str] = None,
                     label_prefixes: Optional[Sequence[str]] = None,
                     summary_ratio: Optional[float] = None,
                     summary_label: Optional[str] = None,
                     is_continuous_range: bool = False,
                     sample_rate: float = 1.0,
                     active_filters: Sequence[Any] = (),
                     top_n: int = DEFAULT_TOP_N) -> FacetView:
    """
    Build the view model for one facet stage.

    Args:
        facet_id: Facet identifier
        rows: Result rows (dim, cnt, cnt_ok, cnt_4xx, cnt_5xx, ...)
        totals: Totals row over all groups, or None
        column: Column expression the facet displays
        elapsed_ms: Query time, drives the speed class
        active_filters: Session filters; those on `column` mark rows and enable "clear"
        top_n: Current top-N, used to offer the next larger option on the "other" row

    Returns:
        FacetView
    """
    column_filters = [f for f in active_filters if f.column == column]
    view = FacetView(
        facet_id=facet_id,
        title=title or facet_id,
        column=column,
        elapsed_ms=elapsed_ms,
        speed_class=speed_class(elapsed_ms),
        show_clear=bool(column_filters),
        summary_ratio=summary_ratio if summary_label else None,
        summary_label=summary_label,
        sample_rate=sample_rate,
        is_continuous_range=is_continuous_range,
        next_top_n=next_top_n(top_n),
    )

    if not rows:
        view.empty = True
        return view

    max_count = max(_to_int(r.get('cnt')) for r in rows) or 1
    filter_states = {str(f.value): ('excluded' if f.exclude else 'included') for f in column_filters}

    for row in rows:
        dim = '' if row.get('dim') is None else str(row.get('dim'))
        cnt = _to_int(row.get('cnt'))
        prefix, rest = split_prefix(dim, label_prefixes)
        ok, c4xx, c5xx = _segments(cnt, row)
        view.rows.append(FacetRowView(
            dim=dim,
            prefix=prefix,
            label=rest if dim else EMPTY_DIM_LABEL,
            cnt=cnt,
            bar_width=cnt / max_count * 100,
            pct_ok=ok,
            pct_4xx=c4xx,
            pct_5xx=c5xx,
            filter_state=filter_states.get(dim),
            is_filtered_value=bool(row.get('is_filtered_value')),
        ))

    if totals and view.next_top_n:
        other = {
            key: _to_int(totals.get(key)) - sum(_to_int(r.get(key)) for r in rows)
            for key in ('cnt', 'cnt_ok', 'cnt_4xx', 'cnt_5xx')
        }
        if other['cnt'] > 0:
            ok, c4xx, c5xx = _segments(other['cnt'], other)
            view.rows.append(FacetRowView(
                dim='',
                prefix='',
                label=OTHER_LABEL,
                cnt=other['cnt'],
                bar_width=min(100.0, other['cnt'] / max_count * 100),
                pct_ok=ok,
                pct_4xx=c4xx,
                pct_5xx=c5xx,
                is_other=True,
                overflow=other['cnt'] > max_count,
            ))

    return view


class ConsoleRenderer:
    """Prints facet views to a terminal"""

    SPEED_MARKERS = {'fast': '●', 'medium': '◐', 'slow': '○'}
    SPEED_STYLES = {'fast': 'green', 'medium': 'yellow', 'slow': 'red'}

    def __init__(self, fmt: str = 'simple', titles: Optional[Dict[str, str]] = None,
                 top_n: int = DEFAULT_TOP_N, stream: Optional[TextIO] = None):
        """
        Initialize renderer.

        Args:
            fmt: 'rich' for coloured tables, otherwise a tabulate table format
            titles: Facet id -> display title
            top_n: Current top-N (for the "other" row hint)
            stream: Output stream (default stdout)
        """
        self.fmt = fmt
        self.titles = titles or {}
        self.top_n = top_n
        self.stream = stream or sys.stdout
        self.views: Dict[str, FacetView] = {}
        self.errors: Dict[str, str] = {}
        self.console = Console(file=self.stream) if fmt == 'rich' else None
        self.logger = logging.getLogger('logfacets.render')

    def render(self, facet_id, rows, totals, column, elapsed_ms, *,
               label_prefixes=None, summary_ratio=None, summary_label=None,
               is_continuous_range=False, filter_column=None, filter_value_transform=None,
               filter_operator=None, sample_rate=1.0, active_filters=()):
        view = build_facet_view(
            facet_id, rows, totals, column, elapsed_ms,
            title=self.titles.get(facet_id),
            label_prefixes=label_prefixes,
            summary_ratio=summary_ratio,
            summary_label=summary_label,
            is_continuous_range=is_continuous_range,
            sample_rate=sample_rate,
            active_filters=active_filters,
            top_n=self.top_n,
        )
        self.views[facet_id] = view
        self.errors.pop(facet_id, None)
        if self.console is not None:
            self._print_rich(view)
        else:
            self._print_plain(view)

    def render_error(self, facet_id: str, message: str):
        self.errors[facet_id] = message
        title = self.titles.get(facet_id, facet_id)
        if self.console is not None:
            self.console.print(Text(f"{title}: ERROR {message}", style='bold red'))
        else:
            print(f"{title}: ERROR {message}", file=self.stream)

    def _heading(self, view: FacetView) -> str:
        parts = [view.title]
        if view.summary_ratio is not None:
            parts.append(f"{round(view.summary_ratio * 100)}% {view.summary_label}")
        if view.sample_rate < 1.0:
            parts.append(f"~sampled {view.sample_rate * 100:g}%")
        parts.append(f"{view.elapsed_ms:.0f}ms")
        if view.show_clear:
            parts.append("[filtered]")
        return "  ".join(parts)

    @staticmethod
    def _marker(row: FacetRowView) -> str:
        if row.filter_state == 'included':
            return '+'
        if row.filter_state == 'excluded':
            return '-'
        if row.is_filtered_value:
            return '*'
        return ''

    def _print_plain(self, view: FacetView):
        print(f"{self.SPEED_MARKERS[view.speed_class]} {self._heading(view)}", file=self.stream)
        if view.empty:
            print("  No data", file=self.stream)
            print(file=self.stream)
            return

        table = []
        for row in view.rows:
            bar = '#' * max(1, round(row.bar_width / 100 * BAR_WIDTH)) if row.cnt else ''
            table.append([
                self._marker(row),
                row.prefix + row.label,
                format_number(row.cnt),
                f"{row.pct_5xx:.0f}%",
                f"{row.pct_4xx:.0f}%",
                bar,
            ])
        print(tabulate(table, headers=['', 'value', 'count', '5xx', '4xx', ''], tablefmt=self.fmt),
              file=self.stream)
        print(file=self.stream)

    def _print_rich(self, view: FacetView):
        heading = Text(f"{self.SPEED_MARKERS[view.speed_class]} ", style=self.SPEED_STYLES[view.speed_class])
        heading.append(self._heading(view), style="bold")
        table = Table(title=heading, title_justify='left', show_header=True, header_style='bold')
        table.add_column('')
        table.add_column('value')
        table.add_column('count', justify='right')
        table.add_column('status', no_wrap=True)

        if view.empty:
            table.add_row('', Text('No data', style='dim'), '', '')
        for row in view.rows:
            value = Text(row.prefix, style='dim')
            value.append(row.label, style='italic' if row.is_other else '')
            width = max(1, round(row.bar_width / 100 * BAR_WIDTH)) if row.cnt else 0
            n5xx = round(width * row.pct_5xx / 100)
            n4xx = round(width * row.pct_4xx / 100)
            bar = Text('█' * n5xx, style='red')
            bar.append('█' * n4xx, style='yellow')
            bar.append('█' * max(0, width - n5xx - n4xx), style='green')
            table.add_row(self._marker(row), value, format_number(row.cnt), bar)

        self.console.print(table)
