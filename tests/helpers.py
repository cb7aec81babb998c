#!/usr/bin/env python3
"""Shared fakes for runner tests."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from logfacets.query_engine import QueryResult


class FakeExecutor:
    """Answers queries through a responder callable and records the query text"""

    def __init__(self, responder: Callable[[str], Any], gate: Optional[asyncio.Event] = None):
        self.responder = responder
        self.gate = gate
        self.queries: List[str] = []

    async def execute(self, query_text, token=None):
        self.queries.append(query_text)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        result = self.responder(query_text)
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingRenderer:
    """Keeps every render call for inspection"""

    def __init__(self):
        self.renders: List[Dict[str, Any]] = []
        self.errors: List[tuple] = []

    def render(self, facet_id, rows, totals, column, elapsed_ms, **kwargs):
        call = {
            'facet_id': facet_id,
            'rows': rows,
            'totals': totals,
            'column': column,
            'elapsed_ms': elapsed_ms,
        }
        call.update(kwargs)
        self.renders.append(call)

    def render_error(self, facet_id, message):
        self.errors.append((facet_id, message))

    def for_facet(self, facet_id):
        return [r for r in self.renders if r['facet_id'] == facet_id]


def row(dim, cnt, ok=None, c4xx=0, c5xx=0, **extra):
    data = {
        'dim': dim,
        'cnt': cnt,
        'cnt_ok': cnt - c4xx - c5xx if ok is None else ok,
        'cnt_4xx': c4xx,
        'cnt_5xx': c5xx,
    }
    data.update(extra)
    return data


def result(rows, totals=None):
    return QueryResult(rows=[dict(r) for r in rows], totals=dict(totals) if totals else None)
