#!/usr/bin/env python3
"""
Query execution for facet queries.
Defines the executor interface the runner depends on and a DuckDB-backed
implementation that runs each query in a worker thread.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol
import asyncio
import logging
import time

import duckdb

from .data_source import RequestLogDataSource
from .errors import QueryCancelled, QueryError
from .request_context import CancellationToken

# Marker columns emitted by the top-N-with-totals template
TOTAL_MARKER = 'is_total'
RANK_COLUMN = 'row_rank'


@dataclass
class QueryResult:
    """Query execution results"""
    rows: List[Dict[str, Any]]
    totals: Optional[Dict[str, Any]] = None
    network_time_ms: Optional[float] = None
    columns: List[str] = field(default_factory=list)


class QueryExecutor(Protocol):
    """Anything that can run query text and honour a cancellation token"""

    async def execute(self, query_text: str,
                      token: Optional[CancellationToken] = None) -> QueryResult:
        ...


def split_totals(columns: List[str], records: List[tuple]) -> QueryResult:
    """Turn raw records into row dicts, separating the is_total row if present"""
    rows = []
    totals = None
    output_columns = [c for c in columns if c not in (TOTAL_MARKER, RANK_COLUMN)]

    for record in records:
        row = dict(zip(columns, record))
        is_total = bool(row.pop(TOTAL_MARKER, False))
        row.pop(RANK_COLUMN, None)
        if is_total:
            totals = row
        else:
            rows.append(row)

    return QueryResult(rows=rows, totals=totals, columns=output_columns)


class DuckDBQueryEngine:
    """Runs facet SQL against a DuckDB request-log database"""

    def __init__(self, data_source: RequestLogDataSource):
        """Initialize with data source"""
        self.data_source = data_source
        self.logger = logging.getLogger('logfacets.query_engine')

    def _run(self, cursor: duckdb.DuckDBPyConnection, query_text: str):
        result = cursor.execute(query_text)
        columns = [desc[0] for desc in result.description]
        return columns, result.fetchall()

    async def execute(self, query_text: str,
                      token: Optional[CancellationToken] = None) -> QueryResult:
        """
        Execute a query in a worker thread.

        Args:
            query_text: SQL to run
            token: Cancellation token; firing it interrupts the running query

        Returns:
            QueryResult with the totals row split out

        Raises:
            QueryCancelled: token fired before or during execution
            QueryError: DuckDB rejected or failed the query
        """
        if token is not None:
            token.raise_if_cancelled()

        self.logger.debug(f"Executing query:\n{query_text}")

        cursor = self.data_source.connect().cursor()
        unregister = token.add_callback(cursor.interrupt) if token is not None else None
        start_time = time.time()

        try:
            columns, records = await asyncio.to_thread(self._run, cursor, query_text)
        except duckdb.InterruptException as e:
            raise QueryCancelled() from e
        except duckdb.Error as e:
            if token is not None and token.cancelled:
                raise QueryCancelled() from e
            raise QueryError(str(e), code=type(e).__name__, detail=query_text) from e
        finally:
            if unregister is not None:
                unregister()
            cursor.close()

        if token is not None:
            token.raise_if_cancelled()

        elapsed_ms = (time.time() - start_time) * 1000
        result = split_totals(columns, records)
        result.network_time_ms = elapsed_ms
        self.logger.debug(f"Query returned {len(result.rows)} rows in {elapsed_ms:.1f}ms")
        return result
