#!/usr/bin/env python3
"""
Data access layer for request log files.
Manages the DuckDB connection and loads CSV/Parquet request logs.
"""

import duckdb
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from datetime import datetime
import logging

from .columns import REQUEST_SCHEMA


class RequestLogDataSource:
    """Manages access to request logs via DuckDB"""

    FILE_PATTERNS = {
        'csv': ('*.csv', 'read_csv_auto'),
        'parquet': ('*.parquet', 'read_parquet'),
    }

    def __init__(self, datadir: Optional[str] = None, database: str = ':memory:',
                 table: str = 'requests', duckdb_threads: Optional[int] = None):
        """
        Initialize data source.

        Args:
            datadir: Directory containing request log CSV/Parquet files (optional)
            database: DuckDB database file, or ':memory:'
            table: Name of the unsampled requests table
            duckdb_threads: Number of DuckDB threads (None for default, 1 for deterministic)
        """
        self.datadir = Path(datadir) if datadir else None
        self.database = database
        self.table = table
        self.duckdb_threads = duckdb_threads
        self.conn: Optional[duckdb.DuckDBPyConnection] = None
        self.logger = logging.getLogger('logfacets.data_source')

        if self.datadir is not None and not self.datadir.exists():
            raise ValueError(f"Data directory does not exist: {datadir}")

    def connect(self) -> duckdb.DuckDBPyConnection:
        """Get or create DuckDB connection"""
        if self.conn is None:
            self.conn = duckdb.connect(self.database)
            if self.duckdb_threads is not None:
                self.conn.execute(f"SET threads TO {self.duckdb_threads}")
        return self.conn

    def close(self):
        """Close DuckDB connection"""
        if self.conn:
            self.conn.close()
            self.conn = None

    def create_table(self, replace: bool = False):
        """Create the requests table with the known schema"""
        conn = self.connect()
        columns = ",\n    ".join(f"{name} {col_type}" for name, col_type in REQUEST_SCHEMA)
        verb = "CREATE OR REPLACE TABLE" if replace else "CREATE TABLE IF NOT EXISTS"
        conn.execute(f"{verb} {self.table} (\n    {columns}\n)")

    def get_log_files(self, fmt: str) -> List[Path]:
        """List log files of one format ('csv' or 'parquet') in datadir"""
        if self.datadir is None:
            return []
        pattern, _ = self.FILE_PATTERNS[fmt]
        return sorted(self.datadir.glob(pattern))

    def load(self) -> int:
        """
        Load every CSV/Parquet file in datadir into the requests table.
        Columns missing from a file are left NULL; unknown columns are ignored.

        Returns:
            Number of rows in the table after loading
        """
        if self.datadir is None:
            raise ValueError("No data directory configured")

        self.create_table(replace=True)
        conn = self.connect()
        known = [name for name, _ in REQUEST_SCHEMA]

        for fmt, (pattern, reader) in self.FILE_PATTERNS.items():
            if not self.get_log_files(fmt):
                continue
            escaped = str(self.datadir / pattern).replace("'", "''")
            source = f"{reader}('{escaped}', union_by_name=true)"
            available = {row[0].lower(): row[0] for row in conn.execute(f"DESCRIBE SELECT * FROM {source}").fetchall()}
            present = [name for name in known if name in available]
            if not present:
                self.logger.warning(f"No known request columns in {pattern}")
                continue
            select_list = ", ".join(f"{available[name]} AS {name}" for name in present)
            conn.execute(f"INSERT INTO {self.table} ({', '.join(present)}) SELECT {select_list} FROM {source}")
            self.logger.info(f"Loaded {fmt} files from {self.datadir}")

        return self.row_count()

    def insert_rows(self, rows: Sequence[Dict[str, Any]]):
        """Append rows given as dicts keyed by column name"""
        if not rows:
            return
        conn = self.connect()
        names = [name for name, _ in REQUEST_SCHEMA]
        placeholders = ", ".join("?" for _ in names)
        conn.executemany(
            f"INSERT INTO {self.table} ({', '.join(names)}) VALUES ({placeholders})",
            [[row.get(name) for name in names] for row in rows],
        )

    def row_count(self, table: Optional[str] = None) -> int:
        conn = self.connect()
        return conn.execute(f"SELECT COUNT(*) FROM {table or self.table}").fetchone()[0]

    def get_time_range(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        """
        Get min/max timestamps from the requests table.
        Returns (min_timestamp, max_timestamp) or (None, None) if no data.
        """
        conn = self.connect()
        result = conn.execute(
            f"SELECT MIN(timestamp), MAX(timestamp) FROM {self.table} WHERE timestamp IS NOT NULL"
        ).fetchone()
        if result and result[0] and result[1]:
            return result[0], result[1]
        return None, None
