#!/usr/bin/env python3
"""
Pre-sampled retention tiers for the requests table.
Materializes the 10% and 1% sample tables the sampling planner reads from.
"""

from typing import Dict
import logging
import time
import duckdb

from .sampling import SAMPLED_TABLE_SUFFIXES


class SampleTierMaterializer:
    """Creates requests_sampled_* tables from the base requests table"""

    def __init__(self, conn: duckdb.DuckDBPyConnection, base_table: str = 'requests'):
        """
        Initialize materializer.

        Args:
            conn: DuckDB connection
            base_table: Unsampled requests table
        """
        self.conn = conn
        self.base_table = base_table
        self.logger = logging.getLogger('logfacets.materializer')
        self.is_materialized = False

    def tier_tables(self) -> Dict[str, int]:
        """Sampled table name -> keep one row in N"""
        return {
            self.base_table + suffix: round(1 / rate)
            for rate, suffix in SAMPLED_TABLE_SUFFIXES.items()
            if rate < 1.0
        }

    def materialize_all(self) -> Dict[str, float]:
        """
        Build every sampled tier.

        Tiers nest: every row kept at 1% is also kept at 10%.

        Returns:
            Dictionary mapping table names to materialization times (-1 on failure)
        """
        timings = {}

        for table_name, keep_one_in in self.tier_tables().items():
            start_time = time.time()
            try:
                self.conn.execute(f"DROP TABLE IF EXISTS {table_name}")
                self.conn.execute(f"""
                CREATE TABLE {table_name} AS
                SELECT * FROM {self.base_table}
                WHERE hash(rowid) % {keep_one_in} = 0
                """)
                elapsed = time.time() - start_time
                timings[table_name] = elapsed
                self.logger.info(f"Materialized {table_name} in {elapsed:.2f}s")
            except duckdb.Error as e:
                self.logger.error(f"Failed to materialize {table_name}: {e}")
                timings[table_name] = -1

        self.is_materialized = len(timings) > 0 and all(t >= 0 for t in timings.values())
        return timings

    def drop_all(self):
        """Drop all sampled tier tables"""
        for table_name in self.tier_tables():
            self.conn.execute(f"DROP TABLE IF EXISTS {table_name}")
            self.logger.info(f"Dropped table {table_name}")
        self.is_materialized = False
