#!/usr/bin/env python3
"""
Runtime configuration for the facet query core.
Values come from LOGFACETS_* environment variables with sensible defaults;
command-line flags override them.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import os


TOP_N_OPTIONS: Tuple[int, ...] = (5, 10, 20, 50, 100)
DEFAULT_TOP_N = 5

# Named time windows (label -> period in milliseconds)
TIME_RANGES = {
    '15m': 15 * 60 * 1000,
    '1h': 60 * 60 * 1000,
    '12h': 12 * 60 * 60 * 1000,
    '24h': 24 * 60 * 60 * 1000,
    '7d': 7 * 24 * 60 * 60 * 1000,
}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration defaults"""

    datadir: Optional[str] = field(default_factory=lambda: os.environ.get('LOGFACETS_DATADIR'))
    database: str = field(default_factory=lambda: os.environ.get('LOGFACETS_DATABASE', ':memory:'))
    table: str = field(default_factory=lambda: os.environ.get('LOGFACETS_TABLE', 'requests'))
    max_concurrent: int = field(default_factory=lambda: _env_int('LOGFACETS_CONCURRENCY', 4))
    top_n: int = field(default_factory=lambda: _env_int('LOGFACETS_TOP_N', DEFAULT_TOP_N))
    sampling_mode: str = field(default_factory=lambda: os.environ.get('LOGFACETS_SAMPLING_MODE', 'tables'))
    duckdb_threads: Optional[int] = field(default_factory=lambda: _env_int('LOGFACETS_DUCKDB_THREADS', None))

    def __post_init__(self):
        if self.sampling_mode not in ('tables', 'clause'):
            raise ValueError(f"Unknown sampling mode: {self.sampling_mode}")
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
