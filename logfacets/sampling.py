#!/usr/bin/env python3
"""
Sampling plan for facet queries.
Chooses the sequence of sample rates a facet is queried at, coarse to fine,
from the age of the data and the facet's cardinality.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

WEEK_MS = 7 * 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000

# Rates the backend keeps pre-sampled copies for, coarsest first
SAMPLE_LADDER = (0.01, 0.1, 1.0)

# Backing tables for each rate in "tables" mode (suffix appended to the base table)
SAMPLED_TABLE_SUFFIXES: Dict[float, str] = {
    1.0: '',
    0.1: '_sampled_10',
    0.01: '_sampled_1',
}


@dataclass(frozen=True)
class SamplingStage:
    """One query execution at a fixed sampling rate"""
    sample_rate: float
    row_multiplier: int
    backing_source: str
    sample_clause: str = ''

    @property
    def is_sampled(self) -> bool:
        return self.sample_rate < 1.0


def retention_ceiling(data_age_ms: float) -> float:
    """Finest sample rate still available for data of the given age"""
    if data_age_ms >= 20 * WEEK_MS:
        return 0.01
    if data_age_ms >= 2 * WEEK_MS:
        return 0.1
    return 1.0


def global_sample_rate(rates: Iterable[float]) -> float:
    """Lowest rate among the currently rendered facets (1.0 when none)"""
    return min(rates, default=1.0)


class SamplingPlanner:
    """Builds SamplingStage lists for a facet request"""

    def __init__(self, mode: str = 'tables', base_table: str = 'requests'):
        """
        Initialize planner.

        Args:
            mode: 'tables' reads pre-sampled tier tables,
                'clause' samples the base table with TABLESAMPLE
            base_table: Unsampled requests table name
        """
        if mode not in ('tables', 'clause'):
            raise ValueError(f"Unknown sampling mode: {mode}")
        self.mode = mode
        self.base_table = base_table

    def stage(self, rate: float) -> SamplingStage:
        """Build the stage for one sample rate"""
        multiplier = round(1 / rate)
        if self.mode == 'tables':
            return SamplingStage(rate, multiplier, self.base_table + SAMPLED_TABLE_SUFFIXES[rate])
        if rate >= 1.0:
            return SamplingStage(rate, multiplier, self.base_table)
        return SamplingStage(rate, multiplier, self.base_table, f"TABLESAMPLE {rate * 100:g}%")

    def rates(self, high_cardinality: bool, period_ms: float,
              data_age_ms: Optional[float] = None) -> List[float]:
        if data_age_ms is None:
            data_age_ms = period_ms
        ceiling = retention_ceiling(data_age_ms)

        if not high_cardinality or period_ms <= HOUR_MS:
            return [ceiling]
        return [rate for rate in SAMPLE_LADDER if rate <= ceiling]

    def plan(self, high_cardinality: bool, period_ms: float,
             data_age_ms: Optional[float] = None) -> List[SamplingStage]:
        """
        Stages for one facet, coarse to fine.

        Args:
            high_cardinality: Whether the facet's dimension has many distinct values
            period_ms: Length of the queried time window
            data_age_ms: Age of the oldest queried data (defaults to period_ms)

        Returns:
            Ordered list of SamplingStage
        """
        return [self.stage(rate) for rate in self.rates(high_cardinality, period_ms, data_age_ms)]
