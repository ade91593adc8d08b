"""Statistics read models."""

from daftar.stats.aggregator import StatisticsAggregator

__all__ = ["StatisticsAggregator"]
