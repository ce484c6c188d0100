"""
Metrics component - Window aggregation of cumulative link analytics.
"""

from ._impl import (
    aggregate,
    aggregate_batch,
    click_ratio,
    estimate_countries,
    estimate_referrers,
    estimate_unique_clicks,
    filter_daily_clicks,
    round_half_up,
)
from .component import build_aggregate_config, run_aggregate, run_aggregate_batch
from .models import (
    DEFAULT_CONFIG,
    AggregateBatchInput,
    AggregateBatchOutput,
    AggregateConfig,
    AggregateInput,
    AggregateOutput,
    AggregateRequest,
    MetricsValidationError,
)

__all__ = [
    # Entry points
    "run_aggregate",
    "run_aggregate_batch",
    "build_aggregate_config",
    # Functional core
    "aggregate",
    "aggregate_batch",
    "click_ratio",
    "estimate_countries",
    "estimate_referrers",
    "estimate_unique_clicks",
    "filter_daily_clicks",
    "round_half_up",
    # Models
    "AggregateBatchInput",
    "AggregateBatchOutput",
    "AggregateConfig",
    "AggregateInput",
    "AggregateOutput",
    "AggregateRequest",
    "MetricsValidationError",
    "DEFAULT_CONFIG",
]
