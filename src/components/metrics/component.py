"""
Metrics component - Per-window estimates from cumulative link analytics.

Invariants:
- Pure: identical (snapshot, window) always yields identical metrics
- Country/referrer estimates are proportional to the window's click share
- Device/browser breakdowns are zero-filled, never inferred
- Batch results align with request order

Shell Layer - converts aggregation failures into output errors.
"""

from __future__ import annotations

from src.core.errors import AggregationError
from src.rules.models import Rules

from ._impl import aggregate, aggregate_batch
from .models import (
    AggregateBatchInput,
    AggregateBatchOutput,
    AggregateConfig,
    AggregateInput,
    AggregateOutput,
    MetricsValidationError,
)


def build_aggregate_config(rules: Rules | None) -> AggregateConfig:
    """Build aggregation config from rules."""
    if rules is None:
        return AggregateConfig()
    return AggregateConfig(
        top_n=rules.aggregation.top_n,
        include_timeseries=rules.aggregation.include_timeseries,
        max_workers=rules.aggregation.max_workers,
    )


def run_aggregate(
    inp: AggregateInput,
    *,
    rules: Rules | None = None,
) -> AggregateOutput:
    """
    Aggregate metrics for a single window.

    Args:
        inp: Snapshot and window.
        rules: Optional rules for top-N and timeseries settings.

    Returns:
        AggregateOutput with estimated metrics.
    """
    metrics = aggregate(
        inp.snapshot,
        inp.date_range,
        include_timeseries=inp.include_timeseries,
        config=build_aggregate_config(rules),
    )
    return AggregateOutput(metrics=metrics)


def run_aggregate_batch(
    inp: AggregateBatchInput,
    *,
    rules: Rules | None = None,
) -> AggregateBatchOutput:
    """
    Aggregate metrics for many windows in parallel.

    Args:
        inp: Requests to aggregate.
        rules: Optional rules for pool size and output settings.

    Returns:
        AggregateBatchOutput aligned to request order, or an error naming
        the failing request.
    """
    try:
        results = aggregate_batch(inp.requests, config=build_aggregate_config(rules))
    except AggregationError as e:
        return AggregateBatchOutput(
            metrics=(),
            errors=[
                MetricsValidationError(
                    code="aggregation_failed",
                    message=str(e.cause),
                    index=e.index,
                )
            ],
            success=False,
        )

    return AggregateBatchOutput(metrics=tuple(results))
