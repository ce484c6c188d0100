"""
Metrics component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.core.entities import AggregatedMetrics, DateRange, LinkAnalyticsSnapshot

# --- Configuration ---


@dataclass(frozen=True)
class AggregateConfig:
    """Aggregation configuration."""

    # Entries kept per cumulative dimension (countries, referrers)
    top_n: int = 10

    # Include the filtered daily series in the output
    include_timeseries: bool = True

    # Thread pool size for batch aggregation (None = executor default)
    max_workers: int | None = None


DEFAULT_CONFIG = AggregateConfig()


# --- Validation Error ---


@dataclass(frozen=True)
class MetricsValidationError:
    """Metrics aggregation error."""

    code: str
    message: str
    index: int | None = None


# --- Input Models ---


@dataclass(frozen=True)
class AggregateRequest:
    """One (snapshot, window) pair to aggregate."""

    snapshot: LinkAnalyticsSnapshot
    date_range: DateRange
    include_timeseries: bool | None = None


@dataclass(frozen=True)
class AggregateInput:
    """Input for aggregating a single window."""

    snapshot: LinkAnalyticsSnapshot
    date_range: DateRange
    include_timeseries: bool | None = None


@dataclass(frozen=True)
class AggregateBatchInput:
    """Input for aggregating many independent windows."""

    requests: tuple[AggregateRequest, ...]


# --- Output Models ---


@dataclass(frozen=True)
class AggregateOutput:
    """Output for a single aggregation."""

    metrics: AggregatedMetrics | None
    errors: list[MetricsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class AggregateBatchOutput:
    """Output for batch aggregation, aligned to request order."""

    metrics: tuple[AggregatedMetrics, ...]
    errors: list[MetricsValidationError] = field(default_factory=list)
    success: bool = True
