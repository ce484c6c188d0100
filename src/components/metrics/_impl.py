"""
MetricsAggregator - Estimate per-window metrics from a cumulative snapshot.

Functional Core - pure, no I/O, no mutation.

Key behaviors:
- Daily clicks are filtered by inclusive window bounds (true history)
- Unique clicks, countries and referrers are cumulative upstream, so they
  are scaled by the window's share of all-time clicks
- Estimated entries rounding to zero are dropped; top N kept, descending
- Device/browser breakdowns cannot be derived and are always zero-filled
- A zero all-time total yields zero metrics, never a division error
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor

from src.core.entities import (
    AggregatedMetrics,
    BrowserClicks,
    CountryClicks,
    DailyClicks,
    DateRange,
    DeviceClicks,
    LinkAnalyticsSnapshot,
    ReferrerClicks,
)
from src.core.errors import AggregationError

from .models import DEFAULT_CONFIG, AggregateConfig, AggregateRequest

logger = logging.getLogger(__name__)


# --- Arithmetic ---


def round_half_up(value: float) -> int:
    """Round half away from zero for non-negative estimates."""
    return int(math.floor(value + 0.5))


def click_ratio(window_clicks: int, total_clicks: int) -> float:
    """Share of all-time clicks that fall in the window (0 if no clicks)."""
    if total_clicks <= 0:
        return 0.0
    return window_clicks / total_clicks


# --- Filtering and Estimation ---


def filter_daily_clicks(
    daily_clicks: Iterable[DailyClicks],
    date_range: DateRange,
) -> tuple[DailyClicks, ...]:
    """Keep days inside the window (inclusive on both bounded sides)."""
    return tuple(day for day in daily_clicks if date_range.contains(day.date))


def estimate_unique_clicks(ratio: float, total_unique: int) -> int:
    """Unique clicks are only known all-time; scale by the window share."""
    return round_half_up(ratio * total_unique)


def estimate_countries(
    countries: Iterable[CountryClicks],
    ratio: float,
    top_n: int,
) -> tuple[CountryClicks, ...]:
    """Scale cumulative country counts to the window and keep the top N."""
    estimated = [
        CountryClicks(code=c.code, clicks=round_half_up(c.clicks * ratio)) for c in countries
    ]
    kept = [c for c in estimated if c.clicks > 0]
    kept.sort(key=lambda c: c.clicks, reverse=True)
    return tuple(kept[:top_n])


def estimate_referrers(
    referrers: Iterable[ReferrerClicks],
    ratio: float,
    top_n: int,
) -> tuple[ReferrerClicks, ...]:
    """Scale cumulative referrer counts to the window and keep the top N."""
    estimated = [
        ReferrerClicks(domain=r.domain, clicks=round_half_up(r.clicks * ratio)) for r in referrers
    ]
    kept = [r for r in estimated if r.clicks > 0]
    kept.sort(key=lambda r: r.clicks, reverse=True)
    return tuple(kept[:top_n])


def aggregate(
    snapshot: LinkAnalyticsSnapshot,
    date_range: DateRange,
    *,
    include_timeseries: bool | None = None,
    config: AggregateConfig | None = None,
) -> AggregatedMetrics:
    """
    Aggregate estimated metrics for one window.

    Args:
        snapshot: Cumulative upstream analytics for the link.
        date_range: Attribution window (inclusive bounds).
        include_timeseries: Override config for including daily clicks.
        config: Aggregation configuration.

    Returns:
        AggregatedMetrics for the window. Identical inputs always produce
        identical output.
    """
    cfg = config or DEFAULT_CONFIG
    with_series = cfg.include_timeseries if include_timeseries is None else include_timeseries

    window_days = filter_daily_clicks(snapshot.daily_clicks, date_range)
    clicks = sum(day.clicks for day in window_days)
    ratio = click_ratio(clicks, snapshot.total_clicks_all_time)

    if clicks and snapshot.total_clicks_all_time == 0:
        logger.warning(
            "Snapshot for link %s has daily clicks but zero all-time total",
            snapshot.link_id,
        )

    # Device/browser history is not available upstream: zero-filled
    return AggregatedMetrics(
        clicks=clicks,
        unique_clicks=estimate_unique_clicks(ratio, snapshot.total_unique_clicks_all_time),
        top_countries=estimate_countries(snapshot.countries, ratio, cfg.top_n),
        top_referrers=estimate_referrers(snapshot.referrers, ratio, cfg.top_n),
        device_clicks=DeviceClicks(),
        browser_clicks=BrowserClicks(),
        daily_clicks=window_days if with_series else (),
    )


def _aggregate_request(request: AggregateRequest, config: AggregateConfig) -> AggregatedMetrics:
    return aggregate(
        request.snapshot,
        request.date_range,
        include_timeseries=request.include_timeseries,
        config=config,
    )


def aggregate_batch(
    requests: Sequence[AggregateRequest],
    *,
    config: AggregateConfig | None = None,
    parallel: bool = True,
) -> list[AggregatedMetrics]:
    """
    Aggregate many independent windows, preserving request order.

    Requests share no data, so they run on a thread pool when ``parallel``
    is set. A failing request raises AggregationError carrying its index.
    """
    cfg = config or DEFAULT_CONFIG
    reqs = list(requests)

    if not reqs:
        return []

    if not parallel or len(reqs) == 1 or cfg.max_workers == 1:
        results: list[AggregatedMetrics] = []
        for index, request in enumerate(reqs):
            try:
                results.append(_aggregate_request(request, cfg))
            except Exception as e:
                raise AggregationError(index, e) from e
        return results

    with ThreadPoolExecutor(max_workers=cfg.max_workers) as executor:
        futures = [executor.submit(_aggregate_request, r, cfg) for r in reqs]
        results = []
        for index, future in enumerate(futures):
            try:
                results.append(future.result())
            except Exception as e:
                raise AggregationError(index, e) from e
        return results
