"""
Date range component - Attribution windows for events sharing a link.

Invariants:
- Windows cover all time: first start and last end are unbounded
- Interior boundaries are copied, never recomputed, so no gaps appear
- Output depends only on (event_date, created_at), not on input order

Shell Layer - converts validation failures into output errors.
"""

from __future__ import annotations

from src.core.errors import EventWindowValidationError
from src.rules.models import Rules

from ._impl import compute_ranges
from .models import (
    ComputeRangesInput,
    ComputeRangesOutput,
    RangeConfig,
    RangeValidationError,
)


def build_range_config(rules: Rules | None) -> RangeConfig:
    """Build range config from rules."""
    if rules is None:
        return RangeConfig()
    return RangeConfig(
        buffer_days=rules.attribution.buffer_days,
        min_gap_days=rules.attribution.min_gap_days,
    )


def run_compute_ranges(
    inp: ComputeRangesInput,
    *,
    rules: Rules | None = None,
) -> ComputeRangesOutput:
    """
    Compute windows for all events of one link.

    Args:
        inp: Events sharing the link.
        rules: Optional rules for buffer/gap sizing.

    Returns:
        ComputeRangesOutput with ranges keyed by event id.
    """
    event_ids = [e.event_id for e in inp.events]
    if len(event_ids) != len(set(event_ids)):
        return ComputeRangesOutput(
            ranges={},
            errors=[
                RangeValidationError(
                    code="duplicate_event",
                    message="Each event may appear only once per link",
                    field_name="events",
                )
            ],
            success=False,
        )

    try:
        ranges = compute_ranges(
            inp.events,
            link_id=inp.link_id,
            config=build_range_config(rules),
        )
    except EventWindowValidationError as e:
        return ComputeRangesOutput(
            ranges={},
            errors=[
                RangeValidationError(
                    code="invalid_event_window",
                    message=str(e),
                    field_name="events",
                )
            ],
            success=False,
        )

    return ComputeRangesOutput(ranges=ranges)
