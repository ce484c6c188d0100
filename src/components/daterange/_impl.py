"""
DateRangeCalculator - Temporal attribution windows for a shared link.

Functional Core - pure, deterministic, no I/O.

Key behaviors:
- First event gets all history (unbounded start)
- Last event gets all future data (unbounded end)
- Every interior start is copied from the previous computed end
- Events closer than the minimum gap collapse the earlier window to its
  own event date; the freed days go entirely to the later event
- Same-day events: earlier created_at takes the first slot, the later one
  starts the next day
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, timedelta

from src.core.entities import UNBOUNDED, Bound, Bounded, DateRange, EventWindow, Unbounded

from .models import DEFAULT_CONFIG, PartitionViolation, RangeConfig

logger = logging.getLogger(__name__)


# --- Date Arithmetic ---


def add_days(day: date, days: int) -> date:
    """Shift a calendar day (days may be negative)."""
    return day + timedelta(days=days)


def days_between(first: date, second: date) -> int:
    """Whole days from first to second (negative if second is earlier)."""
    return (second - first).days


def is_date_in_range(day: date, date_range: DateRange) -> bool:
    """Inclusive membership test against a window."""
    return date_range.contains(day)


def sort_events(events: Iterable[EventWindow]) -> list[EventWindow]:
    """Chronological order: event_date, then created_at, then event_id."""
    return sorted(events, key=lambda e: e.sort_key)


# --- Range Calculation ---


def _seamless_start(
    current: EventWindow,
    previous: EventWindow,
    ranges: dict[str, DateRange],
) -> Bound:
    if previous.event_date == current.event_date:
        return Bounded(add_days(current.event_date, 1))
    return ranges[previous.event_id].end


def _trailing_end(current: EventWindow, nxt: EventWindow, config: RangeConfig) -> Bound:
    gap = days_between(current.event_date, nxt.event_date)
    if gap < config.min_gap_days:
        logger.debug(
            "Event %s is %d day(s) from %s; collapsing window to event date",
            current.event_id,
            gap,
            nxt.event_id,
        )
        return Bounded(current.event_date)
    return Bounded(add_days(current.event_date, config.buffer_days))


def compute_ranges(
    events: Iterable[EventWindow],
    *,
    link_id: str | None = None,
    config: RangeConfig | None = None,
) -> dict[str, DateRange]:
    """
    Compute the attribution window of every event sharing one link.

    The result does not depend on input order. Each event's range is stored
    before the next one is processed, because interior starts reuse the
    previous computed end.

    Args:
        events: Event windows of all events associated with the link.
        link_id: Link identifier, used for log context only.
        config: Buffer/gap sizing. Defaults to 2-day buffer, 3-day gap.

    Returns:
        Mapping of event_id -> DateRange.
    """
    cfg = config or DEFAULT_CONFIG
    ordered = sort_events(events)

    if not ordered:
        logger.warning("No events provided for link %s", link_id)
        return {}

    if len(ordered) == 1:
        only = ordered[0]
        logger.debug("Single event %s owns all data for link %s", only.event_id, link_id)
        return {only.event_id: DateRange.unbounded()}

    logger.debug("Computing ranges for %d events on link %s", len(ordered), link_id)

    ranges: dict[str, DateRange] = {}
    last = len(ordered) - 1

    for i, current in enumerate(ordered):
        previous = ordered[i - 1] if i > 0 else None
        nxt = ordered[i + 1] if i < last else None

        start: Bound
        end: Bound

        if previous is None:
            start = UNBOUNDED
        else:
            start = _seamless_start(current, previous, ranges)

        if nxt is None:
            end = UNBOUNDED
        else:
            end = _trailing_end(current, nxt, cfg)

        ranges[current.event_id] = DateRange(start=start, end=end)

    return ranges


# --- Invariant Checks ---


def validate_partition(
    events: Iterable[EventWindow],
    ranges: dict[str, DateRange],
) -> list[PartitionViolation]:
    """
    Check that computed windows cover all time without gaps.

    - First window has an unbounded start, last an unbounded end
    - Adjacent events on different days share a boundary exactly
    - Adjacent same-day events hand off on the following day
    """
    ordered = sort_events(events)
    violations: list[PartitionViolation] = []

    if not ordered:
        return violations

    missing = [e.event_id for e in ordered if e.event_id not in ranges]
    for event_id in missing:
        violations.append(PartitionViolation(event_id, None, "No range computed"))
    if missing:
        return violations

    first = ranges[ordered[0].event_id]
    if not isinstance(first.start, Unbounded):
        violations.append(
            PartitionViolation(ordered[0].event_id, None, "First range must start unbounded")
        )

    final = ranges[ordered[-1].event_id]
    if not isinstance(final.end, Unbounded):
        violations.append(
            PartitionViolation(ordered[-1].event_id, None, "Last range must end unbounded")
        )

    for previous, current in zip(ordered, ordered[1:]):
        prev_range = ranges[previous.event_id]
        cur_range = ranges[current.event_id]
        if previous.event_date == current.event_date:
            expected: Bound = Bounded(add_days(current.event_date, 1))
        else:
            expected = prev_range.end
        if cur_range.start != expected:
            violations.append(
                PartitionViolation(
                    current.event_id,
                    previous.event_id,
                    f"Start {cur_range.start.to_iso()} does not continue from "
                    f"{expected.to_iso()}",
                )
            )

    return violations
