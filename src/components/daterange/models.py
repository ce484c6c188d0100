"""
Date range component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.core.entities import DateRange, EventWindow

# --- Configuration ---


@dataclass(frozen=True)
class RangeConfig:
    """Window sizing rules."""

    # Trailing days attributed to an event after its date
    buffer_days: int = 2

    # Events closer than this collapse the earlier window to its own date
    min_gap_days: int = 3


DEFAULT_CONFIG = RangeConfig()


# --- Validation Error ---


@dataclass(frozen=True)
class RangeValidationError:
    """Date range validation error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class PartitionViolation:
    """Adjacent pair of windows that does not hand off cleanly."""

    event_id: str
    previous_event_id: str | None
    message: str


# --- Input Models ---


@dataclass(frozen=True)
class ComputeRangesInput:
    """Input for computing windows for every event sharing one link."""

    events: tuple[EventWindow, ...]
    link_id: str | None = None


# --- Output Models ---


@dataclass(frozen=True)
class ComputeRangesOutput:
    """Computed windows keyed by event id."""

    ranges: dict[str, DateRange]
    errors: list[RangeValidationError] = field(default_factory=list)
    success: bool = True
