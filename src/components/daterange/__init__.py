"""
Date range component - Temporal attribution windows.
"""

from ._impl import (
    add_days,
    compute_ranges,
    days_between,
    is_date_in_range,
    sort_events,
    validate_partition,
)
from .component import build_range_config, run_compute_ranges
from .models import (
    DEFAULT_CONFIG,
    ComputeRangesInput,
    ComputeRangesOutput,
    PartitionViolation,
    RangeConfig,
    RangeValidationError,
)

__all__ = [
    # Entry points
    "run_compute_ranges",
    "build_range_config",
    # Functional core
    "compute_ranges",
    "validate_partition",
    "is_date_in_range",
    "add_days",
    "days_between",
    "sort_events",
    # Models
    "ComputeRangesInput",
    "ComputeRangesOutput",
    "PartitionViolation",
    "RangeConfig",
    "RangeValidationError",
    "DEFAULT_CONFIG",
]
