"""
Recalculation component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from src.components.daterange.models import RangeConfig
from src.components.metrics.models import AggregateConfig
from src.core.entities import LinkEventAssociation

# --- Configuration ---


@dataclass(frozen=True)
class OrchestratorConfig:
    """Recalculation configuration."""

    range_config: RangeConfig = field(default_factory=RangeConfig)
    aggregate_config: AggregateConfig = field(default_factory=AggregateConfig)

    # Links recomputed concurrently in fleet-wide operations
    max_link_workers: int = 4

    # Aggregate a link's windows on a thread pool
    parallel_aggregation: bool = True


DEFAULT_CONFIG = OrchestratorConfig()


# --- Validation Error ---


@dataclass(frozen=True)
class RecalcValidationError:
    """Recalculation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Batch Results ---


@dataclass(frozen=True)
class LinkFailure:
    """One link that failed during a multi-link operation."""

    link_id: str
    error: str
    error_type: str


@dataclass(frozen=True)
class FleetResult:
    """
    Outcome of a multi-link operation.

    Counts report successes; failures are listed, never raised.
    ``checkpoint`` is the last link of the last fully processed chunk and
    can be passed back as ``resume_after``.
    """

    total_links: int
    succeeded: int
    associations_updated: int
    failures: tuple[LinkFailure, ...] = ()
    checkpoint: str | None = None
    stopped_early: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class EventMetricsSummary:
    """
    Cached metrics of every link shared by one event.

    Totals sum each association's cached metrics; nothing is recomputed.
    """

    event_id: str
    associations: tuple[LinkEventAssociation, ...] = ()
    total_clicks: int = 0
    total_unique_clicks: int = 0

    @property
    def link_ids(self) -> list[str]:
        return [row.link_id for row in self.associations]


# --- Input Models ---


RecalcMode = Literal["link", "event", "event_deleted", "all", "refresh"]


@dataclass(frozen=True)
class RecalculateInput:
    """
    Input for a recalculation trigger.

    Modes:
    - link: recompute ranges and metrics for one link (link_id)
    - event: recompute every link of an event (event_id)
    - event_deleted: drop an event's rows and redistribute (event_id)
    - all: recompute every link, optionally resuming after a checkpoint
    - refresh: re-aggregate with unchanged ranges (optional link_id)
    """

    mode: RecalcMode
    link_id: str | None = None
    event_id: str | None = None
    resume_after: str | None = None


# --- Output Models ---


@dataclass(frozen=True)
class RecalculateOutput:
    """Output for a recalculation trigger."""

    mode: str
    links_recomputed: int = 0
    associations_updated: int = 0
    failures: tuple[LinkFailure, ...] = ()
    checkpoint: str | None = None
    errors: list[RecalcValidationError] = field(default_factory=list)
    success: bool = True
