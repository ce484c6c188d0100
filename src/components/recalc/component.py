"""
Recalculation component - Lifecycle-driven window and metric maintenance.

Invariants:
- A link's auto-calculated windows always partition all time
- One atomic write per link; no partially updated boundary sets
- Repeated recomputes without event changes are idempotent
- One failing link never blocks the others

Shell Layer - dispatches triggers and converts errors to output.
"""

from __future__ import annotations

import logging

from src.components.daterange.component import build_range_config
from src.components.metrics.component import build_aggregate_config
from src.core.errors import AttributionError
from src.rules.models import Rules

from ._impl import RecalculationOrchestrator
from .models import (
    OrchestratorConfig,
    RecalcValidationError,
    RecalculateInput,
    RecalculateOutput,
)

logger = logging.getLogger(__name__)


def build_orchestrator_config(rules: Rules | None) -> OrchestratorConfig:
    """Build orchestrator config from rules."""
    if rules is None:
        return OrchestratorConfig()
    return OrchestratorConfig(
        range_config=build_range_config(rules),
        aggregate_config=build_aggregate_config(rules),
        max_link_workers=rules.orchestrator.max_link_workers,
        parallel_aggregation=rules.orchestrator.parallel_aggregation,
    )


def _missing(inp: RecalculateInput, field_name: str) -> RecalculateOutput:
    return RecalculateOutput(
        mode=inp.mode,
        errors=[
            RecalcValidationError(
                code=f"{field_name}_required",
                message=f"{field_name} is required for mode={inp.mode}",
                field_name=field_name,
            )
        ],
        success=False,
    )


def run_recalculate_link(
    inp: RecalculateInput,
    *,
    orchestrator: RecalculationOrchestrator,
) -> RecalculateOutput:
    """Recompute one link's windows and metrics."""
    if not inp.link_id:
        return _missing(inp, "link_id")

    try:
        rows = orchestrator.recompute_link(inp.link_id)
    except AttributionError as e:
        logger.warning("Recompute of link %s failed: %s", inp.link_id, e)
        return RecalculateOutput(
            mode=inp.mode,
            errors=[RecalcValidationError(code="recompute_failed", message=str(e))],
            success=False,
        )

    return RecalculateOutput(
        mode=inp.mode,
        links_recomputed=1,
        associations_updated=len(rows),
    )


def run_recalculate_event(
    inp: RecalculateInput,
    *,
    orchestrator: RecalculationOrchestrator,
) -> RecalculateOutput:
    """Recompute every link of an event, or redistribute after deletion."""
    if not inp.event_id:
        return _missing(inp, "event_id")

    if inp.mode == "event_deleted":
        count = orchestrator.handle_event_deleted(inp.event_id)
    else:
        count = orchestrator.recompute_for_event(inp.event_id)

    return RecalculateOutput(mode=inp.mode, links_recomputed=count)


def run_recalculate_all(
    inp: RecalculateInput,
    *,
    orchestrator: RecalculationOrchestrator,
) -> RecalculateOutput:
    """Recompute every link, resuming after a checkpoint if given."""
    result = orchestrator.recompute_all(resume_after=inp.resume_after)
    return RecalculateOutput(
        mode=inp.mode,
        links_recomputed=result.succeeded,
        associations_updated=result.associations_updated,
        failures=result.failures,
        checkpoint=result.checkpoint,
        success=result.failed == 0,
    )


def run_refresh(
    inp: RecalculateInput,
    *,
    orchestrator: RecalculationOrchestrator,
) -> RecalculateOutput:
    """Re-aggregate metrics with unchanged windows."""
    if inp.link_id:
        try:
            count = orchestrator.refresh_link_metrics(inp.link_id)
        except AttributionError as e:
            return RecalculateOutput(
                mode=inp.mode,
                errors=[RecalcValidationError(code="refresh_failed", message=str(e))],
                success=False,
            )
        return RecalculateOutput(mode=inp.mode, links_recomputed=1, associations_updated=count)

    count = orchestrator.refresh_metrics()
    return RecalculateOutput(mode=inp.mode, associations_updated=count)


def run(
    inp: RecalculateInput,
    *,
    orchestrator: RecalculationOrchestrator,
) -> RecalculateOutput:
    """
    Main entry point for the recalculation component.

    Dispatches to the appropriate handler based on the input mode.

    Args:
        inp: Trigger describing what changed.
        orchestrator: Orchestrator wired to stores and snapshot source.

    Returns:
        RecalculateOutput with counts, failures and errors.
    """
    if inp.mode == "link":
        return run_recalculate_link(inp, orchestrator=orchestrator)
    elif inp.mode in ("event", "event_deleted"):
        return run_recalculate_event(inp, orchestrator=orchestrator)
    elif inp.mode == "all":
        return run_recalculate_all(inp, orchestrator=orchestrator)
    elif inp.mode == "refresh":
        return run_refresh(inp, orchestrator=orchestrator)
    else:
        return RecalculateOutput(
            mode=str(inp.mode),
            errors=[
                RecalcValidationError(
                    code="invalid_mode",
                    message=f"Unknown mode: {inp.mode}",
                    field_name="mode",
                )
            ],
            success=False,
        )
