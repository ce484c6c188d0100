"""
Recalculation component - Keeps shared-link windows and metrics current.
"""

from ._impl import RecalculationOrchestrator, create_orchestrator
from .component import (
    build_orchestrator_config,
    run,
    run_recalculate_all,
    run_recalculate_event,
    run_recalculate_link,
    run_refresh,
)
from .models import (
    DEFAULT_CONFIG,
    EventMetricsSummary,
    FleetResult,
    LinkFailure,
    OrchestratorConfig,
    RecalcMode,
    RecalculateInput,
    RecalculateOutput,
    RecalcValidationError,
)
from .ports import (
    AssociationStorePort,
    EventStorePort,
    SnapshotSourcePort,
    TimePort,
)

__all__ = [
    # Entry points
    "run",
    "run_recalculate_all",
    "run_recalculate_event",
    "run_recalculate_link",
    "run_refresh",
    "build_orchestrator_config",
    # Service
    "RecalculationOrchestrator",
    "create_orchestrator",
    # Models
    "EventMetricsSummary",
    "FleetResult",
    "LinkFailure",
    "OrchestratorConfig",
    "RecalcMode",
    "RecalculateInput",
    "RecalculateOutput",
    "RecalcValidationError",
    "DEFAULT_CONFIG",
    # Ports
    "AssociationStorePort",
    "EventStorePort",
    "SnapshotSourcePort",
    "TimePort",
]
