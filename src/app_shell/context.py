from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.adapters.clock import SystemClock
from src.adapters.snapshot_cache import CachedSnapshotSource, SnapshotFetcher
from src.adapters.sqlite.repos import (
    SQLiteAssociationRepo,
    SQLiteEventWindowRepo,
    SQLiteSnapshotRepo,
)
from src.components.recalc import (
    RecalculationOrchestrator,
    build_orchestrator_config,
    create_orchestrator,
)
from src.components.recalc.ports import (
    AssociationStorePort,
    EventStorePort,
    SnapshotSourcePort,
)
from src.rules.models import Rules


@dataclass
class ServiceContext:
    associations: AssociationStorePort
    events: EventStorePort
    snapshots: SnapshotSourcePort
    orchestrator: RecalculationOrchestrator
    rules: Rules
    clock: Any = None  # For testing/injection

    @classmethod
    def create(
        cls,
        db_path: str,
        rules: Rules,
        clock: Any = None,
        upstream: SnapshotFetcher | None = None,
    ) -> ServiceContext:
        """
        Wire the SQLite stores and the orchestrator.

        Snapshots are read straight from the local table the sync job writes.
        Pass an ``upstream`` fetcher to read through the TTL cache instead.
        """
        clock = clock or SystemClock()

        association_repo = SQLiteAssociationRepo(db_path)
        event_repo = SQLiteEventWindowRepo(db_path)
        snapshots: SnapshotSourcePort = SQLiteSnapshotRepo(db_path)
        if upstream is not None:
            snapshots = CachedSnapshotSource(
                upstream,
                ttl_seconds=rules.orchestrator.snapshot_ttl_seconds,
                time_port=clock,
            )

        orchestrator = create_orchestrator(
            associations=association_repo,
            events=event_repo,
            snapshots=snapshots,
            time_port=clock,
            config=build_orchestrator_config(rules),
        )

        return cls(
            associations=association_repo,
            events=event_repo,
            snapshots=snapshots,
            orchestrator=orchestrator,
            rules=rules,
            clock=clock,
        )
