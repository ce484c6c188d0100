"""
RecalculationOrchestrator - Keeps windows and cached metrics consistent.

Reacts to event lifecycle changes (created, rescheduled, deleted) and to
fresh upstream snapshots.

Key behaviors:
- Adding, moving or removing an event recomputes every association of the
  affected link, because one member changes everyone's boundaries
- Each link is written with a single atomic replace; readers never see a
  partially updated boundary set
- Metric refreshes reuse stored ranges; a link with rows still waiting for
  a range is fully recomputed instead
- A lifecycle change that cannot be applied (no snapshot yet, invalid
  sibling event) leaves the link's auto rows pending_range
- Multi-link operations log and skip failing links; counts report successes
- A failed link keeps its last-known-good ranges, metrics and sync time
- Associations whose event no longer exists are excluded and logged; an
  event that exists but fails validation fails its link instead
- Manual ranges (auto_calculated=False) are kept; only metrics refresh
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

from src.components.daterange import compute_ranges, validate_partition
from src.components.metrics import AggregateRequest, aggregate_batch
from src.core.entities import (
    AggregatedMetrics,
    AssociationState,
    DateRange,
    EventWindow,
    LinkAnalyticsSnapshot,
    LinkEventAssociation,
)
from src.core.errors import (
    AssociationNotFoundError,
    EventNotFoundError,
    EventWindowValidationError,
    SnapshotNotFoundError,
)

from .models import (
    DEFAULT_CONFIG,
    EventMetricsSummary,
    FleetResult,
    LinkFailure,
    OrchestratorConfig,
)
from .ports import AssociationStorePort, EventStorePort, SnapshotSourcePort, TimePort

logger = logging.getLogger(__name__)

StopCheck = Callable[[], bool]


class RecalculationOrchestrator:
    """
    Recalculation orchestrator.

    Owns no state between calls; the association store is the only shared
    mutable resource and is written one link at a time.
    """

    def __init__(
        self,
        associations: AssociationStorePort,
        events: EventStorePort,
        snapshots: SnapshotSourcePort,
        time_port: TimePort | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        """Initialize orchestrator."""
        self._associations = associations
        self._events = events
        self._snapshots = snapshots
        self._time_port = time_port
        self._config = config or DEFAULT_CONFIG

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        return datetime.now(UTC)

    # --- Loading ---

    def _load_snapshot(self, link_id: str) -> LinkAnalyticsSnapshot:
        snapshot = self._snapshots.fetch_snapshot(link_id)
        if snapshot is None:
            raise SnapshotNotFoundError(link_id)
        return snapshot

    def _load_windows(
        self,
        link_id: str,
        rows: Sequence[LinkEventAssociation],
    ) -> list[EventWindow]:
        """Load event windows, excluding orphaned associations."""
        wanted = sorted({row.event_id for row in rows})
        if not wanted:
            return []

        windows = self._events.get_event_windows(wanted)
        found = {w.event_id for w in windows}

        for event_id in wanted:
            if event_id not in found:
                logger.warning(
                    "Association link=%s event=%s references a missing event; excluded",
                    link_id,
                    event_id,
                )

        return [w for w in windows if w.event_id in wanted]

    def _aggregate(
        self,
        snapshot: LinkAnalyticsSnapshot,
        rows: Sequence[LinkEventAssociation],
    ) -> list[AggregatedMetrics]:
        requests = [AggregateRequest(snapshot=snapshot, date_range=row.date_range) for row in rows]
        return aggregate_batch(
            requests,
            config=self._config.aggregate_config,
            parallel=self._config.parallel_aggregation,
        )

    # --- Single link ---

    def create_association(
        self,
        link_id: str,
        event_id: str,
        *,
        auto_calculated: bool = True,
    ) -> LinkEventAssociation:
        """
        Associate a link with an event.

        Returns the existing row unchanged if the pair is already linked.
        Otherwise inserts a placeholder with zeroed metrics and recomputes
        every association of the link.

        Raises:
            EventNotFoundError: The event store does not know the event.
        """
        existing = self._associations.get(link_id, event_id)
        if existing is not None:
            return existing

        if not self._events.get_event_windows([event_id]):
            raise EventNotFoundError(event_id)

        now = self._now()
        placeholder = LinkEventAssociation(
            link_id=link_id,
            event_id=event_id,
            auto_calculated=auto_calculated,
            state=AssociationState.PENDING_RANGE,
            cached_metrics=AggregatedMetrics.empty(),
            created_at=now,
            updated_at=now,
        )
        self._associations.insert(placeholder)
        logger.info("Associated link %s with event %s", link_id, event_id)

        try:
            self._recompute_after_change(link_id)
        except SnapshotNotFoundError:
            # The next metric refresh recomputes the whole link
            logger.warning("No snapshot for link %s yet; associations left pending", link_id)

        stored = self._associations.get(link_id, event_id)
        return stored if stored is not None else placeholder

    def _mark_pending(self, link_id: str) -> int:
        """Reset a link's auto rows to pending_range, keeping ranges and metrics."""
        now = self._now()
        pending = [
            row.model_copy(update={"state": AssociationState.PENDING_RANGE, "updated_at": now})
            for row in self._associations.list_by_link(link_id)
            if row.auto_calculated and row.state != AssociationState.PENDING_RANGE
        ]
        if pending:
            self._associations.replace_link(link_id, pending)
        return len(pending)

    def _recompute_after_change(self, link_id: str) -> list[LinkEventAssociation]:
        """Recompute a link whose event group changed; mark it pending on failure."""
        try:
            return self.recompute_link(link_id)
        except (SnapshotNotFoundError, EventWindowValidationError):
            marked = self._mark_pending(link_id)
            logger.info("Marked %d association(s) of link %s pending_range", marked, link_id)
            raise

    def recompute_link(self, link_id: str) -> list[LinkEventAssociation]:
        """
        Recompute ranges and metrics for every association of a link.

        Steps:
        1. Load associations and their event windows (orphans excluded)
        2. Compute ranges for auto-calculated associations
        3. Aggregate metrics for every new range (manual ranges kept)
        4. Write the full set in one atomic replace

        Raises:
            SnapshotNotFoundError: No raw snapshot for the link; nothing is written.
            EventWindowValidationError: An associated event has no usable date;
                nothing is written.
        """
        rows = self._associations.list_by_link(link_id)
        if not rows:
            logger.debug("No associations for link %s", link_id)
            return []

        snapshot = self._load_snapshot(link_id)
        auto_rows = [row for row in rows if row.auto_calculated]
        windows = self._load_windows(link_id, auto_rows)
        ranges = compute_ranges(windows, link_id=link_id, config=self._config.range_config)

        for violation in validate_partition(windows, ranges):
            logger.error("Partition violation on link %s: %s", link_id, violation.message)

        now = self._now()
        ranged: list[LinkEventAssociation] = []
        for row in rows:
            if not row.auto_calculated:
                ranged.append(row)
            elif row.event_id in ranges:
                ranged.append(row.with_range(ranges[row.event_id], now))

        metrics = self._aggregate(snapshot, ranged)
        synced = [row.with_metrics(m, now) for row, m in zip(ranged, metrics, strict=True)]

        self._associations.replace_link(link_id, synced)
        logger.info(
            "Recomputed link %s: %d association(s), %d excluded",
            link_id,
            len(synced),
            len(rows) - len(synced),
        )
        return self._associations.list_by_link(link_id)

    def refresh_link_metrics(self, link_id: str) -> int:
        """
        Re-aggregate a link's metrics using its existing ranges.

        Used when a fresh snapshot arrives but scheduling is unchanged. If any
        auto row is still waiting for a range, the link's stored ranges are
        not trustworthy and the whole link is recomputed instead.

        Raises:
            SnapshotNotFoundError: No raw snapshot for the link.
        """
        rows = self._associations.list_by_link(link_id)
        if not rows:
            return 0

        waiting = [
            row
            for row in rows
            if row.auto_calculated
            and row.state in (AssociationState.PENDING_RANGE, AssociationState.UNLINKED)
        ]
        if waiting:
            logger.info(
                "Link %s has %d association(s) without a computed range; recomputing",
                link_id,
                len(waiting),
            )
            return len(self.recompute_link(link_id))

        snapshot = self._load_snapshot(link_id)
        now = self._now()
        metrics = self._aggregate(snapshot, rows)
        refreshed = [row.with_metrics(m, now) for row, m in zip(rows, metrics, strict=True)]
        self._associations.replace_link(link_id, refreshed)
        return len(refreshed)

    def set_manual_range(
        self,
        link_id: str,
        event_id: str,
        date_range: DateRange,
    ) -> LinkEventAssociation:
        """
        Pin an association to a manual range and recompute its link.

        The pinned row is excluded from automatic calculation; its siblings
        are redistributed as if it were absent.
        """
        row = self._associations.get(link_id, event_id)
        if row is None:
            raise AssociationNotFoundError(link_id, event_id)

        pinned = row.with_range(date_range, self._now()).model_copy(
            update={"auto_calculated": False}
        )
        self._associations.replace_link(link_id, [pinned])
        self._recompute_after_change(link_id)
        return self._associations.get(link_id, event_id) or pinned

    def clear_manual_range(self, link_id: str, event_id: str) -> LinkEventAssociation:
        """Return a pinned association to automatic calculation."""
        row = self._associations.get(link_id, event_id)
        if row is None:
            raise AssociationNotFoundError(link_id, event_id)

        released = row.model_copy(
            update={
                "auto_calculated": True,
                "state": AssociationState.PENDING_RANGE,
                "updated_at": self._now(),
            }
        )
        self._associations.replace_link(link_id, [released])
        self._recompute_after_change(link_id)
        return self._associations.get(link_id, event_id) or released

    # --- Multi link ---

    def _for_each_link(
        self,
        link_ids: Sequence[str],
        operation: Callable[[str], int],
        *,
        should_stop: StopCheck | None = None,
    ) -> FleetResult:
        """
        Apply an operation to links in order, isolating failures.

        Links run in chunks of ``max_link_workers``; a stop request is
        honoured between chunks, so every completed link is fully written.
        """
        workers = max(1, self._config.max_link_workers)
        succeeded = 0
        updated = 0
        failures: list[LinkFailure] = []
        checkpoint: str | None = None
        stopped = False

        with ThreadPoolExecutor(max_workers=workers) as executor:
            for offset in range(0, len(link_ids), workers):
                if should_stop is not None and should_stop():
                    logger.info("Stop requested; checkpoint at link %s", checkpoint)
                    stopped = True
                    break

                chunk = link_ids[offset : offset + workers]
                futures = [executor.submit(operation, link_id) for link_id in chunk]

                for link_id, future in zip(chunk, futures, strict=True):
                    try:
                        count = future.result()
                    except Exception as e:
                        logger.exception("Recalculation failed for link %s", link_id)
                        failures.append(LinkFailure(link_id, str(e), type(e).__name__))
                    else:
                        succeeded += 1
                        updated += count

                checkpoint = chunk[-1]

        return FleetResult(
            total_links=len(link_ids),
            succeeded=succeeded,
            associations_updated=updated,
            failures=tuple(failures),
            checkpoint=checkpoint,
            stopped_early=stopped,
        )

    def _recompute_count(self, link_id: str) -> int:
        return len(self.recompute_link(link_id))

    def _changed_count(self, link_id: str) -> int:
        return len(self._recompute_after_change(link_id))

    def recompute_for_event(self, event_id: str) -> int:
        """
        Recompute every link associated with an event (e.g. rescheduled).

        Returns:
            Number of links recomputed successfully.
        """
        link_ids = sorted({row.link_id for row in self._associations.list_by_event(event_id)})
        if not link_ids:
            return 0
        return self._for_each_link(link_ids, self._changed_count).succeeded

    def handle_event_deleted(self, event_id: str) -> int:
        """
        Remove an event's associations and redistribute its links.

        Remaining events get the boundaries they would have had if the
        deleted event never existed.

        Returns:
            Number of links recomputed successfully.
        """
        link_ids = sorted({row.link_id for row in self._associations.list_by_event(event_id)})
        if not link_ids:
            return 0

        removed = self._associations.delete_by_event(event_id)
        logger.info(
            "Deleted %d association(s) of event %s; recomputing %d link(s)",
            removed,
            event_id,
            len(link_ids),
        )
        return self._for_each_link(link_ids, self._changed_count).succeeded

    def refresh_metrics(self, *, should_stop: StopCheck | None = None) -> int:
        """
        Re-aggregate every link with its existing ranges.

        Returns:
            Number of associations refreshed.
        """
        link_ids = sorted(self._associations.list_link_ids())
        result = self._for_each_link(link_ids, self.refresh_link_metrics, should_stop=should_stop)
        if result.failures:
            logger.warning(
                "Metric refresh skipped %d of %d link(s)", result.failed, result.total_links
            )
        return result.associations_updated

    def recompute_all(
        self,
        *,
        resume_after: str | None = None,
        should_stop: StopCheck | None = None,
    ) -> FleetResult:
        """
        Recompute ranges and metrics for every link.

        Links are processed in sorted order. Pass a previous result's
        ``checkpoint`` as ``resume_after`` to continue a stopped run.
        """
        link_ids = sorted(self._associations.list_link_ids())
        if resume_after is not None:
            link_ids = [link_id for link_id in link_ids if link_id > resume_after]

        result = self._for_each_link(link_ids, self._recompute_count, should_stop=should_stop)
        logger.info(
            "Fleet recompute: %d/%d link(s) succeeded, %d failed",
            result.succeeded,
            result.total_links,
            result.failed,
        )
        return result

    def cleanup_orphans(self, link_id: str | None = None) -> int:
        """
        Delete associations whose event no longer exists.

        Affected links are recomputed afterwards.

        Returns:
            Number of associations deleted.
        """
        link_ids = [link_id] if link_id is not None else sorted(self._associations.list_link_ids())
        rows = [row for lid in link_ids for row in self._associations.list_by_link(lid)]
        if not rows:
            return 0

        known = self._events.existing_event_ids(sorted({row.event_id for row in rows}))
        orphans = [row for row in rows if row.event_id not in known]
        for row in orphans:
            self._associations.delete(row.link_id, row.event_id)
            logger.info("Removed orphaned association link=%s event=%s", *row.key)

        affected = sorted({row.link_id for row in orphans})
        if affected:
            self._for_each_link(affected, self._changed_count)
        return len(orphans)

    # --- Read views ---

    def event_metrics(self, event_id: str) -> EventMetricsSummary:
        """
        Cached metrics of every link shared by an event, with click totals.

        Reads stored rows only. An event with no links yields zero totals.

        Raises:
            EventNotFoundError: The event has no links and the store does not know it.
        """
        rows = self._associations.list_by_event(event_id)
        if not rows and not self._events.existing_event_ids([event_id]):
            raise EventNotFoundError(event_id)

        return EventMetricsSummary(
            event_id=event_id,
            associations=tuple(rows),
            total_clicks=sum(row.cached_metrics.clicks for row in rows),
            total_unique_clicks=sum(row.cached_metrics.unique_clicks for row in rows),
        )


# --- Factory ---


def create_orchestrator(
    associations: AssociationStorePort,
    events: EventStorePort,
    snapshots: SnapshotSourcePort,
    time_port: TimePort | None = None,
    config: OrchestratorConfig | None = None,
) -> RecalculationOrchestrator:
    """Create a RecalculationOrchestrator."""
    return RecalculationOrchestrator(
        associations=associations,
        events=events,
        snapshots=snapshots,
        time_port=time_port,
        config=config,
    )
