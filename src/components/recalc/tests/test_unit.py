"""
Unit tests for the recalculation component.

Covers association lifecycle, redistribution on deletion, manual ranges,
metric refreshes, failure isolation, resumable fleet runs and the
per-event metrics view.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from src.adapters.memory import (
    InMemoryAssociationStore,
    InMemoryEventStore,
    InMemorySnapshotSource,
)
from src.components.daterange import RangeConfig
from src.components.recalc import (
    OrchestratorConfig,
    RecalculateInput,
    RecalculationOrchestrator,
    build_orchestrator_config,
    run,
)
from src.core.entities import (
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
)
from src.rules.models import OrchestratorRules, Rules

# --- Test Fixtures ---


class MockTimePort:
    """Mock time port for testing."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or datetime(2025, 8, 1, 12, 0, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, **kwargs: int) -> None:
        self._now = self._now + timedelta(**kwargs)


class FlakySnapshotSource(InMemorySnapshotSource):
    """Snapshot source that raises for selected links."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: set[str] = set()

    def fetch_snapshot(self, link_id: str) -> LinkAnalyticsSnapshot | None:
        if link_id in self.failing:
            raise RuntimeError(f"upstream unavailable for {link_id}")
        return super().fetch_snapshot(link_id)


class UndatedEventStore(InMemoryEventStore):
    """Event store where selected events exist but have lost their date."""

    def __init__(self, windows: list[EventWindow]) -> None:
        super().__init__(windows)
        self.undated: set[str] = set()

    def get_event_windows(self, event_ids):
        for event_id in event_ids:
            if event_id in self.undated:
                raise EventWindowValidationError(
                    f"Event {event_id} has no event_date", event_id=event_id
                )
        return super().get_event_windows(event_ids)


def make_window(event_id: str, day: str, hour: int = 9) -> EventWindow:
    return EventWindow(
        event_id=event_id,
        event_date=date.fromisoformat(day),
        created_at=datetime(2025, 6, 1, hour, tzinfo=UTC),
    )


def make_snapshot(link_id: str, scale: int = 1) -> LinkAnalyticsSnapshot:
    daily = [
        ("2025-06-30", 5),
        ("2025-07-01", 10),
        ("2025-07-03", 20),
        ("2025-07-05", 30),
        ("2025-07-07", 15),
        ("2025-07-20", 20),
    ]
    return LinkAnalyticsSnapshot.model_validate(
        {
            "link_id": link_id,
            "total_clicks_all_time": 100 * scale,
            "total_unique_clicks_all_time": 40 * scale,
            "daily_clicks": [{"date": d, "clicks": c * scale} for d, c in daily],
            "countries": [{"code": "US", "clicks": 80 * scale}, {"code": "NZ", "clicks": 20}],
        }
    )


def ranges_of(rows: list[LinkEventAssociation]) -> dict[str, tuple[str | None, str | None]]:
    return {
        r.event_id: (
            r.start_date.isoformat() if r.start_date else None,
            r.end_date.isoformat() if r.end_date else None,
        )
        for r in rows
    }


@pytest.fixture
def clock() -> MockTimePort:
    return MockTimePort()


@pytest.fixture
def associations() -> InMemoryAssociationStore:
    return InMemoryAssociationStore()


@pytest.fixture
def events() -> UndatedEventStore:
    return UndatedEventStore(
        [
            make_window("e1", "2025-07-01"),
            make_window("e2", "2025-07-05"),
            make_window("e3", "2025-07-20"),
        ]
    )


@pytest.fixture
def snapshots() -> FlakySnapshotSource:
    source = FlakySnapshotSource()
    for link_id in ("L1", "L2", "L3"):
        source.put(make_snapshot(link_id))
    return source


@pytest.fixture
def orchestrator(associations, events, snapshots, clock) -> RecalculationOrchestrator:
    return RecalculationOrchestrator(
        associations=associations,
        events=events,
        snapshots=snapshots,
        time_port=clock,
        config=OrchestratorConfig(max_link_workers=1),
    )


def link_all(orchestrator: RecalculationOrchestrator, link_id: str) -> None:
    for event_id in ("e1", "e2", "e3"):
        orchestrator.create_association(link_id, event_id)


# --- Association lifecycle ---


class TestCreateAssociation:
    def test_single_event_gets_everything(self, orchestrator) -> None:
        row = orchestrator.create_association("L1", "e1")
        assert row.state == AssociationState.SYNCED
        assert row.date_range == DateRange.unbounded()
        assert row.cached_metrics.clicks == 100
        assert row.cached_metrics.unique_clicks == 40

    def test_adding_events_recomputes_siblings(self, orchestrator, associations) -> None:
        link_all(orchestrator, "L1")
        rows = associations.list_by_link("L1")
        assert ranges_of(rows) == {
            "e1": (None, "2025-07-03"),
            "e2": ("2025-07-03", "2025-07-07"),
            "e3": ("2025-07-07", None),
        }
        # Boundary days count toward both adjacent windows
        assert {r.event_id: r.cached_metrics.clicks for r in rows} == {
            "e1": 35,
            "e2": 65,
            "e3": 35,
        }
        assert all(r.state == AssociationState.SYNCED for r in rows)

    def test_existing_pair_returned_unchanged(self, orchestrator, clock) -> None:
        first = orchestrator.create_association("L1", "e1")
        clock.advance(hours=1)
        again = orchestrator.create_association("L1", "e1")
        assert again == first

    def test_unknown_event_raises(self, orchestrator, associations) -> None:
        with pytest.raises(EventNotFoundError):
            orchestrator.create_association("L1", "nope")
        assert associations.list_by_link("L1") == []

    def test_missing_snapshot_leaves_pending(self, orchestrator) -> None:
        row = orchestrator.create_association("L9", "e1")
        assert row.state == AssociationState.PENDING_RANGE
        assert row.cached_metrics.clicks == 0
        assert row.last_synced_at is None


# --- Recompute ---


class TestRecomputeLink:
    def test_idempotent(self, orchestrator) -> None:
        link_all(orchestrator, "L1")
        first = orchestrator.recompute_link("L1")
        second = orchestrator.recompute_link("L1")
        assert first == second

    def test_no_associations(self, orchestrator) -> None:
        assert orchestrator.recompute_link("empty") == []

    def test_reschedule_moves_boundaries(self, orchestrator, events, associations) -> None:
        link_all(orchestrator, "L1")
        events.save(make_window("e2", "2025-07-02"))
        assert orchestrator.recompute_for_event("e2") == 1
        assert ranges_of(associations.list_by_link("L1")) == {
            "e1": (None, "2025-07-01"),
            "e2": ("2025-07-01", "2025-07-04"),
            "e3": ("2025-07-04", None),
        }

    def test_orphan_excluded_and_kept(self, orchestrator, events, associations) -> None:
        link_all(orchestrator, "L1")
        stale = associations.get("L1", "e2")
        events.delete("e2")
        orchestrator.recompute_link("L1")

        assert associations.get("L1", "e2") == stale
        rows = {r.event_id: r for r in associations.list_by_link("L1")}
        assert rows["e1"].end_date == date(2025, 7, 3)
        assert rows["e3"].start_date == date(2025, 7, 3)

    def test_uses_configured_windows(self, associations, events, snapshots, clock) -> None:
        orch = RecalculationOrchestrator(
            associations,
            events,
            snapshots,
            time_port=clock,
            config=OrchestratorConfig(range_config=RangeConfig(buffer_days=1, min_gap_days=2)),
        )
        orch.create_association("L1", "e1")
        orch.create_association("L1", "e2")
        assert associations.get("L1", "e1").end_date == date(2025, 7, 2)


class TestEventDeleted:
    def test_redistribution_matches_fresh_pair(
        self, orchestrator, events, associations, snapshots, clock
    ) -> None:
        link_all(orchestrator, "L1")
        events.delete("e2")
        assert orchestrator.handle_event_deleted("e2") == 1

        fresh_store = InMemoryAssociationStore()
        fresh = RecalculationOrchestrator(fresh_store, events, snapshots, time_port=clock)
        fresh.create_association("L1", "e1")
        fresh.create_association("L1", "e3")

        assert ranges_of(associations.list_by_link("L1")) == ranges_of(
            fresh_store.list_by_link("L1")
        )
        assert ranges_of(associations.list_by_link("L1")) == {
            "e1": (None, "2025-07-03"),
            "e3": ("2025-07-03", None),
        }

    def test_unknown_event_is_noop(self, orchestrator) -> None:
        assert orchestrator.handle_event_deleted("ghost") == 0


# --- Manual ranges ---


class TestManualRange:
    def test_pinned_row_keeps_range(self, orchestrator, associations) -> None:
        link_all(orchestrator, "L1")
        pinned = orchestrator.set_manual_range(
            "L1", "e2", DateRange.from_dates("2025-07-05", "2025-07-05")
        )
        assert not pinned.auto_calculated
        assert pinned.cached_metrics.clicks == 30

        rows = {r.event_id: r for r in associations.list_by_link("L1")}
        # Siblings are redistributed as if e2 were absent
        assert rows["e1"].end_date == date(2025, 7, 3)
        assert rows["e3"].start_date == date(2025, 7, 3)

        orchestrator.recompute_link("L1")
        assert associations.get("L1", "e2").end_date == date(2025, 7, 5)

    def test_clear_restores_auto(self, orchestrator, associations) -> None:
        link_all(orchestrator, "L1")
        orchestrator.set_manual_range("L1", "e2", DateRange.unbounded())
        row = orchestrator.clear_manual_range("L1", "e2")
        assert row.auto_calculated
        assert ranges_of([row]) == {"e2": ("2025-07-03", "2025-07-07")}

    def test_unknown_association(self, orchestrator) -> None:
        with pytest.raises(AssociationNotFoundError):
            orchestrator.set_manual_range("L1", "e1", DateRange.unbounded())


# --- Metric refresh ---


class TestRefresh:
    def test_refresh_uses_existing_ranges(
        self, orchestrator, associations, snapshots, clock
    ) -> None:
        link_all(orchestrator, "L1")
        before = ranges_of(associations.list_by_link("L1"))

        snapshots.put(make_snapshot("L1", scale=2))
        clock.advance(hours=6)
        assert orchestrator.refresh_link_metrics("L1") == 3

        rows = associations.list_by_link("L1")
        assert ranges_of(rows) == before
        assert rows[0].cached_metrics.clicks == 70
        assert all(r.last_synced_at == clock.now_utc() for r in rows)

    def test_pending_link_recomputed_once_snapshot_arrives(
        self, orchestrator, associations, snapshots
    ) -> None:
        orchestrator.create_association("L9", "e1")
        snapshots.put(make_snapshot("L9"))
        assert orchestrator.refresh_link_metrics("L9") == 1

        row = associations.get("L9", "e1")
        assert row.state == AssociationState.SYNCED
        assert row.date_range == DateRange.unbounded()
        assert row.cached_metrics.clicks == 100

    def test_siblings_reranged_after_link_created_without_snapshot(
        self, orchestrator, associations, snapshots
    ) -> None:
        orchestrator.create_association("L1", "e1")
        assert associations.get("L1", "e1").cached_metrics.clicks == 100

        snapshots.remove("L1")
        orchestrator.create_association("L1", "e2")
        # e1 still holds the whole timeline, so it can no longer be trusted
        assert associations.get("L1", "e1").state == AssociationState.PENDING_RANGE
        assert associations.get("L1", "e1").date_range == DateRange.unbounded()

        snapshots.put(make_snapshot("L1"))
        assert orchestrator.refresh_metrics() == 2

        rows = associations.list_by_link("L1")
        assert ranges_of(rows) == {
            "e1": (None, "2025-07-03"),
            "e2": ("2025-07-03", None),
        }
        assert {r.event_id: r.cached_metrics.clicks for r in rows} == {"e1": 35, "e2": 85}
        assert all(r.state == AssociationState.SYNCED for r in rows)

    def test_failed_reschedule_marks_link_pending(
        self, orchestrator, events, associations, snapshots
    ) -> None:
        link_all(orchestrator, "L1")
        events.save(make_window("e2", "2025-07-02"))
        snapshots.remove("L1")

        assert orchestrator.recompute_for_event("e2") == 0
        rows = associations.list_by_link("L1")
        assert all(r.state == AssociationState.PENDING_RANGE for r in rows)
        # Last-known-good ranges are kept until the recompute succeeds
        assert rows[0].end_date == date(2025, 7, 3)

        snapshots.put(make_snapshot("L1"))
        assert orchestrator.refresh_link_metrics("L1") == 3
        assert associations.get("L1", "e1").end_date == date(2025, 7, 1)

    def test_refresh_all(self, orchestrator) -> None:
        link_all(orchestrator, "L1")
        orchestrator.create_association("L2", "e1")
        assert orchestrator.refresh_metrics() == 4


# --- Fleet operations ---


class TestRecomputeAll:
    def test_failure_isolated_and_stale_rows_kept(
        self, orchestrator, associations, snapshots, clock
    ) -> None:
        for link_id in ("L1", "L2", "L3"):
            link_all(orchestrator, link_id)
        before = associations.list_by_link("L2")

        snapshots.failing.add("L2")
        clock.advance(days=1)
        result = orchestrator.recompute_all()

        assert result.total_links == 3
        assert result.succeeded == 2
        assert [f.link_id for f in result.failures] == ["L2"]
        assert result.failures[0].error_type == "RuntimeError"
        assert associations.list_by_link("L2") == before
        assert all(r.last_synced_at == clock.now_utc() for r in associations.list_by_link("L3"))

    def test_stop_and_resume(self, orchestrator, associations) -> None:
        for link_id in ("L1", "L2", "L3"):
            orchestrator.create_association(link_id, "e1")

        calls = {"n": 0}

        def stop_after_first() -> bool:
            calls["n"] += 1
            return calls["n"] > 1

        first = orchestrator.recompute_all(should_stop=stop_after_first)
        assert first.stopped_early
        assert first.succeeded == 1
        assert first.checkpoint == "L1"

        rest = orchestrator.recompute_all(resume_after=first.checkpoint)
        assert rest.total_links == 2
        assert rest.succeeded == 2
        assert rest.checkpoint == "L3"
        assert not rest.stopped_early

    def test_parallel_workers(self, associations, events, snapshots, clock) -> None:
        orch = RecalculationOrchestrator(
            associations,
            events,
            snapshots,
            time_port=clock,
            config=OrchestratorConfig(max_link_workers=3),
        )
        for link_id in ("L1", "L2", "L3"):
            link_all(orch, link_id)
        result = orch.recompute_all()
        assert result.succeeded == 3
        assert result.associations_updated == 9


class TestCleanupOrphans:
    def test_removes_and_redistributes(self, orchestrator, events, associations) -> None:
        link_all(orchestrator, "L1")
        events.delete("e3")
        assert orchestrator.cleanup_orphans() == 1
        assert associations.get("L1", "e3") is None
        assert associations.get("L1", "e2").end_date is None

    def test_undated_event_is_not_an_orphan(self, orchestrator, events, associations) -> None:
        link_all(orchestrator, "L1")
        events.undated.add("e3")
        assert orchestrator.cleanup_orphans() == 0
        assert len(associations.list_by_link("L1")) == 3


class TestUndatedEvent:
    def test_create_surfaces_validation_error(self, orchestrator, events, associations) -> None:
        events.undated.add("e2")
        with pytest.raises(EventWindowValidationError):
            orchestrator.create_association("L1", "e2")
        assert associations.list_by_link("L1") == []

    def test_fleet_recompute_isolates_link(self, orchestrator, events, associations) -> None:
        link_all(orchestrator, "L1")
        orchestrator.create_association("L2", "e1")
        before = associations.list_by_link("L1")

        events.undated.add("e3")
        result = orchestrator.recompute_all()

        assert result.succeeded == 1
        assert [f.link_id for f in result.failures] == ["L1"]
        assert result.failures[0].error_type == "EventWindowValidationError"
        assert associations.list_by_link("L1") == before


# --- Read views ---


class TestEventMetrics:
    def test_totals_across_links(self, orchestrator, associations) -> None:
        link_all(orchestrator, "L1")
        link_all(orchestrator, "L2")

        summary = orchestrator.event_metrics("e2")
        rows = associations.list_by_event("e2")
        assert summary.link_ids == ["L1", "L2"]
        assert summary.associations == tuple(rows)
        assert summary.total_clicks == 130
        assert summary.total_unique_clicks == sum(r.cached_metrics.unique_clicks for r in rows)

    def test_event_without_links(self, orchestrator) -> None:
        summary = orchestrator.event_metrics("e1")
        assert summary.associations == ()
        assert summary.total_clicks == 0
        assert summary.total_unique_clicks == 0

    def test_unknown_event(self, orchestrator) -> None:
        with pytest.raises(EventNotFoundError):
            orchestrator.event_metrics("nope")


# --- Shell ---


class TestRun:
    def test_link_mode_requires_link_id(self, orchestrator) -> None:
        out = run(RecalculateInput(mode="link"), orchestrator=orchestrator)
        assert not out.success
        assert out.errors[0].code == "link_id_required"

    def test_link_mode(self, orchestrator) -> None:
        link_all(orchestrator, "L1")
        out = run(RecalculateInput(mode="link", link_id="L1"), orchestrator=orchestrator)
        assert out.success
        assert out.associations_updated == 3

    def test_link_mode_missing_snapshot(self, orchestrator) -> None:
        orchestrator.create_association("L9", "e1")
        out = run(RecalculateInput(mode="link", link_id="L9"), orchestrator=orchestrator)
        assert not out.success
        assert out.errors[0].code == "recompute_failed"

    def test_event_deleted_mode(self, orchestrator, associations) -> None:
        link_all(orchestrator, "L1")
        out = run(
            RecalculateInput(mode="event_deleted", event_id="e3"), orchestrator=orchestrator
        )
        assert out.links_recomputed == 1
        assert associations.get("L1", "e3") is None

    def test_all_mode_reports_failures(self, orchestrator, snapshots) -> None:
        link_all(orchestrator, "L1")
        link_all(orchestrator, "L2")
        snapshots.failing.add("L1")
        out = run(RecalculateInput(mode="all"), orchestrator=orchestrator)
        assert not out.success
        assert out.links_recomputed == 1
        assert out.checkpoint == "L2"

    def test_invalid_mode(self, orchestrator) -> None:
        inp = RecalculateInput(mode="bogus")  # type: ignore[arg-type]
        out = run(inp, orchestrator=orchestrator)
        assert not out.success
        assert out.errors[0].code == "invalid_mode"

    def test_build_config_from_rules(self) -> None:
        rules = Rules(orchestrator=OrchestratorRules(max_link_workers=2))
        assert build_orchestrator_config(rules).max_link_workers == 2
