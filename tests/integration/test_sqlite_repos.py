from types import SimpleNamespace

import pytest

from src.adapters.sqlite.repos import (
    SQLiteAssociationRepo,
    SQLiteEventWindowRepo,
    SQLiteSnapshotRepo,
)
from src.core.entities import (
    AggregatedMetrics,
    AssociationState,
    CountryClicks,
    DailyClicks,
    DateRange,
    LinkEventAssociation,
)
from src.core.errors import EventWindowValidationError


@pytest.fixture
def repo(db_path):
    return SQLiteAssociationRepo(db_path)


@pytest.fixture
def event_repo(db_path):
    return SQLiteEventWindowRepo(db_path)


@pytest.fixture
def snapshot_repo(db_path):
    return SQLiteSnapshotRepo(db_path)


def make_row(link_id, event_id, clock):
    now = clock.now_utc()
    return LinkEventAssociation(link_id=link_id, event_id=event_id, created_at=now, updated_at=now)


def test_save_and_get_association(repo, clock):
    now = clock.now_utc()
    metrics = AggregatedMetrics(
        clicks=12,
        unique_clicks=7,
        top_countries=(CountryClicks(code="NZ", clicks=12),),
        daily_clicks=(DailyClicks(date="2025-07-03", clicks=12),),
    )
    row = (
        make_row("bit.ly/a", "e1", clock)
        .with_range(DateRange.from_dates("2025-07-03", None), now)
        .with_metrics(metrics, now)
    )
    repo.replace_link("bit.ly/a", [row])

    loaded = repo.get("bit.ly/a", "e1")
    assert loaded == row
    assert loaded.state == AssociationState.SYNCED
    assert loaded.end_date is None
    assert loaded.cached_metrics.top_countries[0].code == "NZ"


def test_get_missing(repo):
    assert repo.get("bit.ly/a", "nope") is None


def test_insert_keeps_existing(repo, clock):
    first = repo.insert(make_row("bit.ly/a", "e1", clock))
    clock.advance(hours=2)
    again = repo.insert(make_row("bit.ly/a", "e1", clock))
    assert again == first
    assert len(repo.list_by_link("bit.ly/a")) == 1


def test_listing(repo, clock):
    for link_id, event_id in [("b", "e1"), ("a", "e2"), ("a", "e1")]:
        repo.insert(make_row(link_id, event_id, clock))

    assert [r.event_id for r in repo.list_by_link("a")] == ["e1", "e2"]
    assert [r.link_id for r in repo.list_by_event("e1")] == ["a", "b"]
    assert repo.list_link_ids() == ["a", "b"]


def test_replace_link_is_atomic(repo, clock):
    repo.insert(make_row("a", "e1", clock))
    now = clock.now_utc()
    ranged = repo.get("a", "e1").with_range(DateRange.unbounded(), now)
    invalid = LinkEventAssociation.model_construct(
        link_id="a",
        event_id="e2",
        start_date=None,
        end_date=None,
        auto_calculated=True,
        state=SimpleNamespace(value="bogus"),
        cached_metrics=AggregatedMetrics(),
        last_synced_at=None,
        created_at=now,
        updated_at=now,
    )

    with pytest.raises(Exception):
        repo.replace_link("a", [ranged, invalid])

    assert repo.get("a", "e1").state == AssociationState.PENDING_RANGE
    assert repo.get("a", "e2") is None


def test_replace_link_rejects_foreign_rows(repo, clock):
    with pytest.raises(ValueError):
        repo.replace_link("a", [make_row("b", "e1", clock)])


def test_delete(repo, clock):
    repo.insert(make_row("a", "e1", clock))
    repo.insert(make_row("b", "e1", clock))
    repo.insert(make_row("b", "e2", clock))

    assert repo.delete_by_event("e1") == 2
    assert repo.delete("b", "e2")
    assert not repo.delete("b", "e2")
    assert repo.list_link_ids() == []


def insert_undated_event(db_path, event_id):
    import sqlite3

    conn = sqlite3.connect(db_path)
    conn.execute(
        "INSERT INTO events (id, event_date, created_at) VALUES (?, NULL, ?)",
        (event_id, "2025-06-01T09:00:00+00:00"),
    )
    conn.commit()
    conn.close()


def test_event_windows(event_repo, window_factory):
    event_repo.save(window_factory("e1", "2025-07-01"))
    event_repo.save(window_factory("e2", "2025-07-05"))

    windows = event_repo.get_event_windows(["e2", "e1", "missing"])
    assert [w.event_id for w in windows] == ["e1", "e2"]
    assert windows[0] == window_factory("e1", "2025-07-01")

    event_repo.save(window_factory("e1", "2025-07-03"))
    assert event_repo.get_event_windows(["e1"])[0].event_date.isoformat() == "2025-07-03"

    event_repo.delete("e1")
    assert event_repo.get_event_windows(["e1"]) == []
    assert event_repo.get_event_windows([]) == []


def test_snapshot_round_trip(snapshot_repo, snapshot_factory):
    snapshot = snapshot_factory("bit.ly/a", {"2025-07-01": 4, "2025-07-02": 6}, unique=5)
    snapshot_repo.save(snapshot)
    assert snapshot_repo.fetch_snapshot("bit.ly/a") == snapshot
    assert snapshot_repo.fetch_snapshot("bit.ly/zzz") is None


def test_undated_event_fails_validation(event_repo, window_factory, db_path):
    event_repo.save(window_factory("e1", "2025-07-01"))
    insert_undated_event(db_path, "draft")

    with pytest.raises(EventWindowValidationError) as exc_info:
        event_repo.get_event_windows(["e1", "draft"])
    assert exc_info.value.event_id == "draft"

    # Still present, so not an orphan
    assert event_repo.existing_event_ids(["e1", "draft", "missing"]) == {"e1", "draft"}
    assert event_repo.existing_event_ids([]) == set()
