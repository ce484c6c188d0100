from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.app_shell.context import ServiceContext
from src.core.entities import EventWindow, LinkAnalyticsSnapshot
from src.rules.loader import load_rules
from src.rules.models import Rules

PROJECT_ROOT = Path(__file__).parent.parent
MIGRATIONS_DIR = str(PROJECT_ROOT / "migrations")


class MockTimePort:
    """Controllable clock for deterministic timestamps."""

    def __init__(self, now: datetime | None = None):
        self._now = now or datetime(2025, 8, 1, 12, 0, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> None:
        self._now = self._now + timedelta(**kwargs)


def make_window(event_id: str, day: str, hour: int = 9) -> EventWindow:
    return EventWindow(
        event_id=event_id,
        event_date=date.fromisoformat(day),
        created_at=datetime(2025, 6, 1, hour, tzinfo=UTC),
    )


def make_snapshot(link_id: str, daily: dict[str, int], unique: int = 0) -> LinkAnalyticsSnapshot:
    return LinkAnalyticsSnapshot.model_validate(
        {
            "link_id": link_id,
            "total_clicks_all_time": sum(daily.values()),
            "total_unique_clicks_all_time": unique,
            "daily_clicks": [{"date": d, "clicks": c} for d, c in sorted(daily.items())],
            "countries": [{"code": "US", "clicks": sum(daily.values())}],
        }
    )


@pytest.fixture
def clock() -> MockTimePort:
    return MockTimePort()


@pytest.fixture
def rules() -> Rules:
    """Real rules from the project root."""
    rules_path = PROJECT_ROOT / "rules.yaml"
    if not rules_path.exists():
        raise FileNotFoundError(f"Rules not found at {rules_path}")
    return load_rules(rules_path)


@pytest.fixture
def db_path(tmp_path) -> str:
    """Temporary SQLite database with all migrations applied."""
    path = str(tmp_path / "attribution.db")
    SQLiteMigrator(path, MIGRATIONS_DIR).run_migrations()
    return path


@pytest.fixture
def test_ctx(db_path, rules, clock) -> ServiceContext:
    """Full ServiceContext backed by a temporary SQLite DB."""
    return ServiceContext.create(db_path=db_path, rules=rules, clock=clock)


@pytest.fixture
def window_factory():
    return make_window


@pytest.fixture
def snapshot_factory():
    return make_snapshot
