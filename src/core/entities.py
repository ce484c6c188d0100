"""
Domain entities for shared-link attribution.

- EventWindow: an event's schedule as read from the event store
- Bound / DateRange: attribution window with explicit unbounded ends
- LinkAnalyticsSnapshot: cumulative raw analytics for one link
- AggregatedMetrics: estimated metrics for one window
- LinkEventAssociation: persisted (link, event) junction row

Persisted records are pydantic models validated at the store boundary.
Value types used inside the pure core are frozen dataclasses.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.core.errors import EventWindowValidationError

CalendarDate = date

__all__ = [
    "AggregatedMetrics",
    "AssociationState",
    "Bound",
    "Bounded",
    "BrowserClicks",
    "CalendarDate",
    "CountryClicks",
    "DailyClicks",
    "DateRange",
    "DeviceClicks",
    "EventWindow",
    "LinkAnalyticsSnapshot",
    "LinkEventAssociation",
    "ReferrerClicks",
    "UNBOUNDED",
    "Unbounded",
    "parse_day",
    "to_bound",
]


# --- Date helpers ---


def parse_day(value: date | datetime | str) -> date:
    """
    Parse a calendar day.

    Accepts a date, a datetime (time part dropped) or an ISO 8601 string.
    Timestamps such as "2025-07-01T00:00:00.000Z" keep only the date part.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) >= 10:
        return date.fromisoformat(value[:10])
    msg = f"Invalid calendar date: {value!r}"
    raise ValueError(msg)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# --- Event window ---


@dataclass(frozen=True)
class EventWindow:
    """
    Scheduling data of one event sharing a link.

    Owned by the event store; read-only here. Naive ``created_at`` values
    are treated as UTC so that same-day tiebreaks compare consistently.
    """

    event_id: str
    event_date: date
    created_at: datetime

    def __post_init__(self) -> None:
        if not self.event_id:
            raise EventWindowValidationError("Event window requires an event_id")
        if self.event_date is None:
            raise EventWindowValidationError(
                f"Event {self.event_id} has no event_date", event_id=self.event_id
            )
        if isinstance(self.event_date, datetime):
            object.__setattr__(self, "event_date", self.event_date.date())
        elif not isinstance(self.event_date, date):
            raise EventWindowValidationError(
                f"Event {self.event_id} has invalid event_date: {self.event_date!r}",
                event_id=self.event_id,
            )
        if not isinstance(self.created_at, datetime):
            raise EventWindowValidationError(
                f"Event {self.event_id} has invalid created_at: {self.created_at!r}",
                event_id=self.event_id,
            )
        object.__setattr__(self, "created_at", _ensure_utc(self.created_at))

    @property
    def sort_key(self) -> tuple[date, datetime, str]:
        """Chronological key; created_at breaks same-day ties."""
        return (self.event_date, self.created_at, self.event_id)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> EventWindow:
        """Build from a loosely-typed store record (ISO strings allowed)."""
        event_id = record.get("event_id") or record.get("id")
        raw_date = record.get("event_date")
        if raw_date in (None, ""):
            raise EventWindowValidationError(
                f"Event {event_id} has no event_date", event_id=str(event_id) if event_id else None
            )
        raw_created = record.get("created_at")
        try:
            event_date = parse_day(raw_date)  # type: ignore[arg-type]
            created_at = (
                datetime.fromisoformat(raw_created) if isinstance(raw_created, str) else raw_created
            )
        except ValueError as e:
            raise EventWindowValidationError(
                f"Event {event_id} has malformed dates: {e}", event_id=str(event_id)
            ) from e
        return cls(
            event_id=str(event_id) if event_id is not None else "",
            event_date=event_date,
            created_at=created_at,  # type: ignore[arg-type]
        )


# --- Range bounds ---


@dataclass(frozen=True)
class Unbounded:
    """Open side of a range: beginning of history or still ongoing."""

    def to_iso(self) -> str | None:
        return None

    def to_date(self) -> date | None:
        return None


@dataclass(frozen=True)
class Bounded:
    """Closed side of a range at a calendar day."""

    day: date

    def to_iso(self) -> str | None:
        return self.day.isoformat()

    def to_date(self) -> date | None:
        return self.day


Bound = Unbounded | Bounded

UNBOUNDED = Unbounded()


def to_bound(value: date | str | None) -> Bound:
    """Convert a nullable stored date into a bound."""
    if value is None:
        return UNBOUNDED
    return Bounded(parse_day(value))


@dataclass(frozen=True)
class DateRange:
    """
    Attribution window for one event.

    Both sides are inclusive when filtering daily data. An unbounded start
    covers all history; an unbounded end covers all future data.
    """

    start: Bound = UNBOUNDED
    end: Bound = UNBOUNDED

    @classmethod
    def unbounded(cls) -> DateRange:
        return cls(UNBOUNDED, UNBOUNDED)

    @classmethod
    def from_dates(cls, start: date | str | None, end: date | str | None) -> DateRange:
        return cls(to_bound(start), to_bound(end))

    @property
    def start_date(self) -> date | None:
        return self.start.to_date()

    @property
    def end_date(self) -> date | None:
        return self.end.to_date()

    def contains(self, day: date) -> bool:
        """Inclusive membership test."""
        if isinstance(self.start, Bounded) and day < self.start.day:
            return False
        if isinstance(self.end, Bounded) and day > self.end.day:
            return False
        return True

    def to_dict(self) -> dict[str, str | None]:
        return {"start_date": self.start.to_iso(), "end_date": self.end.to_iso()}


# --- Raw snapshot (upstream, cumulative) ---


class DailyClicks(BaseModel):
    """Clicks recorded on one day."""

    model_config = ConfigDict(frozen=True)

    date: CalendarDate
    clicks: int = Field(ge=0)


class CountryClicks(BaseModel):
    """Clicks for one country (ISO 3166-1 alpha-2 code)."""

    model_config = ConfigDict(frozen=True)

    code: str
    clicks: int = Field(ge=0)


class ReferrerClicks(BaseModel):
    """Clicks for one referring domain."""

    model_config = ConfigDict(frozen=True)

    domain: str
    clicks: int = Field(ge=0)

    @model_validator(mode="before")
    @classmethod
    def _accept_referrer_alias(cls, data: Any) -> Any:
        # Upstream reports either referring domains or platform-level referrers
        if isinstance(data, Mapping) and not data.get("domain"):
            data = dict(data)
            data["domain"] = data.pop("referrer", None) or "unknown"
        return data


class LinkAnalyticsSnapshot(BaseModel):
    """
    Cumulative analytics for one link as reported upstream.

    Only ``daily_clicks`` has historical resolution. Countries and referrers
    are running totals to date.
    """

    model_config = ConfigDict(frozen=True)

    link_id: str
    total_clicks_all_time: int = Field(default=0, ge=0)
    total_unique_clicks_all_time: int = Field(default=0, ge=0)
    daily_clicks: tuple[DailyClicks, ...] = ()
    countries: tuple[CountryClicks, ...] = ()
    referrers: tuple[ReferrerClicks, ...] = ()
    fetched_at: datetime | None = None


# --- Aggregated output ---


class DeviceClicks(BaseModel):
    """Device breakdown. Not derivable from cumulative data; always zero."""

    model_config = ConfigDict(frozen=True)

    mobile: int = 0
    desktop: int = 0
    tablet: int = 0
    other: int = 0


class BrowserClicks(BaseModel):
    """Browser breakdown. Not derivable from cumulative data; always zero."""

    model_config = ConfigDict(frozen=True)

    chrome: int = 0
    firefox: int = 0
    safari: int = 0
    edge: int = 0
    other: int = 0


class AggregatedMetrics(BaseModel):
    """Estimated metrics for one attribution window."""

    model_config = ConfigDict(frozen=True)

    clicks: int = 0
    unique_clicks: int = 0
    top_countries: tuple[CountryClicks, ...] = ()
    top_referrers: tuple[ReferrerClicks, ...] = ()
    device_clicks: DeviceClicks = Field(default_factory=DeviceClicks)
    browser_clicks: BrowserClicks = Field(default_factory=BrowserClicks)
    daily_clicks: tuple[DailyClicks, ...] = ()

    @classmethod
    def empty(cls) -> AggregatedMetrics:
        """Zeroed placeholder used before the first recompute."""
        return cls()


# --- Association (junction row) ---


class AssociationState(str, Enum):
    """
    Association lifecycle.

    unlinked -> pending_range -> ranged -> synced -> deleted
    Any lifecycle change in the link's event group resets siblings to
    pending_range before a full recompute.
    """

    UNLINKED = "unlinked"
    PENDING_RANGE = "pending_range"
    RANGED = "ranged"
    SYNCED = "synced"
    DELETED = "deleted"


class LinkEventAssociation(BaseModel):
    """
    Persisted association between one link and one event.

    Invariants:
    - Unique on (link_id, event_id)
    - Replaced wholesale on every recompute of its link, never patched
    """

    model_config = ConfigDict(frozen=True)

    link_id: str
    event_id: str
    start_date: CalendarDate | None = None
    end_date: CalendarDate | None = None
    auto_calculated: bool = True
    state: AssociationState = AssociationState.PENDING_RANGE
    cached_metrics: AggregatedMetrics = Field(default_factory=AggregatedMetrics)
    last_synced_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def key(self) -> tuple[str, str]:
        return (self.link_id, self.event_id)

    @property
    def date_range(self) -> DateRange:
        return DateRange.from_dates(self.start_date, self.end_date)

    def with_range(self, date_range: DateRange, now: datetime) -> LinkEventAssociation:
        """Copy with a new range; metrics become stale."""
        return self.model_copy(
            update={
                "start_date": date_range.start_date,
                "end_date": date_range.end_date,
                "state": AssociationState.RANGED,
                "updated_at": now,
            }
        )

    def with_metrics(self, metrics: AggregatedMetrics, now: datetime) -> LinkEventAssociation:
        """Copy with freshly computed metrics."""
        return self.model_copy(
            update={
                "cached_metrics": metrics,
                "state": AssociationState.SYNCED,
                "last_synced_at": now,
                "updated_at": now,
            }
        )
