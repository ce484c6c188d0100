"""
Recalculation component port definitions.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from src.core.entities import EventWindow, LinkAnalyticsSnapshot, LinkEventAssociation


class AssociationStorePort(Protocol):
    """Repository interface for link-event associations."""

    def get(self, link_id: str, event_id: str) -> LinkEventAssociation | None:
        """Get one association by its (link, event) key."""
        ...

    def insert(self, association: LinkEventAssociation) -> LinkEventAssociation:
        """Insert a new association. Returns the existing row if the key is taken."""
        ...

    def list_by_link(self, link_id: str) -> list[LinkEventAssociation]:
        """List every association of a link."""
        ...

    def list_by_event(self, event_id: str) -> list[LinkEventAssociation]:
        """List every association of an event."""
        ...

    def list_link_ids(self) -> list[str]:
        """List distinct link ids that have associations."""
        ...

    def replace_link(self, link_id: str, associations: Sequence[LinkEventAssociation]) -> None:
        """
        Atomically replace the given rows of one link.

        All rows are written together or not at all. Rows of the link that
        are not in the batch are left untouched.
        """
        ...

    def delete(self, link_id: str, event_id: str) -> bool:
        """Delete one association. Returns True if a row was removed."""
        ...

    def delete_by_event(self, event_id: str) -> int:
        """Delete every association of an event. Returns rows removed."""
        ...


class EventStorePort(Protocol):
    """Read-only view of event scheduling data."""

    def get_event_windows(self, event_ids: Sequence[str]) -> list[EventWindow]:
        """
        Load windows for the given events. Unknown ids are omitted.

        Raises:
            EventWindowValidationError: A known event has no usable date.
        """
        ...

    def existing_event_ids(self, event_ids: Sequence[str]) -> set[str]:
        """Ids among the given ones that the store still holds, valid or not."""
        ...


class SnapshotSourcePort(Protocol):
    """Source of cumulative upstream analytics per link."""

    def fetch_snapshot(self, link_id: str) -> LinkAnalyticsSnapshot | None:
        """Get the latest raw snapshot, or None if none is available."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
