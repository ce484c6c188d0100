"""
In-memory adapters for development and testing.

- InMemoryAssociationStore: association rows keyed by (link_id, event_id)
- InMemoryEventStore: event windows keyed by event_id
- InMemorySnapshotSource: latest raw snapshot per link

Writes go through a single lock, so a link's batch replace is atomic with
respect to concurrent readers.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from src.core.entities import EventWindow, LinkAnalyticsSnapshot, LinkEventAssociation


class InMemoryAssociationStore:
    """In-memory association repository."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], LinkEventAssociation] = {}
        self._lock = threading.Lock()

    def get(self, link_id: str, event_id: str) -> LinkEventAssociation | None:
        with self._lock:
            return self._rows.get((link_id, event_id))

    def insert(self, association: LinkEventAssociation) -> LinkEventAssociation:
        with self._lock:
            existing = self._rows.get(association.key)
            if existing is not None:
                return existing
            self._rows[association.key] = association
            return association

    def list_by_link(self, link_id: str) -> list[LinkEventAssociation]:
        with self._lock:
            rows = [row for key, row in self._rows.items() if key[0] == link_id]
        return sorted(rows, key=lambda r: r.event_id)

    def list_by_event(self, event_id: str) -> list[LinkEventAssociation]:
        with self._lock:
            rows = [row for key, row in self._rows.items() if key[1] == event_id]
        return sorted(rows, key=lambda r: r.link_id)

    def list_link_ids(self) -> list[str]:
        with self._lock:
            return sorted({key[0] for key in self._rows})

    def replace_link(self, link_id: str, associations: Sequence[LinkEventAssociation]) -> None:
        for row in associations:
            if row.link_id != link_id:
                msg = f"Association for link {row.link_id} in batch for link {link_id}"
                raise ValueError(msg)
        with self._lock:
            for row in associations:
                self._rows[row.key] = row

    def delete(self, link_id: str, event_id: str) -> bool:
        with self._lock:
            return self._rows.pop((link_id, event_id), None) is not None

    def delete_by_event(self, event_id: str) -> int:
        with self._lock:
            keys = [key for key in self._rows if key[1] == event_id]
            for key in keys:
                del self._rows[key]
            return len(keys)


class InMemoryEventStore:
    """In-memory event window store."""

    def __init__(self, windows: Sequence[EventWindow] = ()) -> None:
        self._windows: dict[str, EventWindow] = {w.event_id: w for w in windows}

    def save(self, window: EventWindow) -> EventWindow:
        """Create or reschedule an event."""
        self._windows[window.event_id] = window
        return window

    def delete(self, event_id: str) -> None:
        self._windows.pop(event_id, None)

    def get_event_windows(self, event_ids: Sequence[str]) -> list[EventWindow]:
        return [self._windows[eid] for eid in event_ids if eid in self._windows]

    def existing_event_ids(self, event_ids: Sequence[str]) -> set[str]:
        return {eid for eid in event_ids if eid in self._windows}


class InMemorySnapshotSource:
    """In-memory snapshot source; stands in for the upstream sync cache."""

    def __init__(self, snapshots: Sequence[LinkAnalyticsSnapshot] = ()) -> None:
        self._snapshots: dict[str, LinkAnalyticsSnapshot] = {s.link_id: s for s in snapshots}

    def put(self, snapshot: LinkAnalyticsSnapshot) -> None:
        self._snapshots[snapshot.link_id] = snapshot

    def remove(self, link_id: str) -> None:
        self._snapshots.pop(link_id, None)

    def fetch_snapshot(self, link_id: str) -> LinkAnalyticsSnapshot | None:
        return self._snapshots.get(link_id)
