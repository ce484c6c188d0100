"""
Cached snapshot source.

Wraps an upstream ``fetch(link_id)`` callable (the link-shortener client)
with a per-link TTL cache. The cache state lives here, never inside the
calculator or aggregator.

Key behaviors:
- Fresh entries are served without calling upstream
- Expired entries are refetched; a failed refetch falls back to the stale
  entry so a transient upstream error does not blank a link's metrics
- A link upstream reports as missing is not cached
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from src.components.recalc.ports import TimePort
from src.core.entities import LinkAnalyticsSnapshot

logger = logging.getLogger(__name__)

SnapshotFetcher = Callable[[str], LinkAnalyticsSnapshot | None]


@dataclass
class _CacheEntry:
    snapshot: LinkAnalyticsSnapshot
    stored_at: datetime


class CachedSnapshotSource:
    """Per-link TTL cache in front of an upstream fetcher."""

    def __init__(
        self,
        fetch: SnapshotFetcher,
        ttl_seconds: int = 300,
        time_port: TimePort | None = None,
    ) -> None:
        self._fetch = fetch
        self._ttl = timedelta(seconds=ttl_seconds)
        self._time_port = time_port
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        return datetime.now(UTC)

    def fetch_snapshot(self, link_id: str) -> LinkAnalyticsSnapshot | None:
        now = self._now()
        with self._lock:
            entry = self._entries.get(link_id)
        if entry is not None and now - entry.stored_at < self._ttl:
            return entry.snapshot

        try:
            snapshot = self._fetch(link_id)
        except Exception:
            if entry is None:
                raise
            logger.warning(
                "Upstream fetch failed for link %s; serving snapshot cached at %s",
                link_id,
                entry.stored_at.isoformat(),
                exc_info=True,
            )
            return entry.snapshot

        if snapshot is None:
            with self._lock:
                self._entries.pop(link_id, None)
            return None

        with self._lock:
            self._entries[link_id] = _CacheEntry(snapshot=snapshot, stored_at=now)
        return snapshot

    def invalidate(self, link_id: str | None = None) -> None:
        """Drop one link's entry, or all entries."""
        with self._lock:
            if link_id is None:
                self._entries.clear()
            else:
                self._entries.pop(link_id, None)
