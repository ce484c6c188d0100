import json
import sqlite3
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from src.core.entities import (
    AggregatedMetrics,
    AssociationState,
    EventWindow,
    LinkAnalyticsSnapshot,
    LinkEventAssociation,
)


# Helper to convert sqlite rows to dicts
def dict_factory(cursor: sqlite3.Cursor, row: Any) -> dict[str, Any]:
    d = {}
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class _SQLiteRepo:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn


class SQLiteAssociationRepo(_SQLiteRepo):
    """Association store backed by the link_event_associations table."""

    _UPSERT = """
        INSERT INTO link_event_associations (
            link_id, event_id, start_date, end_date, auto_calculated, state,
            cached_metrics_json, last_synced_at, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(link_id, event_id) DO UPDATE SET
            start_date=excluded.start_date,
            end_date=excluded.end_date,
            auto_calculated=excluded.auto_calculated,
            state=excluded.state,
            cached_metrics_json=excluded.cached_metrics_json,
            last_synced_at=excluded.last_synced_at,
            updated_at=excluded.updated_at
    """

    def _params(self, row: LinkEventAssociation) -> tuple[Any, ...]:
        return (
            row.link_id,
            row.event_id,
            _iso(row.start_date),
            _iso(row.end_date),
            1 if row.auto_calculated else 0,
            row.state.value,
            row.cached_metrics.model_dump_json(),
            _iso(row.last_synced_at),
            row.created_at.isoformat(),
            row.updated_at.isoformat(),
        )

    def _map_row(self, row: dict[str, Any]) -> LinkEventAssociation:
        return LinkEventAssociation(
            link_id=row["link_id"],
            event_id=row["event_id"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            auto_calculated=bool(row["auto_calculated"]),
            state=AssociationState(row["state"]),
            cached_metrics=AggregatedMetrics.model_validate_json(row["cached_metrics_json"]),
            last_synced_at=_parse_dt(row["last_synced_at"]),
            created_at=_parse_dt(row["created_at"]) or datetime.min,
            updated_at=_parse_dt(row["updated_at"]) or datetime.min,
        )

    def get(self, link_id: str, event_id: str) -> LinkEventAssociation | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM link_event_associations WHERE link_id = ? AND event_id = ?",
                (link_id, event_id),
            ).fetchone()
            return self._map_row(row) if row else None
        finally:
            conn.close()

    def insert(self, association: LinkEventAssociation) -> LinkEventAssociation:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO link_event_associations (
                    link_id, event_id, start_date, end_date, auto_calculated, state,
                    cached_metrics_json, last_synced_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._params(association),
            )
            conn.commit()
            inserted = cursor.rowcount == 1
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        if inserted:
            return association
        existing = self.get(association.link_id, association.event_id)
        return existing if existing is not None else association

    def list_by_link(self, link_id: str) -> list[LinkEventAssociation]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM link_event_associations WHERE link_id = ? ORDER BY event_id",
                (link_id,),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            conn.close()

    def list_by_event(self, event_id: str) -> list[LinkEventAssociation]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM link_event_associations WHERE event_id = ? ORDER BY link_id",
                (event_id,),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            conn.close()

    def list_link_ids(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT DISTINCT link_id FROM link_event_associations ORDER BY link_id"
            ).fetchall()
            return [r["link_id"] for r in rows]
        finally:
            conn.close()

    def replace_link(self, link_id: str, associations: Sequence[LinkEventAssociation]) -> None:
        for row in associations:
            if row.link_id != link_id:
                raise ValueError(
                    f"Association for link {row.link_id} in batch for link {link_id}"
                )

        conn = self._get_conn()
        try:
            # Single transaction: every row lands or none does
            conn.executemany(self._UPSERT, [self._params(row) for row in associations])
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete(self, link_id: str, event_id: str) -> bool:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "DELETE FROM link_event_associations WHERE link_id = ? AND event_id = ?",
                (link_id, event_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete_by_event(self, event_id: str) -> int:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "DELETE FROM link_event_associations WHERE event_id = ?", (event_id,)
            )
            conn.commit()
            return cursor.rowcount
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


class SQLiteEventWindowRepo(_SQLiteRepo):
    """Event scheduling data. A row with no usable event_date fails validation on read."""

    def save(self, window: EventWindow) -> EventWindow:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO events (id, event_date, created_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET event_date=excluded.event_date
                """,
                (window.event_id, window.event_date.isoformat(), window.created_at.isoformat()),
            )
            conn.commit()
            return window
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete(self, event_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_event_windows(self, event_ids: Sequence[str]) -> list[EventWindow]:
        if not event_ids:
            return []
        placeholders = ",".join("?" for _ in event_ids)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM events WHERE id IN ({placeholders}) ORDER BY id",  # noqa: S608
                tuple(event_ids),
            ).fetchall()
        finally:
            conn.close()
        return [EventWindow.from_record(r) for r in rows]

    def existing_event_ids(self, event_ids: Sequence[str]) -> set[str]:
        if not event_ids:
            return set()
        placeholders = ",".join("?" for _ in event_ids)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT id FROM events WHERE id IN ({placeholders})",  # noqa: S608
                tuple(event_ids),
            ).fetchall()
        finally:
            conn.close()
        return {r["id"] for r in rows}


class SQLiteSnapshotRepo(_SQLiteRepo):
    """Latest raw snapshot per link, stored as JSON."""

    def save(self, snapshot: LinkAnalyticsSnapshot) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO link_snapshots (link_id, snapshot_json, fetched_at) VALUES (?, ?, ?)
                ON CONFLICT(link_id) DO UPDATE SET
                    snapshot_json=excluded.snapshot_json,
                    fetched_at=excluded.fetched_at
                """,
                (snapshot.link_id, snapshot.model_dump_json(), _iso(snapshot.fetched_at)),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_snapshot(self, link_id: str) -> LinkAnalyticsSnapshot | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT snapshot_json FROM link_snapshots WHERE link_id = ?", (link_id,)
            ).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return LinkAnalyticsSnapshot.model_validate(json.loads(row["snapshot_json"]))
