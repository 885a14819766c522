"""
storage/store.py -- SQLAlchemy-backed snapshot store for BreachTracker state.

The whole tracker state (incidents, drafts, business units, filters) is saved
as one JSON document under a fixed key. Every save overwrites the previous
snapshot in a single transaction: there are no partial writes and no locking,
because there is exactly one writer (the IncidentRepository).

Corrupt snapshots are never raised to the caller. load() logs the problem,
deletes the bad row and reports "no snapshot", so the repository falls back
to its seed data.

Usage:
    store = SnapshotStore()                                  # SQLite default
    store = SnapshotStore("sqlite:///:memory:", key="test")  # tests
    raw = store.load()        # dict or None
    store.save(state_dict)
    store.clear()
    store.close()
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from core.models import BUSINESS_UNITS

logger = logging.getLogger("breachtracker.storage")

_DEFAULT_KEY = "breach-tracker-state-v1"

_FILTER_KEYS = ("severity", "unit", "status", "search")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_snapshots = Table(
    "snapshots",
    metadata,
    Column("key", String(100), primary_key=True),
    Column("data", Text, nullable=False),  # JSON document
    Column("saved_at", String(32), nullable=False),  # ISO 8601
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so a crash mid-write never truncates the last snapshot."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Shape repair
# ---------------------------------------------------------------------------


def default_filters() -> dict:
    return {"severity": "ALL", "unit": "ALL", "status": "ALL", "search": ""}


def normalize_snapshot(raw: dict, default_units: Optional[list[str]] = None) -> dict:
    """Return a well-shaped copy of a decoded snapshot.

    Collections that are missing or of the wrong type become empty lists; an
    empty or missing business unit list becomes the canonical list. Filters
    keep only known keys, with defaults for the rest.
    """
    units = raw.get("business_units")
    if not isinstance(units, list) or not units:
        units = list(default_units if default_units is not None else BUSINESS_UNITS)
    filters = default_filters()
    raw_filters = raw.get("filters")
    if isinstance(raw_filters, dict):
        filters.update({k: v for k, v in raw_filters.items() if k in _FILTER_KEYS and isinstance(v, str)})
    return {
        "incidents": raw["incidents"] if isinstance(raw.get("incidents"), list) else [],
        "drafts": raw["drafts"] if isinstance(raw.get("drafts"), list) else [],
        "business_units": [u for u in units if isinstance(u, str)],
        "filters": filters,
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SnapshotStore:
    def __init__(self, db_url: Optional[str] = None, key: str = _DEFAULT_KEY) -> None:
        if db_url is None:
            from core.config import get_settings

            db_url = get_settings().state_db_url
        self.key = key
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # The API serves sync routes from a thread pool; the repository
            # serializes access, so sharing the connection is safe.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def load(self) -> Optional[dict]:
        """Return the decoded snapshot, or None when absent or corrupt.

        A corrupt snapshot (invalid JSON, or JSON that is not an object) is
        logged and cleared so the next start does not trip over it again.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_snapshots.select().where(_snapshots.c.key == self.key)).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row.data)
        except ValueError as exc:
            logger.warning("Corrupt saved state under %r, resetting: %s", self.key, exc)
            self.clear()
            return None
        if not isinstance(data, dict):
            logger.warning("Saved state under %r is not an object, resetting", self.key)
            self.clear()
            return None
        return data

    def save(self, state: dict) -> None:
        """Overwrite the snapshot with state (must be JSON-serializable)."""
        self.save_raw(json.dumps(state))

    def save_raw(self, payload: str) -> None:
        """Overwrite the snapshot with an already-serialized document, unvalidated."""
        with self.engine.connect() as conn:
            conn.execute(_snapshots.delete().where(_snapshots.c.key == self.key))
            conn.execute(_snapshots.insert().values(key=self.key, data=payload, saved_at=_now_iso()))
            conn.commit()

    def clear(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(_snapshots.delete().where(_snapshots.c.key == self.key))
            conn.commit()

    def saved_at(self) -> Optional[str]:
        """Return when the snapshot was last written, or None if there is none."""
        with self.engine.connect() as conn:
            row = conn.execute(_snapshots.select().where(_snapshots.c.key == self.key)).fetchone()
        return row.saved_at if row is not None else None

    def close(self) -> None:
        self.engine.dispose()
