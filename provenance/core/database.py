"""provenance.core.database

The journal: one append-only event log per batch, a head-pointer index keyed
by batch id, and the anchor receipt log.

SQLite in WAL mode. One connection shared across threads; every statement
runs under the connection lock, and every write runs in a single transaction.
A reader therefore sees either the state before a write or after it, never a
half-written event.

The connection lock is an I/O mutex held for the duration of one transaction.
Ordering between appends to the same batch is decided earlier, by the
per-batch lock in the recorder.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from provenance.core.exceptions import StoreError

SCHEMA_VERSION = 1

SCHEMA = """
-- ============================================================
-- Schema Version Tracking
-- ============================================================
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT (datetime('now'))
);

-- ============================================================
-- Batches (head-pointer index)
-- ============================================================
CREATE TABLE IF NOT EXISTS batches (
    batch_id TEXT PRIMARY KEY,
    product TEXT NOT NULL,
    origin_actor_id TEXT NOT NULL,
    current_stage TEXT NOT NULL,
    sub_stage TEXT,
    head_hash TEXT NOT NULL,
    sequence_number INTEGER NOT NULL CHECK(sequence_number >= 0),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_batches_stage ON batches(current_stage);
CREATE INDEX IF NOT EXISTS idx_batches_product ON batches(product);
CREATE INDEX IF NOT EXISTS idx_batches_origin ON batches(origin_actor_id);

-- ============================================================
-- Stage Events (per-batch hash chain, append-only)
-- ============================================================
CREATE TABLE IF NOT EXISTS stage_events (
    batch_id TEXT NOT NULL REFERENCES batches(batch_id),
    sequence_number INTEGER NOT NULL CHECK(sequence_number >= 0),
    actor_id TEXT NOT NULL,
    role TEXT NOT NULL,
    stage TEXT NOT NULL,
    sub_stage TEXT,
    payload TEXT NOT NULL,
    payload_hash TEXT NOT NULL,
    prev_hash TEXT NOT NULL,
    ts TEXT NOT NULL,
    hash TEXT NOT NULL UNIQUE,
    PRIMARY KEY (batch_id, sequence_number)
);

CREATE INDEX IF NOT EXISTS idx_stage_events_actor ON stage_events(actor_id);

CREATE TRIGGER IF NOT EXISTS stage_events_no_update
BEFORE UPDATE ON stage_events
BEGIN
    SELECT RAISE(ABORT, 'stage_events is append-only');
END;

CREATE TRIGGER IF NOT EXISTS stage_events_no_delete
BEFORE DELETE ON stage_events
BEGIN
    SELECT RAISE(ABORT, 'stage_events is append-only');
END;

-- ============================================================
-- Identity Registry
-- ============================================================
CREATE TABLE IF NOT EXISTS actors (
    actor_id TEXT PRIMARY KEY,
    display_name TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS actor_roles (
    actor_id TEXT NOT NULL REFERENCES actors(actor_id),
    role TEXT NOT NULL CHECK(role IN (
        'farmer', 'facility', 'laboratory', 'distributor', 'regulator', 'consumer'
    )),
    granted_at TEXT DEFAULT (datetime('now')),
    granted_by TEXT,
    PRIMARY KEY (actor_id, role)
);

-- ============================================================
-- Anchoring
-- ============================================================
CREATE TABLE IF NOT EXISTS anchor_receipts (
    anchor_id TEXT PRIMARY KEY,
    digests_covered TEXT NOT NULL,
    root TEXT NOT NULL,
    sink TEXT NOT NULL,
    external_reference TEXT NOT NULL,
    status TEXT DEFAULT 'pending' CHECK(status IN ('pending', 'confirmed', 'unknown')),
    committed_at TEXT NOT NULL,
    confirmed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_anchor_receipts_committed ON anchor_receipts(committed_at);

-- Latest anchored head per batch. Heads here that differ from batches.head_hash
-- are due for the next anchor run.
CREATE TABLE IF NOT EXISTS anchored_heads (
    batch_id TEXT PRIMARY KEY REFERENCES batches(batch_id),
    head_hash TEXT NOT NULL,
    anchor_id TEXT NOT NULL REFERENCES anchor_receipts(anchor_id),
    anchored_at TEXT NOT NULL
);

-- Signed checkpoints (local anchor sink)
CREATE TABLE IF NOT EXISTS checkpoints (
    reference TEXT PRIMARY KEY,
    root TEXT NOT NULL,
    digest_set TEXT NOT NULL,
    signature TEXT NOT NULL,
    public_key TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

-- Off-chain EAS attestations (eas anchor sink)
CREATE TABLE IF NOT EXISTS eas_attestations (
    uid TEXT PRIMARY KEY,
    root TEXT NOT NULL,
    attester TEXT NOT NULL,
    attestation TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

-- ============================================================
-- Audit Log
-- ============================================================
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ts TEXT DEFAULT (datetime('now')),
    action TEXT NOT NULL,
    actor TEXT,
    component TEXT,
    details TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_ts ON audit_log(ts);
CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);
"""


@dataclass
class Database:
    """SQLite store for batches, their event chains and anchor receipts."""

    db_path: Path

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.conn:
            self.conn.executescript(SCHEMA)
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self.conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of writes atomically. Rolls back on any exception."""

        with self._lock:
            try:
                with self.conn:
                    yield self.conn
            except sqlite3.IntegrityError as e:
                raise StoreError(str(e)) from e

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """Group reads so no write from another thread lands between them."""

        with self._lock:
            yield self.conn

    def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def scalar(self, sql: str, params: tuple[Any, ...] = (), default: Any = None) -> Any:
        row = self.fetchone(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]
