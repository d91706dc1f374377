from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from provenance.core.database import Database
from provenance.core.exceptions import StoreError


def _insert_event(db: Database, seq: int = 0) -> None:
    with db.transaction() as conn:
        conn.execute(
            """
            INSERT OR IGNORE INTO batches (
                batch_id, product, origin_actor_id, current_stage, sub_stage,
                head_hash, sequence_number, created_at, updated_at
            ) VALUES ('B1', 'Wheat Flour', 'F1', 'created', NULL, 'h1', 0, 't', 't')
            """
        )
        conn.execute(
            """
            INSERT INTO stage_events (
                batch_id, sequence_number, actor_id, role, stage, sub_stage,
                payload, payload_hash, prev_hash, ts, hash
            ) VALUES ('B1', ?, 'F1', 'farmer', 'created', NULL, '{}', 'p', 'h0', '2026-01-01T00:00:00+00:00', ?)
            """,
            (seq, f"h{seq + 1}"),
        )


def test_schema_is_created_and_reopenable(temp_dir: Path) -> None:
    path = temp_dir / "nested" / "ledger.db"
    db = Database(path)
    db.close()
    assert path.exists()

    db = Database(path)
    try:
        tables = {r[0] for r in db.fetchall("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {"batches", "stage_events", "actors", "actor_roles", "anchor_receipts", "audit_log"} <= tables
        assert db.scalar("PRAGMA journal_mode") == "wal"
    finally:
        db.close()


def test_stage_events_are_append_only(db: Database) -> None:
    _insert_event(db)
    with pytest.raises(StoreError):
        with db.transaction() as conn:
            conn.execute("UPDATE stage_events SET actor_id = 'X'")
    with pytest.raises(StoreError):
        with db.transaction() as conn:
            conn.execute("DELETE FROM stage_events")
    assert db.scalar("SELECT actor_id FROM stage_events") == "F1"


def test_duplicate_sequence_rejected(db: Database) -> None:
    _insert_event(db)
    with pytest.raises(StoreError):
        _insert_event(db)


def test_transaction_rolls_back_on_error(db: Database) -> None:
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO audit_log (ts, action, actor, component, details) VALUES ('t', 'a', NULL, 'c', '{}')"
            )
            raise RuntimeError("boom")
    assert db.scalar("SELECT COUNT(1) FROM audit_log", default=0) == 0


def test_scalar_default(db: Database) -> None:
    assert db.scalar("SELECT MAX(sequence_number) FROM stage_events", default=-1) == -1
    assert isinstance(db.fetchone("SELECT 1"), sqlite3.Row)


def test_events_require_their_batch(db: Database) -> None:
    with pytest.raises(StoreError):
        with db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO stage_events (
                    batch_id, sequence_number, actor_id, role, stage, sub_stage,
                    payload, payload_hash, prev_hash, ts, hash
                ) VALUES ('GHOST', 0, 'F1', 'farmer', 'created', NULL, '{}', 'p', 'h0', 't', 'hx')
                """
            )
