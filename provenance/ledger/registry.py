"""provenance.ledger.registry

Batch registry: the set of batch aggregates and their event logs.

Owns the `batches` head-pointer index and the `stage_events` log. It issues
batch ids and persists what the recorder hands it; it does not decide
whether a write is allowed.

The head update is a compare-and-swap on (head_hash, sequence_number). The
recorder's per-batch lock already serializes appends, so a lost swap here
means something outside this process moved the head.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

from provenance.core.database import Database
from provenance.core.exceptions import BatchExistsError, BatchNotFoundError, StaleHeadError
from provenance.core.hashchain import canonical_json
from provenance.core.models import Batch, BatchHead, StageEvent
from provenance.core.stages import BatchStage, Role, SubStage
from provenance.core.time import dt_to_iso, parse_dt


@dataclass(frozen=True, slots=True)
class BatchFilter:
    product: str | None = None
    origin_actor_id: str | None = None
    stage: BatchStage | None = None

    def where(self) -> tuple[str, list[Any]]:
        q = " WHERE 1=1"
        params: list[Any] = []
        if self.product is not None:
            q += " AND product = ?"
            params.append(self.product)
        if self.origin_actor_id is not None:
            q += " AND origin_actor_id = ?"
            params.append(self.origin_actor_id)
        if self.stage is not None:
            q += " AND current_stage = ?"
            params.append(str(self.stage))
        return q, params


def new_batch_id() -> str:
    return f"BATCH-{uuid.uuid4().hex[:12].upper()}"


def _row_to_batch(row: sqlite3.Row) -> Batch:
    return Batch(
        batch_id=str(row["batch_id"]),
        product=str(row["product"]),
        origin_actor_id=str(row["origin_actor_id"]),
        current_stage=BatchStage(str(row["current_stage"])),
        sub_stage=SubStage(str(row["sub_stage"])) if row["sub_stage"] else None,
        head_hash=str(row["head_hash"]),
        sequence_number=int(row["sequence_number"]),
        created_at=parse_dt(str(row["created_at"])),
        updated_at=parse_dt(str(row["updated_at"])),
    )


def _row_to_event(row: sqlite3.Row) -> StageEvent:
    return StageEvent(
        batch_id=str(row["batch_id"]),
        sequence_number=int(row["sequence_number"]),
        actor_id=str(row["actor_id"]),
        role=Role(str(row["role"])),
        stage=BatchStage(str(row["stage"])),
        sub_stage=SubStage(str(row["sub_stage"])) if row["sub_stage"] else None,
        payload=json.loads(str(row["payload"])),
        payload_hash=str(row["payload_hash"]),
        prev_hash=str(row["prev_hash"]),
        ts=parse_dt(str(row["ts"])),
        hash=str(row["hash"]),
    )


def _insert_event(conn: sqlite3.Connection, event: StageEvent) -> None:
    conn.execute(
        """
        INSERT INTO stage_events (
            batch_id, sequence_number, actor_id, role, stage, sub_stage,
            payload, payload_hash, prev_hash, ts, hash
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event.batch_id,
            event.sequence_number,
            event.actor_id,
            str(event.role),
            str(event.stage),
            str(event.sub_stage) if event.sub_stage is not None else None,
            canonical_json(event.payload),
            event.payload_hash,
            event.prev_hash,
            dt_to_iso(event.ts),
            event.hash,
        ),
    )


class BatchRegistry:
    def __init__(self, db: Database) -> None:
        self.db = db

    # -----------------
    # Writes (called by the recorder only)
    # -----------------

    def insert_genesis(self, *, product: str, genesis: StageEvent) -> Batch:
        """Create the batch row and its sequence-0 event in one transaction."""

        ts = dt_to_iso(genesis.ts)
        with self.db.transaction() as conn:
            exists = conn.execute("SELECT 1 FROM batches WHERE batch_id = ?", (genesis.batch_id,)).fetchone()
            if exists is not None:
                raise BatchExistsError(f"Batch already exists: {genesis.batch_id}", batch_id=genesis.batch_id)
            conn.execute(
                """
                INSERT INTO batches (
                    batch_id, product, origin_actor_id, current_stage, sub_stage,
                    head_hash, sequence_number, created_at, updated_at
                ) VALUES (?, ?, ?, ?, NULL, ?, 0, ?, ?)
                """,
                (genesis.batch_id, product, genesis.actor_id, str(genesis.stage), genesis.hash, ts, ts),
            )
            _insert_event(conn, genesis)
        return self.get(genesis.batch_id)

    def commit_append(
        self,
        event: StageEvent,
        *,
        expected_head_hash: str,
        current_stage: BatchStage,
        sub_stage: SubStage | None,
    ) -> None:
        """Append ``event`` and swap the head pointer, atomically.

        Raises:
            StaleHeadError: the head is no longer ``expected_head_hash``.
        """

        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE batches
                SET head_hash = ?, sequence_number = ?, current_stage = ?, sub_stage = ?, updated_at = ?
                WHERE batch_id = ? AND head_hash = ? AND sequence_number = ?
                """,
                (
                    event.hash,
                    event.sequence_number,
                    str(current_stage),
                    str(sub_stage) if sub_stage is not None else None,
                    dt_to_iso(event.ts),
                    event.batch_id,
                    expected_head_hash,
                    event.sequence_number - 1,
                ),
            )
            if int(cur.rowcount) != 1:
                raise StaleHeadError(
                    f"Head of {event.batch_id} moved during append",
                    batch_id=event.batch_id,
                )
            _insert_event(conn, event)

    # -----------------
    # Reads
    # -----------------

    def find(self, batch_id: str) -> Batch | None:
        row = self.db.fetchone("SELECT * FROM batches WHERE batch_id = ?", (batch_id,))
        return None if row is None else _row_to_batch(row)

    def get(self, batch_id: str) -> Batch:
        batch = self.find(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch not found: {batch_id}", batch_id=batch_id)
        return batch

    def exists(self, batch_id: str) -> bool:
        return self.db.fetchone("SELECT 1 FROM batches WHERE batch_id = ?", (batch_id,)) is not None

    def head(self, batch_id: str) -> BatchHead:
        b = self.get(batch_id)
        return BatchHead(
            batch_id=b.batch_id,
            current_stage=b.current_stage,
            sub_stage=b.sub_stage,
            head_hash=b.head_hash,
            sequence_number=b.sequence_number,
        )

    def events(
        self,
        batch_id: str,
        *,
        after_sequence: int = -1,
        through_sequence: int | None = None,
        limit: int | None = None,
    ) -> list[StageEvent]:
        q = "SELECT * FROM stage_events WHERE batch_id = ? AND sequence_number > ?"
        params: list[Any] = [batch_id, int(after_sequence)]
        if through_sequence is not None:
            q += " AND sequence_number <= ?"
            params.append(int(through_sequence))
        q += " ORDER BY sequence_number ASC"
        if limit is not None:
            q += " LIMIT ?"
            params.append(int(limit))
        return [_row_to_event(r) for r in self.db.fetchall(q, tuple(params))]

    def snapshot(self, batch_id: str) -> tuple[Batch, list[StageEvent]]:
        """The batch row and exactly the events its head covers."""

        with self.db.snapshot():
            batch = self.get(batch_id)
            events = self.events(batch_id, through_sequence=batch.sequence_number)
        return batch, events

    def list_batches(self, flt: BatchFilter | None = None, *, limit: int = 100, offset: int = 0) -> list[Batch]:
        where, params = (flt or BatchFilter()).where()
        rows = self.db.fetchall(
            "SELECT * FROM batches" + where + " ORDER BY created_at DESC, batch_id ASC LIMIT ? OFFSET ?",
            (*params, int(limit), int(offset)),
        )
        return [_row_to_batch(r) for r in rows]

    def count(self, flt: BatchFilter | None = None) -> int:
        where, params = (flt or BatchFilter()).where()
        return int(self.db.scalar("SELECT COUNT(1) FROM batches" + where, tuple(params), default=0))

    def stage_counts(self, flt: BatchFilter | None = None) -> dict[BatchStage, int]:
        where, params = (flt or BatchFilter()).where()
        rows = self.db.fetchall(
            "SELECT current_stage, COUNT(1) FROM batches" + where + " GROUP BY current_stage",
            tuple(params),
        )
        return {BatchStage(str(r[0])): int(r[1]) for r in rows}

    def unanchored_heads(self, *, limit: int = 1000) -> dict[str, str]:
        """Heads that changed since they were last anchored (or never were)."""

        rows = self.db.fetchall(
            """
            SELECT b.batch_id, b.head_hash
            FROM batches b
            LEFT JOIN anchored_heads a ON a.batch_id = b.batch_id
            WHERE a.head_hash IS NULL OR a.head_hash != b.head_hash
            ORDER BY b.updated_at ASC, b.batch_id ASC
            LIMIT ?
            """,
            (int(limit),),
        )
        return {str(r[0]): str(r[1]) for r in rows}
