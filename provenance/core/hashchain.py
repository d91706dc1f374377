"""provenance.core.hashchain

Pure functions over the per-batch hash chain.

    digest = sha256(canonical_json([
        prev_hash, batch_id, sequence_number, actor_id, role,
        stage, sub_stage, ts, payload_hash,
    ]))

Fields are encoded as a JSON array, so no field value can spill into the
next one.

The event's own hash is never an input. Everything else is, so any edit to a
stored event (including its payload, via payload_hash) breaks the chain at that
event.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from provenance import GENESIS_HASH
from provenance.core.models import StageEvent
from provenance.core.stages import BatchStage, Role, SubStage
from provenance.core.time import dt_to_iso


def canonical_json(data: Any) -> str:
    """Canonical JSON serialization used for hashing."""

    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def payload_hash(payload: dict[str, Any]) -> str:
    """SHA-256 hash of canonical payload JSON."""

    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def compute_digest(
    *,
    prev_hash: str,
    batch_id: str,
    sequence_number: int,
    actor_id: str,
    role: Role,
    stage: BatchStage,
    sub_stage: SubStage | None,
    ts: datetime,
    payload_hash: str,
) -> str:
    fields = [
        prev_hash,
        batch_id,
        int(sequence_number),
        actor_id,
        str(role),
        str(stage),
        str(sub_stage) if sub_stage is not None else None,
        dt_to_iso(ts),
        payload_hash,
    ]
    return hashlib.sha256(canonical_json(fields).encode("utf-8")).hexdigest()


def digest(event: StageEvent) -> str:
    """Digest of a stored or proposed event."""

    return compute_digest(
        prev_hash=event.prev_hash,
        batch_id=event.batch_id,
        sequence_number=event.sequence_number,
        actor_id=event.actor_id,
        role=event.role,
        stage=event.stage,
        sub_stage=event.sub_stage,
        ts=event.ts,
        payload_hash=event.payload_hash,
    )


@dataclass(frozen=True, slots=True)
class ChainValidation:
    valid: bool
    broken_at_sequence: int | None = None
    reason: str = ""
    head_hash: str | None = None


def validate_chain(genesis: str, events: Iterable[StageEvent]) -> ChainValidation:
    """Walk a batch's events in order and report the first break.

    A break is any of:
    - a sequence number that is not the expected next one (gap, reorder, duplicate)
    - a prev_hash that does not equal the previous digest
    - a payload_hash that does not match the payload
    - a stored hash that does not match the recomputed digest
    """

    prev = genesis
    expected_seq = 0
    for ev in events:
        if ev.sequence_number != expected_seq:
            return ChainValidation(
                valid=False,
                broken_at_sequence=ev.sequence_number,
                reason=f"expected sequence {expected_seq}, got {ev.sequence_number}",
            )
        if ev.prev_hash != prev:
            return ChainValidation(valid=False, broken_at_sequence=ev.sequence_number, reason="prev_hash mismatch")
        if payload_hash(ev.payload) != ev.payload_hash:
            return ChainValidation(valid=False, broken_at_sequence=ev.sequence_number, reason="payload_hash mismatch")
        h = digest(ev)
        if h != ev.hash:
            return ChainValidation(valid=False, broken_at_sequence=ev.sequence_number, reason="hash mismatch")
        prev = h
        expected_seq += 1

    return ChainValidation(valid=True, head_hash=prev)


def recompute_head(genesis: str, events: Iterable[StageEvent]) -> str:
    """Replay events and return the resulting head digest.

    Unlike ``validate_chain`` this trusts nothing stored except the payloads:
    each digest is chained from the previous recomputed one.
    """

    prev = genesis
    for ev in events:
        prev = compute_digest(
            prev_hash=prev,
            batch_id=ev.batch_id,
            sequence_number=ev.sequence_number,
            actor_id=ev.actor_id,
            role=ev.role,
            stage=ev.stage,
            sub_stage=ev.sub_stage,
            ts=ev.ts,
            payload_hash=payload_hash(ev.payload),
        )
    return prev


__all__ = [
    "GENESIS_HASH",
    "ChainValidation",
    "canonical_json",
    "compute_digest",
    "digest",
    "payload_hash",
    "recompute_head",
    "validate_chain",
]
