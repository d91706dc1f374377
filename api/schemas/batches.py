from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from provenance.core.models import Batch, StageEvent
from provenance.core.stages import next_stages
from provenance.ledger import AppendResult, IntegrityReport


class CreateBatchRequest(BaseModel):
    product: str = Field(..., min_length=1, max_length=256)
    payload: dict[str, Any] = Field(default_factory=dict)
    batch_id: str | None = Field(default=None, description="Caller-chosen id; issued when omitted")


class AppendEventRequest(BaseModel):
    role: str = Field(..., description="Role the actor acts in for this event")
    proposed_stage: str = Field(..., description="Outer stage, sub-stage, or 'stage.sub_stage'")
    payload: dict[str, Any] = Field(default_factory=dict)
    expected_head_hash: str = Field(..., min_length=64, max_length=64)


class AppendResponse(BaseModel):
    batch_id: str
    head_hash: str
    sequence_number: int
    stage: str
    sub_stage: str | None = None

    @classmethod
    def from_result(cls, r: AppendResult) -> AppendResponse:
        return cls(
            batch_id=r.batch_id,
            head_hash=r.head_hash,
            sequence_number=r.sequence_number,
            stage=str(r.stage),
            sub_stage=str(r.sub_stage) if r.sub_stage is not None else None,
        )


class BatchResponse(BaseModel):
    batch_id: str
    product: str
    origin_actor_id: str
    current_stage: str
    sub_stage: str | None = None
    head_hash: str
    sequence_number: int
    terminal: bool
    next_stages: list[str] = Field(default_factory=list, description="Outer stages reachable from here")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_batch(cls, b: Batch, *, terminal: bool) -> BatchResponse:
        return cls(
            batch_id=b.batch_id,
            product=b.product,
            origin_actor_id=b.origin_actor_id,
            current_stage=str(b.current_stage),
            sub_stage=str(b.sub_stage) if b.sub_stage is not None else None,
            head_hash=b.head_hash,
            sequence_number=b.sequence_number,
            terminal=terminal,
            next_stages=[str(s) for s in next_stages(b.current_stage)],
            created_at=b.created_at,
            updated_at=b.updated_at,
        )


class EventResponse(BaseModel):
    sequence_number: int
    actor_id: str
    role: str
    stage: str
    sub_stage: str | None = None
    payload: dict[str, Any]
    payload_hash: str
    prev_hash: str
    ts: datetime
    hash: str

    @classmethod
    def from_event(cls, e: StageEvent) -> EventResponse:
        return cls(
            sequence_number=e.sequence_number,
            actor_id=e.actor_id,
            role=str(e.role),
            stage=str(e.stage),
            sub_stage=str(e.sub_stage) if e.sub_stage is not None else None,
            payload=dict(e.payload),
            payload_hash=e.payload_hash,
            prev_hash=e.prev_hash,
            ts=e.ts,
            hash=e.hash,
        )


class HistoryResponse(BaseModel):
    batch_id: str
    head_hash: str
    events: list[EventResponse]


class VerifyResponse(BaseModel):
    batch_id: str
    valid: bool
    broken_at_sequence: int | None = None
    head_matches: bool
    events_checked: int
    reason: str = ""

    @classmethod
    def from_report(cls, r: IntegrityReport) -> VerifyResponse:
        return cls(
            batch_id=r.batch_id,
            valid=r.valid,
            broken_at_sequence=r.broken_at_sequence,
            head_matches=r.head_matches,
            events_checked=r.events_checked,
            reason=r.reason,
        )


class SummaryResponse(BaseModel):
    counts: dict[str, int]
    total: int
