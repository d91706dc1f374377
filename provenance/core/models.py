"""provenance.core.models

Core domain models.

A stage event is immutable once accepted. A batch is the head pointer over
its chain; only the recorder moves it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from provenance.core.stages import BatchStage, Role, SubStage


class StageEvent(BaseModel):
    """One hash-chained fact recorded against a batch."""

    batch_id: str
    sequence_number: int = Field(ge=0)
    actor_id: str
    role: Role
    stage: BatchStage
    sub_stage: SubStage | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    payload_hash: str
    prev_hash: str
    ts: datetime
    hash: str

    model_config = {"frozen": True}


class Batch(BaseModel):
    """Aggregate root. ``head_hash`` is the digest of event ``sequence_number``."""

    batch_id: str
    product: str
    origin_actor_id: str
    current_stage: BatchStage
    sub_stage: SubStage | None = None
    head_hash: str
    sequence_number: int = Field(ge=0)
    created_at: datetime
    updated_at: datetime

    model_config = {"frozen": True}


class BatchHead(BaseModel):
    batch_id: str
    current_stage: BatchStage
    sub_stage: SubStage | None = None
    head_hash: str
    sequence_number: int

    model_config = {"frozen": True}


ReceiptStatus = Literal["pending", "confirmed", "unknown"]


class AnchorReceipt(BaseModel):
    """Proof that a set of batch heads was committed to an external sink."""

    anchor_id: str
    digests_covered: dict[str, str]
    root: str
    sink: str
    external_reference: str
    status: ReceiptStatus = "pending"
    committed_at: datetime
    confirmed_at: datetime | None = None

    model_config = {"frozen": True}
