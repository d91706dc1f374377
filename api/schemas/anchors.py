from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from provenance.core.models import AnchorReceipt
from provenance.ledger.projector import AnchorStatus


class AnchorReceiptResponse(BaseModel):
    anchor_id: str
    digests_covered: dict[str, str]
    root: str
    sink: str
    external_reference: str
    status: str
    committed_at: datetime
    confirmed_at: datetime | None = None

    @classmethod
    def from_receipt(cls, r: AnchorReceipt) -> AnchorReceiptResponse:
        return cls(
            anchor_id=r.anchor_id,
            digests_covered=dict(r.digests_covered),
            root=r.root,
            sink=r.sink,
            external_reference=r.external_reference,
            status=r.status,
            committed_at=r.committed_at,
            confirmed_at=r.confirmed_at,
        )


class PublishResponse(BaseModel):
    published: bool
    receipt: AnchorReceiptResponse | None = None


class BatchAnchorResponse(BaseModel):
    batch_id: str
    head_hash: str
    anchored_head_hash: str | None = None
    head_anchored: bool
    receipt: AnchorReceiptResponse | None = None

    @classmethod
    def from_status(cls, s: AnchorStatus) -> BatchAnchorResponse:
        return cls(
            batch_id=s.batch_id,
            head_hash=s.head_hash,
            anchored_head_hash=s.anchored_head_hash,
            head_anchored=s.head_anchored,
            receipt=AnchorReceiptResponse.from_receipt(s.receipt) if s.receipt is not None else None,
        )
