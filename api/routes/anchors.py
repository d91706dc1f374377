from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query

from api.auth import AuthDep
from api.deps import get_ledger
from api.schemas.anchors import AnchorReceiptResponse, PublishResponse
from api.schemas.common import PaginatedResponse, error_responses
from provenance.ledger import Ledger

router = APIRouter(prefix="/anchors", dependencies=[AuthDep])


@router.get("", response_model=PaginatedResponse[AnchorReceiptResponse])
def list_anchors(
    status: Literal["pending", "confirmed", "unknown"] | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ledger: Ledger = Depends(get_ledger),
) -> PaginatedResponse[AnchorReceiptResponse]:
    receipts = ledger.publisher.list_receipts(status=status, limit=limit, offset=offset)
    return PaginatedResponse[AnchorReceiptResponse](
        items=[AnchorReceiptResponse.from_receipt(r) for r in receipts],
        limit=limit,
        offset=offset,
        total=ledger.publisher.receipts.count(status=status),
    )


@router.post("/publish", response_model=PublishResponse, responses=error_responses(503))
def publish(ledger: Ledger = Depends(get_ledger)) -> PublishResponse:
    receipt = ledger.publisher.publish_once()
    if receipt is None:
        return PublishResponse(published=False)
    return PublishResponse(published=True, receipt=AnchorReceiptResponse.from_receipt(receipt))


@router.get("/{anchor_id}", response_model=AnchorReceiptResponse, responses=error_responses(404))
def get_anchor(anchor_id: str, ledger: Ledger = Depends(get_ledger)) -> AnchorReceiptResponse:
    return AnchorReceiptResponse.from_receipt(ledger.publisher.get_receipt(anchor_id))


@router.post("/{anchor_id}/refresh", response_model=AnchorReceiptResponse, responses=error_responses(404, 503))
def refresh_anchor(anchor_id: str, ledger: Ledger = Depends(get_ledger)) -> AnchorReceiptResponse:
    return AnchorReceiptResponse.from_receipt(ledger.publisher.refresh(anchor_id))
