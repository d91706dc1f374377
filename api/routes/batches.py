from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query

from api.auth import ActorDep, AuthDep
from api.deps import get_ledger
from api.schemas.anchors import BatchAnchorResponse
from api.schemas.batches import (
    AppendEventRequest,
    AppendResponse,
    BatchResponse,
    CreateBatchRequest,
    EventResponse,
    HistoryResponse,
    SummaryResponse,
    VerifyResponse,
)
from api.schemas.common import PaginatedResponse, error_responses
from provenance.core.stages import BatchStage, is_terminal
from provenance.ledger import BatchFilter, Ledger

router = APIRouter(prefix="/batches", dependencies=[AuthDep])


def _filter(product: str | None, origin_actor_id: str | None, stage: BatchStage | None) -> BatchFilter:
    return BatchFilter(product=product, origin_actor_id=origin_actor_id, stage=stage)


@router.post("", response_model=AppendResponse, status_code=201, responses=error_responses(403, 409, 422))
def create_batch(
    req: CreateBatchRequest,
    actor_id: str = ActorDep,
    ledger: Ledger = Depends(get_ledger),
) -> AppendResponse:
    result = ledger.recorder.create_batch(
        actor_id=actor_id,
        product=req.product,
        payload=req.payload,
        batch_id=req.batch_id,
    )
    return AppendResponse.from_result(result)


@router.post(
    "/{batch_id}/events",
    response_model=AppendResponse,
    status_code=201,
    responses=error_responses(403, 404, 409, 422, 503),
)
def append_event(
    req: AppendEventRequest,
    batch_id: str = Path(..., description="Batch id"),
    actor_id: str = ActorDep,
    ledger: Ledger = Depends(get_ledger),
) -> AppendResponse:
    result = ledger.recorder.append(
        batch_id,
        actor_id=actor_id,
        role=req.role,
        proposed_stage=req.proposed_stage,
        payload=req.payload,
        expected_head_hash=req.expected_head_hash,
    )
    return AppendResponse.from_result(result)


@router.get("", response_model=PaginatedResponse[BatchResponse])
def list_batches(
    product: str | None = Query(default=None),
    origin_actor_id: str | None = Query(default=None),
    stage: BatchStage | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ledger: Ledger = Depends(get_ledger),
) -> PaginatedResponse[BatchResponse]:
    flt = _filter(product, origin_actor_id, stage)
    batches = ledger.projector.list_batches(flt, limit=limit, offset=offset)
    return PaginatedResponse[BatchResponse](
        items=[BatchResponse.from_batch(b, terminal=is_terminal(b.current_stage)) for b in batches],
        limit=limit,
        offset=offset,
        total=ledger.projector.count_batches(flt),
    )


@router.get("/summary", response_model=SummaryResponse)
def summary(
    product: str | None = Query(default=None),
    origin_actor_id: str | None = Query(default=None),
    stage: BatchStage | None = Query(default=None),
    ledger: Ledger = Depends(get_ledger),
) -> SummaryResponse:
    s = ledger.projector.summaries(_filter(product, origin_actor_id, stage))
    return SummaryResponse(counts={str(k): v for k, v in s.counts.items()}, total=s.total)


@router.get("/{batch_id}", response_model=BatchResponse, responses=error_responses(404))
def get_batch(batch_id: str, ledger: Ledger = Depends(get_ledger)) -> BatchResponse:
    b = ledger.projector.get_batch(batch_id)
    return BatchResponse.from_batch(b, terminal=is_terminal(b.current_stage))


@router.get("/{batch_id}/history", response_model=HistoryResponse, responses=error_responses(404))
def get_history(
    batch_id: str,
    page_size: int | None = Query(default=None, ge=1, le=1000),
    ledger: Ledger = Depends(get_ledger),
) -> HistoryResponse:
    history = ledger.projector.history(batch_id, page_size=page_size)
    events = [EventResponse.from_event(e) for e in history]
    return HistoryResponse(
        batch_id=batch_id,
        head_hash=events[-1].hash if events else ledger.projector.get_head(batch_id).head_hash,
        events=events,
    )


@router.get("/{batch_id}/verify", response_model=VerifyResponse, responses=error_responses(404))
def verify_batch(batch_id: str, ledger: Ledger = Depends(get_ledger)) -> VerifyResponse:
    return VerifyResponse.from_report(ledger.projector.verify_integrity(batch_id))


@router.get("/{batch_id}/anchor", response_model=BatchAnchorResponse, responses=error_responses(404))
def get_batch_anchor(batch_id: str, ledger: Ledger = Depends(get_ledger)) -> BatchAnchorResponse:
    return BatchAnchorResponse.from_status(ledger.projector.anchor_status(batch_id))
