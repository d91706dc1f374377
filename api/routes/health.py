from __future__ import annotations

import os
import time
from pathlib import Path

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from api.deps import get_ledger
from provenance import __version__
from provenance.ledger import Ledger

router = APIRouter()


class HealthResponse(BaseModel):
    version: str
    uptime_seconds: float
    db_size_bytes: int
    total_batches: int
    anchoring: bool
    metrics: dict[str, float]


@router.get("/health", response_model=HealthResponse)
def health(request: Request, ledger: Ledger = Depends(get_ledger)) -> HealthResponse:
    started_at = float(getattr(request.app.state, "started_at", time.monotonic()))
    uptime = time.monotonic() - started_at

    db_path = Path(ledger.db.db_path)
    db_size = 0
    if db_path.exists():
        try:
            db_size = os.path.getsize(db_path)
        except OSError:
            db_size = 0

    return HealthResponse(
        version=__version__,
        uptime_seconds=uptime,
        db_size_bytes=db_size,
        total_batches=ledger.projector.count_batches(),
        anchoring=ledger.publisher.running,
        metrics=ledger.metrics.snapshot(),
    )
