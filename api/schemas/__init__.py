from api.schemas.anchors import AnchorReceiptResponse, BatchAnchorResponse, PublishResponse
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
from api.schemas.common import ErrorResponse, PaginatedResponse

__all__ = [
    "AnchorReceiptResponse",
    "AppendEventRequest",
    "AppendResponse",
    "BatchAnchorResponse",
    "BatchResponse",
    "CreateBatchRequest",
    "ErrorResponse",
    "EventResponse",
    "HistoryResponse",
    "PaginatedResponse",
    "PublishResponse",
    "SummaryResponse",
    "VerifyResponse",
]
