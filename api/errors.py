from __future__ import annotations

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from provenance.core.exceptions import ProvenanceError


class ApiError(Exception):
    """Errors raised by the API layer itself (auth, headers)."""

    def __init__(self, code: str, message: str, status: int = 400, *, retryable: bool = False, **extra: object) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.retryable = retryable
        self.extra = extra


def _body(code: str, message: str, retryable: bool, extra: dict[str, object]) -> dict[str, object]:
    return {"error": {"code": code, "message": message, "retryable": retryable, **jsonable_encoder(extra)}}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status, content=_body(exc.code, exc.message, exc.retryable, exc.extra))


async def provenance_error_handler(request: Request, exc: ProvenanceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status, content=_body(exc.code, exc.message, exc.retryable, exc.extra))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(e.get("loc", ())), "msg": str(e.get("msg", ""))} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=_body("validation.invalid", "Request body or parameters are invalid", True, {"errors": errors}),
    )
