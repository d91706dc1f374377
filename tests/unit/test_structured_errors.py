from __future__ import annotations

import pytest

from api.errors import ApiError
from provenance.core.exceptions import LockTimeoutError, TransitionNotAllowedError
from tests.unit._api_test_client import make_client


@pytest.mark.anyio
async def test_api_error_handler_json_shape(api_app):
    @api_app.get("/api/v1/_test/error")
    def _raise() -> None:
        raise ApiError(code="test.error", message="boom", status=418, detail="extra")

    async with make_client(api_app) as ac:
        r = await ac.get("/api/v1/_test/error")
        assert r.status_code == 418
        assert r.json() == {"error": {"code": "test.error", "message": "boom", "retryable": False, "detail": "extra"}}


@pytest.mark.anyio
async def test_ledger_errors_map_to_status_and_retryable(api_app):
    @api_app.get("/api/v1/_test/busy")
    def _busy() -> None:
        raise LockTimeoutError("busy", batch_id="B1")

    @api_app.get("/api/v1/_test/forbidden")
    def _forbidden() -> None:
        raise TransitionNotAllowedError("no", batch_id="B1")

    async with make_client(api_app) as ac:
        r = await ac.get("/api/v1/_test/busy")
        assert r.status_code == 503
        assert r.json()["error"] == {
            "code": "concurrency.lock_timeout",
            "message": "busy",
            "retryable": True,
            "batch_id": "B1",
        }

        r = await ac.get("/api/v1/_test/forbidden")
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "auth.transition_not_allowed"
        assert r.json()["error"]["retryable"] is False
