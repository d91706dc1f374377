from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from api.errors import ApiError, api_error_handler, provenance_error_handler, request_validation_handler
from api.routes import get_api_router
from provenance import __version__
from provenance.core.config import Config
from provenance.core.exceptions import ProvenanceError

logger = logging.getLogger(__name__)


def create_app(config: Config | None = None) -> FastAPI:
    start = time.monotonic()

    # Security check: refuse to start with empty auth_token unless explicitly overridden
    if config is None:
        config = Config.load()
    auth_token = str(config.api.auth_token or "")
    insecure_ok = os.environ.get("PROVENANCE_INSECURE_OK", "").lower() in ("1", "true", "yes")

    if not auth_token and not insecure_ok:
        msg = (
            "SECURITY ERROR: API auth_token is empty\n"
            "\n"
            "Set PROVENANCE_API__AUTH_TOKEN environment variable or add to config:\n"
            "  api:\n"
            "    auth_token: your-secret-token\n"
            "\n"
            "To run without auth (dev/test only), set PROVENANCE_INSECURE_OK=1"
        )
        raise RuntimeError(msg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        from api.deps import get_ledger_for_app

        app.state.started_at = start
        app.state.config = getattr(app.state, "config", None) or config

        created_db = getattr(app.state, "db", None) is None
        ledger = get_ledger_for_app(app)

        cfg: Config = app.state.config
        if cfg.anchor.enabled:
            ledger.publisher.start()

        yield

        ledger.publisher.stop()
        if created_db:
            ledger.db.close()

    openapi_tags = [
        {"name": "health", "description": "Liveness and version metadata."},
        {"name": "batches", "description": "Batch creation, stage events, history and integrity checks."},
        {"name": "actors", "description": "Actor role grants and revocations."},
        {"name": "anchors", "description": "Anchor receipts and publishing."},
    ]

    app = FastAPI(
        title="Provenance Ledger API",
        description="Append-only, hash-chained batch provenance",
        version=__version__,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_exception_handler(ProvenanceError, provenance_error_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS: only enable if origins explicitly configured
    if config.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(get_api_router(), prefix="/api/v1")
    return app


# Module-level app for uvicorn (e.g. `uvicorn api.main:app`).
# Guarded so test imports don't crash when auth_token isn't configured.
try:
    app = create_app()
except (RuntimeError, ProvenanceError):
    app = None
