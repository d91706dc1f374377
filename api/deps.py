from __future__ import annotations

import threading
from functools import lru_cache
from pathlib import Path

from fastapi import FastAPI, Request

from provenance.core.config import Config
from provenance.core.database import Database
from provenance.ledger import Ledger

_STATE_LOCK = threading.Lock()


@lru_cache
def _repo_root() -> Path:
    # Assume running from repo root (uvicorn started there). Fallback to parent of this file.
    here = Path(__file__).resolve()
    for p in [Path.cwd(), here.parent.parent]:
        if (p / "config" / "default.yaml").exists():
            return p
    return Path.cwd()


@lru_cache
def _load_config() -> Config:
    return Config.load(_repo_root())


def _config_for_app(app: FastAPI) -> Config:
    cfg = getattr(app.state, "config", None)
    return cfg or _load_config()


def get_ledger_for_app(app: FastAPI) -> Ledger:
    """The app's ledger, built once over ``app.state.db`` (opened from config if unset)."""

    with _STATE_LOCK:
        db = getattr(app.state, "db", None)
        if db is None:
            db = Database(_config_for_app(app).db_path)
            app.state.db = db
        ledger = getattr(app.state, "ledger", None)
        if ledger is None or ledger.db is not db:
            ledger = Ledger.from_config(db, _config_for_app(app))
            app.state.ledger = ledger
        return ledger


def get_config(request: Request) -> Config:
    return _config_for_app(request.app)


def get_ledger(request: Request) -> Ledger:
    return get_ledger_for_app(request.app)
