"""provenance.core.logs

Logging setup for the CLI and the API server.

Components log event names (`stage_appended`, `anchor_commit_failed`) with
structured fields in `extra`. Plain output appends those fields as
key=value; JSON output writes one object per line.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

from provenance.core.config import LoggingConfig

# Attributes every LogRecord has; anything else came in via `extra`.
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        out.update(record_fields(record))
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return json.dumps(out, default=str, sort_keys=False)


class KeyValueFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = record_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def configure_logging(cfg: LoggingConfig, *, stream: TextIO | None = None) -> logging.Handler:
    """Install one handler on the root logger. Idempotent."""

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if cfg.json_output else KeyValueFormatter())
    handler.set_name("provenance")

    root = logging.getLogger()
    for h in list(root.handlers):
        if h.get_name() == "provenance":
            root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(str(cfg.level).upper())
    return handler
