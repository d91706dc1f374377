from __future__ import annotations

import io
import json
import logging

import pytest

from provenance.core.config import LoggingConfig
from provenance.core.logs import configure_logging


@pytest.fixture()
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
    root.setLevel(level)


def test_json_output_carries_extra_fields(restore_root_logger) -> None:
    buf = io.StringIO()
    configure_logging(LoggingConfig(level="DEBUG", json_output=True), stream=buf)

    logging.getLogger("provenance.test").info("stage_appended", extra={"batch_id": "B001", "sequence_number": 3})

    line = json.loads(buf.getvalue().strip().splitlines()[-1])
    assert line["event"] == "stage_appended"
    assert line["level"] == "INFO"
    assert line["logger"] == "provenance.test"
    assert line["batch_id"] == "B001"
    assert line["sequence_number"] == 3
    assert "ts" in line


def test_plain_output_appends_key_values(restore_root_logger) -> None:
    buf = io.StringIO()
    configure_logging(LoggingConfig(level="INFO"), stream=buf)

    logging.getLogger("provenance.test").warning("anchor_commit_retry", extra={"attempt": 2})
    logging.getLogger("provenance.test").debug("hidden")

    out = buf.getvalue()
    assert "anchor_commit_retry" in out
    assert "attempt=2" in out
    assert "hidden" not in out


def test_configure_is_idempotent(restore_root_logger) -> None:
    configure_logging(LoggingConfig())
    configure_logging(LoggingConfig())
    named = [h for h in logging.getLogger().handlers if h.get_name() == "provenance"]
    assert len(named) == 1
