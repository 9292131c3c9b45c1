# tests/unit/infrastructure/logging/test_logger.py
# Copyright (c)
# SPDX-License-Identifier: MIT
from __future__ import annotations

import json
import logging
import sys

from marketplace_ingest.infrastructure.logging.logger import (
    _JsonFormatter,
    get_ingestion_run_id,
    get_task_id,
    task_context,
)


def _record(**attrs: object) -> logging.LogRecord:
    record = logging.LogRecord("ingest", logging.INFO, __file__, 1, "task.done", None, None)
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


def test_formatter_merges_extra_and_context_ids() -> None:
    with task_context(task_id="t-1", ingestion_run_id="r-1"):
        line = _JsonFormatter().format(_record(extra={"attempt": 2}))

    payload = json.loads(line)
    assert payload["message"] == "task.done"
    assert payload["level"] == "INFO"
    assert payload["task_id"] == "t-1"
    assert payload["ingestion_run_id"] == "r-1"
    assert payload["attempt"] == 2


def test_task_context_resets_on_exit() -> None:
    with task_context(task_id="outer"):
        with task_context(ingestion_run_id="run"):
            assert get_task_id() == "outer"
            assert get_ingestion_run_id() == "run"
        assert get_ingestion_run_id() is None
    assert get_task_id() is None


def test_formatter_includes_exception_details() -> None:
    try:
        raise RuntimeError("db down")
    except RuntimeError:
        record = _record(exc_info=sys.exc_info())

    payload = json.loads(_JsonFormatter().format(record))

    assert payload["exc_type"] == "RuntimeError"
    assert payload["exc_message"] == "db down"
