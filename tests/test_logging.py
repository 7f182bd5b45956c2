from __future__ import annotations

import logging

import orjson
import pytest

from jobharvest.core.logging import JSONFormatter, get_contextual_logger, setup_logging


@pytest.fixture
def reset_logging():
    yield
    logger = logging.getLogger("jobharvest")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_json_formatter_includes_traversal_context():
    record = logging.LogRecord("jobharvest.test", logging.WARNING, __file__, 1, "Blocked on page %d", (3,), None)
    record.keyword = "react"
    record.region = "Europe-Germany"

    data = orjson.loads(JSONFormatter().format(record))

    assert data["level"] == "WARNING"
    assert data["logger"] == "jobharvest.test"
    assert data["message"] == "Blocked on page 3"
    assert data["keyword"] == "react"
    assert data["region"] == "Europe-Germany"
    assert "step" not in data


def test_contextual_logger_writes_json_lines(tmp_path, reset_logging):
    log_file = tmp_path / "logs" / "jobharvest.log"
    setup_logging(level="DEBUG", log_file=log_file, json_format=True, rich_console=False)

    clog = get_contextual_logger("orchestrator.cell", keyword="react", region="Europe-Germany")
    clog.with_context(step="past-week").info("25 listed, 10 novel")

    lines = log_file.read_text(encoding="utf-8").splitlines()
    data = orjson.loads(lines[-1])
    assert data["logger"] == "jobharvest.orchestrator.cell"
    assert data["message"] == "25 listed, 10 novel"
    assert data["keyword"] == "react"
    assert data["step"] == "past-week"
