"""Tests for logging setup (conductor/enhanced_logging.py)."""

import json
import logging

import pytest

from conductor.enhanced_logging import (
    JsonFormatter,
    configure_logging,
    get_logger,
    track_performance,
)


@pytest.fixture(autouse=True)
def _restore_conductor_logger():
    logger = logging.getLogger("conductor")
    level, handlers = logger.level, list(logger.handlers)
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def test_json_formatter_includes_extra_fields():
    record = logging.makeLogRecord({
        "name": "conductor.test",
        "levelname": "INFO",
        "msg": "task %s done",
        "args": ("t1",),
        "agent_id": "echo",
    })

    entry = json.loads(JsonFormatter().format(record))

    assert entry["message"] == "task t1 done"
    assert entry["logger"] == "conductor.test"
    assert entry["agent_id"] == "echo"


def test_configure_logging_replaces_its_handler(tmp_path):
    log_file = tmp_path / "conductor.log"

    configure_logging("debug", "text")
    root = configure_logging("INFO", "json", str(log_file))

    installed = [h for h in root.handlers if getattr(h, "_conductor_handler", False)]
    assert len(installed) == 1
    assert isinstance(installed[0].formatter, JsonFormatter)
    assert root.level == logging.INFO

    get_logger("conductor.sample").info("hello")
    installed[0].flush()
    assert json.loads(log_file.read_text().splitlines()[-1])["message"] == "hello"


def test_track_performance_sync(caplog):
    @track_performance
    def add(a, b):
        return a + b

    with caplog.at_level(logging.DEBUG):
        assert add(1, 2) == 3
    assert "completed in" in caplog.text
    assert add.__name__ == "add"


async def test_track_performance_async(caplog):
    @track_performance(operation="slow_op")
    async def work():
        return "ok"

    with caplog.at_level(logging.DEBUG):
        assert await work() == "ok"
    assert "slow_op completed in" in caplog.text


def test_track_performance_records_failure_outcome(caplog):
    @track_performance(operation="flaky")
    def explode():
        raise ValueError("nope")

    with caplog.at_level(logging.DEBUG):
        with pytest.raises(ValueError):
            explode()

    record = caplog.records[-1]
    assert record.operation == "flaky"
    assert record.outcome == "failed"
    assert record.duration_ms >= 0
    assert "flaky failed in" in record.getMessage()
