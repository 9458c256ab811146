import io
import json
import logging

import pytest

from agent_workflow.core.logging_setup import LOGGER_NAME, configure_logging


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def test_json_lines_carry_structured_fields():
    stream = io.StringIO()
    configure_logging("INFO", "json", stream=stream)
    logging.getLogger("agent_workflow.core.engine.coordinator").info(
        "activity %s completed", "A", extra={"structured": {"plan": "demo", "node": "A", "state": None}}
    )
    entry = json.loads(stream.getvalue().strip())
    assert entry["message"] == "activity A completed"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "agent_workflow.core.engine.coordinator"
    assert entry["plan"] == "demo"
    assert entry["node"] == "A"
    assert "state" not in entry


def test_level_filters_records():
    stream = io.StringIO()
    configure_logging("WARNING", "text", stream=stream)
    log = logging.getLogger("agent_workflow.x")
    log.info("hidden")
    log.warning("shown")
    out = stream.getvalue()
    assert "hidden" not in out
    assert "WARNING agent_workflow.x: shown" in out


def test_reconfigure_replaces_handler():
    configure_logging("INFO", "text", stream=io.StringIO())
    configure_logging("INFO", "json", stream=io.StringIO())
    assert len(logging.getLogger(LOGGER_NAME).handlers) == 1


def test_rejects_bad_arguments():
    with pytest.raises(ValueError):
        configure_logging("LOUD")
    with pytest.raises(ValueError):
        configure_logging("INFO", "xml")
