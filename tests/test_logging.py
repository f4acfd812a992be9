"""
Tests for structured logging

Tests:
- JSON record shape {timestamp, level, component, message, context?}
- stdout for all records, stderr for errors
- Level filtering and the rotating file sink
- CloudWatch batching
"""

import json
import logging
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from crossvault import logging_config
from crossvault.logging_config import CloudWatchHandler, get_logger, init_logging


@pytest.fixture
def json_logging(capsys):
    yield init_logging
    # Handlers point at capsys streams that are about to close
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    logging_config._logging_config = None


def read_records(text):
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def test_info_record_shape(json_logging, capsys):
    json_logging(log_level="INFO")
    get_logger("PriceWatcher").info("Price snapshot", context={"spread_bps": 12.5})

    records = read_records(capsys.readouterr().out)
    assert len(records) == 1
    record = records[0]
    assert list(record)[:5] == ["timestamp", "level", "component", "message", "context"]
    assert record["level"] == "INFO"
    assert record["component"] == "PriceWatcher"
    assert record["message"] == "Price snapshot"
    assert record["context"] == {"spread_bps": 12.5}
    assert record["timestamp"].endswith("Z")


def test_warning_level_named_warn(json_logging, capsys):
    json_logging(log_level="INFO")
    get_logger("Retry").warning("Attempt 1 failed")

    record = read_records(capsys.readouterr().out)[0]
    assert record["level"] == "WARN"
    assert "context" not in record


def test_errors_also_go_to_stderr(json_logging, capsys):
    json_logging(log_level="INFO")
    logger = get_logger("SettlementOrchestrator")
    logger.info("Starting settlement")
    logger.error("All settlement attempts failed", context={"session_id": "s-1"})

    captured = capsys.readouterr()
    assert [r["message"] for r in read_records(captured.out)] == [
        "Starting settlement", "All settlement attempts failed"
    ]
    stderr_records = read_records(captured.err)
    assert len(stderr_records) == 1
    assert stderr_records[0]["level"] == "ERROR"
    assert stderr_records[0]["context"] == {"session_id": "s-1"}


def test_debug_filtered_at_info(json_logging, capsys):
    json_logging(log_level="INFO")
    get_logger("PriceWatcher").debug("Pool price read")

    assert capsys.readouterr().out == ""


def test_file_sink(json_logging, capsys, tmp_path):
    json_logging(log_level="DEBUG", log_dir=tmp_path)
    get_logger("LedgerClient").debug("Transaction pending", context={"attempt": 1})

    for handler in logging.getLogger().handlers:
        handler.flush()
    records = read_records((tmp_path / "crossvault.log").read_text())
    assert records[0]["component"] == "LedgerClient"
    assert records[0]["level"] == "DEBUG"


# ============================================================================
# CloudWatch
# ============================================================================

def test_cloudwatch_batches_until_flush():
    client = Mock()
    client.create_log_group.side_effect = ClientError(
        {"Error": {"Code": "ResourceAlreadyExistsException", "Message": "exists"}}, "CreateLogGroup"
    )
    client.put_log_events.return_value = {"nextSequenceToken": "token-1"}
    handler = CloudWatchHandler("CrossVault", "stream", batch_size=2, client=client)
    handler.setFormatter(logging.Formatter("%(message)s"))

    assert handler.enabled
    handler.emit(logging.makeLogRecord({"msg": "one"}))
    client.put_log_events.assert_not_called()

    handler.emit(logging.makeLogRecord({"msg": "two"}))
    client.put_log_events.assert_called_once()
    kwargs = client.put_log_events.call_args.kwargs
    assert [e["message"] for e in kwargs["logEvents"]] == ["one", "two"]
    assert handler.sequence_token == "token-1"
    assert handler.batch == []


def test_cloudwatch_disabled_when_setup_fails():
    client = Mock()
    client.create_log_group.side_effect = ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "CreateLogGroup"
    )
    handler = CloudWatchHandler("CrossVault", "stream", client=client)

    assert handler.enabled is False
    handler.emit(logging.makeLogRecord({"msg": "dropped"}))
    handler.flush()
    client.put_log_events.assert_not_called()
