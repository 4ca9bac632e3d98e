"""Tests for the job-store audit log and structured error payloads."""

import json
import logging

import pytest

from verdict_service.audit import ERROR_EVENT, TIMELOCK_REVEAL_RECEIVED, VERIFICATION_ERROR, StoreAuditLog
from verdict_service.errors import CommitTransactionFailed, ErrorCode, error_payload
from verdict_service.logging_utils import get_logger, truncate
from verdict_service.models import AuditEntry


@pytest.mark.asyncio
async def test_reveal_entry_key_and_shape(store, audit):
    key = await audit.append(
        TIMELOCK_REVEAL_RECEIVED,
        {"protocolRequestId": "7", "revealedVerdict": "Verified", "sourceTransactionHash": "0x22", "requester": "0xcd"},
        "req_42",
    )

    assert key == "timelock_reveals/req_42/7.json"
    entry = await store.get(key)
    assert set(entry) == {"timestamp", "type", "details", "requestContext"}
    assert entry["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_error_entries_keyed_by_stage(store, audit):
    key = await audit.append(VERIFICATION_ERROR, {"stage": "TimelockRevealDecode", "error": "bad"}, "req_1")
    assert key.startswith("errors/req_1/TimelockRevealDecode_")
    assert key.endswith(".json")
    assert ":" not in key

    key = await audit.error("FetchContent", "gateway timeout", "req_1", reference="bafy")
    entry = await store.get(key)
    assert entry["type"] == ERROR_EVENT
    assert entry["details"] == {"stage": "FetchContent", "error": "gateway timeout", "reference": "bafy"}


@pytest.mark.asyncio
async def test_missing_context_and_other_events(audit):
    key = await audit.append("TIMELOCK_COMMITTED", {"protocolRequestId": "1"}, None)
    assert key.startswith("events/unknownContext/TIMELOCK_COMMITTED_")


def test_key_for_is_deterministic():
    audit = StoreAuditLog(store=None)
    entry = AuditEntry(timestamp="2025-01-02T03:04:05.678901Z", type=ERROR_EVENT, details={"stage": "GenerateAnswer"}, requestContext="req_9")
    assert audit.key_for(entry) == "errors/req_9/GenerateAnswer_2025-01-02_03-04-05-678901.json"


def test_error_payload():
    assert error_payload(CommitTransactionFailed("reverted", tx_hash="0x1")) == {
        "error": ErrorCode.COMMIT_TRANSACTION_FAILED.value,
        "detail": "reverted",
    }
    assert error_payload(RuntimeError("boom")) == {"error": "internal_error", "detail": "boom"}


def test_structured_log_line(caplog):
    logger = get_logger("tests.audit")
    with caplog.at_level(logging.INFO, logger="verdict_service"):
        logger.info("audit.test_event", request_context="req_1", count=2)

    record = json.loads(caplog.records[-1].getMessage())
    assert record["event"] == "audit.test_event"
    assert record["level"] == "INFO"
    assert record["logger"] == "verdict_service.tests.audit"
    assert record["request_context"] == "req_1"
    assert record["count"] == 2


def test_truncate():
    assert truncate(None) == ""
    assert truncate("short") == "short"
    assert truncate("x" * 100, 10) == "xxxxxxx..."
