"""Tests for ContextLogger."""

from __future__ import annotations

import io
import json

from shipwright.observability import ContextLogger
from shipwright.update.types import TransactionStatus, UpdateTransaction


def _entries(buf: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buf.getvalue().splitlines()]


class TestJsonOutput:
    def test_entry_fields(self):
        buf = io.StringIO()
        logger = ContextLogger(name="shipwright.test", output=buf)
        logger.info("Update applied", extra={"from": "1.2.0"})

        (entry,) = _entries(buf)
        assert entry["level"] == "info"
        assert entry["message"] == "Update applied"
        assert entry["logger"] == "shipwright.test"
        assert entry["transaction_id"] is None
        assert entry["extra"] == {"from": "1.2.0"}
        assert entry["timestamp"]

    def test_level_filtering(self):
        buf = io.StringIO()
        logger = ContextLogger(name="t", level="warn", output=buf)
        logger.debug("hidden")
        logger.info("hidden")
        logger.warn("shown")
        logger.error("shown too")
        assert [e["level"] for e in _entries(buf)] == ["warn", "error"]

    def test_secret_keys_redacted(self):
        buf = io.StringIO()
        logger = ContextLogger(name="t", output=buf)
        logger.info("fetch", extra={"_secret_token": "abc", "url": "https://example.invalid"})
        extra = _entries(buf)[0]["extra"]
        assert extra["_secret_token"] == "***REDACTED***"
        assert extra["url"] == "https://example.invalid"

    def test_redaction_disabled(self):
        buf = io.StringIO()
        logger = ContextLogger(name="t", redact_sensitive=False, output=buf)
        logger.info("fetch", extra={"_secret_token": "abc"})
        assert _entries(buf)[0]["extra"]["_secret_token"] == "abc"


class TestBinding:
    def test_bind_returns_copy(self):
        buf = io.StringIO()
        base = ContextLogger(name="t", output=buf)
        bound = base.bind(transaction_id="txn-1", module="service", version="1.3.0")
        base.info("unbound")
        bound.info("bound")

        unbound_entry, bound_entry = _entries(buf)
        assert unbound_entry["transaction_id"] is None
        assert bound_entry["transaction_id"] == "txn-1"
        assert bound_entry["module"] == "service"
        assert bound_entry["version"] == "1.3.0"

    def test_bind_keeps_existing_fields_and_level(self):
        buf = io.StringIO()
        logger = ContextLogger(name="t", level="error", output=buf).bind(transaction_id="txn-1")
        rebound = logger.bind(module="config")
        rebound.info("filtered")
        rebound.error("kept")
        (entry,) = _entries(buf)
        assert entry["transaction_id"] == "txn-1"
        assert entry["module"] == "config"

    def test_for_transaction(self, tmp_path):
        txn = UpdateTransaction(
            transaction_id="txn-9",
            current_version="1.2.0",
            candidate_version="1.3.0",
            staging_path=tmp_path / "staging",
            status=TransactionStatus.PENDING,
        )
        buf = io.StringIO()
        ContextLogger.for_transaction(txn, name="t", output=buf).info("staged")
        entry = _entries(buf)[0]
        assert entry["transaction_id"] == "txn-9"
        assert entry["version"] == "1.3.0"


class TestTextOutput:
    def test_text_line(self):
        buf = io.StringIO()
        logger = ContextLogger(name="t", format="text", output=buf).bind(transaction_id="txn-1")
        logger.warn("Rollback requested", extra={"to": "1.2.0"})
        line = buf.getvalue().strip()
        assert "[WARN] [txn=txn-1] [module=none] Rollback requested to=1.2.0" in line
