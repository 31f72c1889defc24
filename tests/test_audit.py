"""Tests for the audit trail: JSONL sink, PHI redaction, HMAC seals."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from intakesync.audit import MEMORY_LIMIT, AuditLog, redact


@pytest.fixture
def seal_key() -> bytes:
    return b"audit-seal-key-for-tests-32bytes"


class TestRedaction:
    """PHI scrubbing of free-text messages."""

    def test_ssn(self):
        assert redact("ssn 123-45-6789 here") == "ssn [SSN-REDACTED] here"

    def test_phone_formats(self):
        assert "[PHONE-REDACTED]" in redact("call 555-123-4567")
        assert "[PHONE-REDACTED]" in redact("call (555) 123-4567")

    def test_email(self):
        assert redact("mail pat@example.org now") == "mail [EMAIL-REDACTED] now"

    def test_plain_text_untouched(self):
        assert redact("Draft load failed: bad token") == "Draft load failed: bad token"


class TestAuditLog:
    """Sink behaviour."""

    def test_memory_sink(self):
        log = AuditLog()
        entry = log.log_event("error", "k1", "boom", "failure")
        assert entry is not None
        assert [e.kind for e in log.read_entries()] == ["error"]
        assert log.path is None

    def test_memory_sink_is_bounded(self):
        log = AuditLog()
        for i in range(MEMORY_LIMIT + 5):
            log.log_event("info", f"k{i}", "x")
        entries = log.read_entries()
        assert len(entries) == MEMORY_LIMIT
        assert entries[0].subject == "k5"
        assert entries[-1].subject == f"k{MEMORY_LIMIT + 4}"

    def test_file_sink_is_jsonl(self, tmp_home: Path):
        log = AuditLog(tmp_home)
        log.log_event("draft_resume", "k1", "Recovered")
        log.log_event("error", "k1", "bad 123-45-6789", "failure")

        lines = log.path.read_text().splitlines()
        assert len(lines) == 2
        second = json.loads(lines[1])
        assert second["kind"] == "error"
        assert second["message"] == "bad [SSN-REDACTED]"
        assert second["severity"] == "failure"

    def test_read_limit(self, tmp_home: Path):
        log = AuditLog(tmp_home)
        for i in range(5):
            log.log_event("info", f"k{i}", "x")
        assert [e.subject for e in log.read_entries(limit=2)] == ["k3", "k4"]

    def test_disabled_writes_nothing(self, tmp_home: Path):
        log = AuditLog(tmp_home, enabled=False)
        assert log.log_event("error", "k", "x") is None
        assert not log.path.exists()

    def test_unwritable_sink_never_raises(self, tmp_path: Path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        log = AuditLog(blocker)
        assert log.log_event("error", "k", "x") is None


class TestSeals:
    """HMAC integrity seals."""

    def test_sealed_entries_verify(self, tmp_home: Path, seal_key: bytes):
        log = AuditLog(tmp_home, seal_key=seal_key)
        log.log_event("sync_conflict", "d1", "remote moved")
        log.log_event("conflict_resolved", "d1", "keepMine", "success")
        assert log.verify_entries() == (2, 0)

    def test_tampering_detected(self, tmp_home: Path, seal_key: bytes):
        log = AuditLog(tmp_home, seal_key=seal_key)
        log.log_event("conflict_resolved", "d1", "keepMine", "success")

        record = json.loads(log.path.read_text())
        record["message"] = "useTheirs"
        log.path.write_text(json.dumps(record) + "\n")

        assert log.verify_entries() == (0, 1)

    def test_verify_needs_key(self, tmp_home: Path):
        with pytest.raises(ValueError):
            AuditLog(tmp_home).verify_entries()
