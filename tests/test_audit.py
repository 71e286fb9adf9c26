"""Tests for audit logging system."""

import json
import tempfile
import threading
from datetime import datetime
from pathlib import Path

from mcp_switchboard.security.audit import REDACTED, AuditLogger, is_sensitive_key, redact


class TestRedaction:
    """Tests for sensitive value redaction."""

    def test_detects_sensitive_keys(self):
        """Should flag keys that look like secrets."""
        for key in ("password", "API_KEY", "apiKey", "auth_header", "refresh_token", "private-key"):
            assert is_sensitive_key(key), key

        assert not is_sensitive_key("query")

    def test_redacts_nested_values(self):
        """Should walk nested dicts and lists."""
        value = {
            "query": "ok",
            "config": {"secret": "s", "depth": 2},
            "items": [{"token": "t", "name": "n"}],
        }

        assert redact(value) == {
            "query": "ok",
            "config": {"secret": REDACTED, "depth": 2},
            "items": [{"token": REDACTED, "name": "n"}],
        }

    def test_leaves_input_untouched(self):
        """Redaction returns a copy."""
        value = {"password": "hunter2"}

        redact(value)

        assert value == {"password": "hunter2"}


class TestAuditLogger:
    """Tests for AuditLogger class."""

    def test_creates_log_directory_if_missing(self):
        """Should create log directory if it doesn't exist."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "subdir" / "audit.log"
            logger = AuditLogger(log_path)

            assert log_path.parent.exists()
            assert logger.path == log_path
            logger.close()

    def test_log_request_writes_to_file(self):
        """Should write request event to log file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            logger.log_request("req-001", "test_tool", {"arg": "value"}, connection_id=4)
            logger.close()

            parsed = json.loads(log_path.read_text())
            assert parsed["type"] == "request"
            assert parsed["request_id"] == "req-001"
            assert parsed["tool_name"] == "test_tool"
            assert parsed["connection_id"] == 4

    def test_log_response_writes_to_file(self):
        """Should write response event to log file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            logger.log_response("req-001", "test_tool", "success", 100.5)
            logger.log_response("req-002", "test_tool", "timeout", 30000, error="too slow")
            logger.close()

            first, second = (json.loads(line) for line in log_path.read_text().splitlines())
            assert first["result_status"] == "success"
            assert first["execution_time_ms"] == 100.5
            assert "error" not in first
            assert second["result_status"] == "timeout"
            assert second["error"] == "too slow"

    def test_log_security_event_writes_to_file(self):
        """Should write security event to log file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            logger.log_security_event("rate_limited", {"tool_name": "search"})
            logger.close()

            parsed = json.loads(log_path.read_text())
            assert parsed["event_type"] == "rate_limited"
            assert parsed["details"] == {"tool_name": "search"}

    def test_logs_are_json_lines_format(self):
        """Should write logs in JSON Lines format (one JSON per line)."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            logger.log_request("req-001", "tool1", {})
            logger.log_request("req-002", "tool2", {})
            logger.close()

            lines = log_path.read_text().strip().split("\n")
            assert len(lines) == 2

            for line in lines:
                parsed = json.loads(line)
                assert "timestamp" in parsed

    def test_timestamp_is_iso8601_utc(self):
        """Should use ISO 8601 format with UTC timezone."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            logger.log_request("req-001", "tool", {})
            logger.close()

            timestamp = json.loads(log_path.read_text())["timestamp"]

            assert timestamp.endswith("Z")
            dt = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
            assert dt.tzinfo is not None

    def test_sanitizes_sensitive_arguments(self):
        """Should sanitize potentially sensitive data in arguments."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            args = {
                "query": "normal query",
                "password": "secret123",
                "api_key": "sk-12345",
                "token": "bearer-xyz",
            }
            logger.log_request("req-001", "tool", args)
            logger.close()

            parsed = json.loads(log_path.read_text())

            assert parsed["arguments"]["query"] == "normal query"
            assert parsed["arguments"]["password"] == "[REDACTED]"
            assert parsed["arguments"]["api_key"] == "[REDACTED]"
            assert parsed["arguments"]["token"] == "[REDACTED]"

    def test_append_mode_preserves_existing_logs(self):
        """Should append to existing log file, not overwrite."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"

            with AuditLogger(log_path) as logger:
                logger.log_request("req-001", "tool1", {})

            with AuditLogger(log_path) as logger:
                logger.log_request("req-002", "tool2", {})

            content = log_path.read_text()
            assert "req-001" in content
            assert "req-002" in content

    def test_flush_on_each_write(self):
        """Should flush after each write for durability."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            logger.log_request("req-001", "tool", {})
            assert "req-001" in log_path.read_text()

            logger.close()

    def test_writes_after_close_are_dropped(self):
        """Logging after close is a silent no-op."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)
            logger.close()

            logger.log_request("late", "tool", {})
            logger.close()

            assert log_path.read_text() == ""

    def test_concurrent_writes_stay_line_aligned(self):
        """Entries written from many threads never interleave."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.log"
            logger = AuditLogger(log_path)

            def write(worker: int) -> None:
                for i in range(50):
                    logger.log_request(f"{worker}-{i}", "tool", {"payload": "x" * 200})

            threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            logger.close()

            lines = log_path.read_text().splitlines()
            assert len(lines) == 200
            assert all(json.loads(line)["tool_name"] == "tool" for line in lines)
