"""Audit log of tool calls and security events.

Entries are appended as JSON Lines and flushed after every write.
Argument values under sensitive-looking keys are redacted before they
reach the file.
"""

from __future__ import annotations

import json
import re
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

SENSITIVE_PATTERNS = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"auth", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"private[_-]?key", re.IGNORECASE),
]

REDACTED = "[REDACTED]"


def is_sensitive_key(key: str) -> bool:
    return any(pattern.search(key) for pattern in SENSITIVE_PATTERNS)


def redact(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive mapping entries redacted.

    Nested dicts and lists are walked; other values are returned as is.
    """
    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive_key(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


def _timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class AuditLogger:
    """Append-only JSON Lines audit log.

    Safe to share between threads; each entry is written and flushed
    under a lock.
    """

    def __init__(self, log_path: str | Path) -> None:
        """Open (or create) the audit log.

        Args:
            log_path: Path to the audit log file; parent directories are
                created as needed.
        """
        self._log_path = Path(log_path)
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._log_path, "a", encoding="utf-8")  # noqa: SIM115
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    def _write_line(self, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock:
            if self._file.closed:
                return
            self._file.write(line + "\n")
            self._file.flush()

    def log_request(
        self,
        request_id: Any,
        tool_name: str,
        arguments: dict[str, Any],
        connection_id: int | None = None,
    ) -> None:
        """Log an incoming tool call.

        Args:
            request_id: JSON-RPC id of the call.
            tool_name: Name of the tool being invoked.
            arguments: Call arguments (redacted before writing).
            connection_id: Connection the call arrived on.
        """
        self._write_line(
            {
                "type": "request",
                "timestamp": _timestamp(),
                "request_id": request_id,
                "connection_id": connection_id,
                "tool_name": tool_name,
                "arguments": redact(arguments),
            }
        )

    def log_response(
        self,
        request_id: Any,
        tool_name: str,
        status: str,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        """Log the outcome of a tool call.

        Args:
            request_id: JSON-RPC id to correlate with the request entry.
            tool_name: Name of the tool.
            status: "success" or the failure kind (error, timeout, ...).
            duration_ms: Wall time spent on the call.
            error: Error message for failed calls.
        """
        entry: dict[str, Any] = {
            "type": "response",
            "timestamp": _timestamp(),
            "request_id": request_id,
            "tool_name": tool_name,
            "result_status": status,
            "execution_time_ms": round(duration_ms, 3),
        }
        if error is not None:
            entry["error"] = error
        self._write_line(entry)

    def log_security_event(self, event_type: str, details: dict[str, Any]) -> None:
        """Log a security-related event (rate_limited, connection_refused, ...)."""
        self._write_line(
            {
                "type": "security",
                "timestamp": _timestamp(),
                "event_type": event_type,
                "details": redact(details),
            }
        )

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()

    def __enter__(self) -> AuditLogger:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
