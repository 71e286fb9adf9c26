"""Tests for the connection registry."""

import json

import pytest

from mcp_switchboard.security.audit import AuditLogger
from mcp_switchboard.state.connections import ConnectionRegistry

from conftest import MemoryConnection


class BrokenConnection(MemoryConnection):
    """Connection whose send raises."""

    def send(self, data: str) -> bool:
        raise RuntimeError("socket exploded")


class TestAddRemove:
    """Tests for tracking connections."""

    def test_add_and_get(self):
        """Should track added connections by id."""
        registry = ConnectionRegistry()
        connection = MemoryConnection()

        assert registry.add(connection) is True
        assert registry.get(connection.id) is connection
        assert connection.id in registry
        assert registry.count() == 1

    def test_remove(self):
        """Should stop tracking removed connections."""
        registry = ConnectionRegistry()
        connection = MemoryConnection()
        registry.add(connection)

        registry.remove(connection)
        registry.remove(connection)

        assert registry.count() == 0
        assert registry.get(connection.id) is None

    def test_refuses_over_ceiling(self):
        """A connection beyond the ceiling is closed and not tracked."""
        registry = ConnectionRegistry(max_connections=1)
        first = MemoryConnection()
        second = MemoryConnection()

        assert registry.add(first) is True
        assert registry.add(second) is False

        assert not second.is_alive()
        assert first.is_alive()
        assert registry.all() == [first]

    def test_refusal_is_audited(self, tmp_path):
        """Refusals are written to the audit log."""
        log_path = tmp_path / "audit.jsonl"
        with AuditLogger(log_path) as audit:
            registry = ConnectionRegistry(max_connections=1, audit=audit)
            registry.add(MemoryConnection())
            registry.add(MemoryConnection())

        entry = json.loads(log_path.read_text().strip())
        assert entry["type"] == "security"
        assert entry["event_type"] == "connection_refused"
        assert entry["details"]["max_connections"] == 1

    def test_slot_freed_after_remove(self):
        """Removing a connection frees its slot."""
        registry = ConnectionRegistry(max_connections=1)
        first = MemoryConnection()
        registry.add(first)
        registry.remove(first)

        assert registry.add(MemoryConnection()) is True

    def test_rejects_non_positive_ceiling(self):
        """Should refuse a non-positive ceiling."""
        with pytest.raises(ValueError):
            ConnectionRegistry(max_connections=0)


class TestBroadcast:
    """Tests for broadcasting messages."""

    def test_sends_to_all(self):
        """Should deliver to every live connection."""
        registry = ConnectionRegistry()
        connections = [MemoryConnection() for _ in range(3)]
        for connection in connections:
            registry.add(connection)

        assert registry.broadcast("hello") == 3
        assert all(c.sent == ["hello"] for c in connections)

    def test_excludes_ids(self):
        """Excluded connections are skipped."""
        registry = ConnectionRegistry()
        first, second = MemoryConnection(), MemoryConnection()
        registry.add(first)
        registry.add(second)

        assert registry.broadcast("hi", exclude_ids=[first.id]) == 1
        assert first.sent == []

    def test_failure_does_not_abort(self):
        """A failing connection is skipped and the rest still receive."""
        registry = ConnectionRegistry()
        broken, healthy = BrokenConnection(), MemoryConnection()
        registry.add(broken)
        registry.add(healthy)

        assert registry.broadcast("data") == 1
        assert healthy.sent == ["data"]

    def test_closed_connection_not_counted(self):
        """Closed connections report a failed send."""
        registry = ConnectionRegistry()
        connection = MemoryConnection()
        registry.add(connection)
        connection.close()

        assert registry.broadcast("data") == 0


class TestCleanup:
    """Tests for sweeping dead connections."""

    def test_cleanup_invalid(self):
        """Should drop connections that are no longer alive."""
        registry = ConnectionRegistry()
        alive, dead = MemoryConnection(), MemoryConnection()
        registry.add(alive)
        registry.add(dead)
        dead.mark_closed()

        assert registry.cleanup_invalid() == 1
        assert registry.all() == [alive]

    def test_close_all(self):
        """Should close and forget every connection."""
        registry = ConnectionRegistry()
        connections = [MemoryConnection(), MemoryConnection()]
        for connection in connections:
            registry.add(connection)

        registry.close_all()

        assert registry.count() == 0
        assert not any(c.is_alive() for c in connections)
