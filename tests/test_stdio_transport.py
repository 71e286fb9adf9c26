"""Tests for the blocking and polling stdio transports."""

import io
import json
import os
import threading
import time

import pytest

from mcp_switchboard.config import ServerConfig
from mcp_switchboard.protocol.jsonrpc import PARSE_ERROR, JsonRpcError, parse_message
from mcp_switchboard.server import MCPServer
from mcp_switchboard.transports.stdio import BlockingStdioTransport, PollingStdioTransport


class TestBlockingStdio:
    """Tests for the blocking line reader."""

    def test_echoes_each_line(self):
        """Every non-empty line reaches the handler; replies go to stdout."""
        stdin = io.StringIO('{"a": 1}\n\n   \n{"b": 2}\n')
        stdout = io.StringIO()
        transport = BlockingStdioTransport(stdin=stdin, stdout=stdout)
        received = []

        def handle(data, connection):
            received.append(data)
            connection.send(f"reply:{data}")

        transport.on_message(handle)
        transport.start()

        assert received == ['{"a": 1}', '{"b": 2}']
        assert stdout.getvalue() == 'reply:{"a": 1}\nreply:{"b": 2}\n'
        assert not transport.is_running()

    def test_read_message(self):
        """read_message strips lines and returns None at EOF."""
        transport = BlockingStdioTransport(stdin=io.StringIO("\n  hello  \n"), stdout=io.StringIO())

        assert transport.read_message() == "hello"
        assert transport.read_message() is None

    def test_stop_between_lines(self):
        """stop() ends the loop before the next line is read."""
        transport = BlockingStdioTransport(
            stdin=io.StringIO("first\nsecond\n"), stdout=io.StringIO()
        )
        received = []

        def handle(data, connection):
            received.append(data)
            transport.stop()

        transport.on_message(handle)
        transport.start()

        assert received == ["first"]

    def test_handler_error_does_not_stop_loop(self):
        """A failing handler is reported and reading continues."""
        transport = BlockingStdioTransport(stdin=io.StringIO("x\ny\n"), stdout=io.StringIO())
        received = []
        errors = []

        def handle(data, connection):
            received.append(data)
            raise RuntimeError("handler failed")

        transport.on_message(handle)
        transport.on_error(lambda error, connection: errors.append(str(error)))
        transport.start()

        assert received == ["x", "y"]
        assert errors == ["handler failed", "handler failed"]

    def test_reads_bytes_from_binary_buffer(self):
        """Lines come from the binary buffer, so undecodable input is kept."""
        stdin = io.TextIOWrapper(io.BytesIO(b'\xff\xfe garbage\n{"a": 1}\n'), encoding="utf-8")
        transport = BlockingStdioTransport(stdin=stdin, stdout=io.StringIO())
        received = []
        transport.on_message(lambda data, connection: received.append(data))

        transport.start()

        assert received == [b"\xff\xfe garbage", b'{"a": 1}']

    def test_undecodable_line_answered_with_parse_error(self):
        """A bad line gets PARSE_ERROR and later messages are still served."""
        stdin = io.TextIOWrapper(
            io.BytesIO(b'\xff\xfe garbage\n{"jsonrpc": "2.0", "id": 7, "method": "ping"}\n'),
            encoding="utf-8",
        )
        stdout = io.StringIO()
        server = MCPServer(ServerConfig(stdio_mode="blocking"))
        server.bind(BlockingStdioTransport(stdin=stdin, stdout=stdout))

        server.serve()

        replies = [json.loads(line) for line in stdout.getvalue().splitlines()]
        assert len(replies) == 2
        assert replies[0]["id"] is None
        assert replies[0]["error"]["code"] == PARSE_ERROR
        assert replies[1] == {"jsonrpc": "2.0", "id": 7, "result": {}}

    def test_send_and_info(self):
        """send() writes one line; get_info() reports the mode."""
        stdout = io.StringIO()
        transport = BlockingStdioTransport(stdin=io.StringIO(), stdout=stdout)

        assert transport.send("ping") == 1
        assert stdout.getvalue() == "ping\n"
        assert transport.get_info() == {"type": "stdio", "mode": "blocking", "running": False}


@pytest.mark.skipif(os.name != "posix", reason="non-blocking stdin needs POSIX pipes")
class TestPollingStdio:
    """Tests for the non-blocking polling reader."""

    @pytest.fixture
    def pipe(self):
        read_fd, write_fd = os.pipe()
        stdin = os.fdopen(read_fd, "rb", buffering=0)
        yield stdin, write_fd
        stdin.close()
        try:
            os.close(write_fd)
        except OSError:
            pass

    @staticmethod
    def collector(transport):
        received = []
        arrived = threading.Event()

        def handle(data, connection):
            received.append(data)
            arrived.set()

        transport.on_message(handle)
        return received, arrived

    def test_dispatches_complete_lines_only(self, pipe):
        """Partial lines wait in the buffer until their newline arrives."""
        stdin, write_fd = pipe
        transport = PollingStdioTransport(
            stdin=stdin, stdout=io.StringIO(), buffer_interval=5, install_signal_handlers=False
        )
        received, arrived = self.collector(transport)
        transport.start()
        try:
            os.write(write_fd, b'{"jsonrpc": "2.0", ')
            time.sleep(0.1)
            assert received == []
            assert transport.get_buffer_size() > 0

            os.write(write_fd, b'"method": "ping"}\n')
            assert arrived.wait(2)
            assert received == [b'{"jsonrpc": "2.0", "method": "ping"}']
            assert transport.get_buffer_size() == 0
        finally:
            transport.stop()

    def test_several_lines_in_one_chunk(self, pipe):
        """Each line of a chunk is dispatched in order."""
        stdin, write_fd = pipe
        transport = PollingStdioTransport(
            stdin=stdin, stdout=io.StringIO(), buffer_interval=5, install_signal_handlers=False
        )
        received, _ = self.collector(transport)
        transport.start()

        os.write(write_fd, b"one\ntwo\n\nthree\n")
        os.close(write_fd)

        assert transport.wait(2)
        assert received == [b"one", b"two", b"three"]

    def test_undecodable_line_passed_as_bytes(self, pipe):
        """Invalid UTF-8 reaches the handler unaltered and the codec rejects it."""
        stdin, write_fd = pipe
        transport = PollingStdioTransport(
            stdin=stdin, stdout=io.StringIO(), buffer_interval=5, install_signal_handlers=False
        )
        received, _ = self.collector(transport)
        transport.start()

        os.write(write_fd, b'{"jsonrpc": "2.0", "id": 1, "method": "\xff"}\nok\n')
        os.close(write_fd)

        assert transport.wait(2)
        assert received == [b'{"jsonrpc": "2.0", "id": 1, "method": "\xff"}', b"ok"]
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message(received[0])
        assert exc_info.value.code == PARSE_ERROR

    def test_eof_stops_and_restores_blocking(self, pipe):
        """EOF stops the transport and restores the descriptor mode."""
        stdin, write_fd = pipe
        transport = PollingStdioTransport(
            stdin=stdin, stdout=io.StringIO(), buffer_interval=5, install_signal_handlers=False
        )
        transport.start()
        assert transport.is_running()
        assert os.get_blocking(stdin.fileno()) is False

        os.close(write_fd)

        assert transport.wait(2)
        assert not transport.is_running()
        assert os.get_blocking(stdin.fileno()) is True

    def test_stop_discards_incomplete_input(self, pipe):
        """stop() dispatches complete lines and drops a trailing fragment."""
        stdin, write_fd = pipe
        transport = PollingStdioTransport(
            stdin=stdin, stdout=io.StringIO(), buffer_interval=5, install_signal_handlers=False
        )
        received, arrived = self.collector(transport)
        transport.start()

        os.write(write_fd, b"complete\npartial")
        assert arrived.wait(2)
        transport.stop()

        assert received == [b"complete"]
        assert transport.get_buffer_size() == 0
        assert not transport.is_running()

    def test_stop_is_idempotent(self, pipe):
        """Calling stop() twice is harmless."""
        stdin, _ = pipe
        transport = PollingStdioTransport(
            stdin=stdin, stdout=io.StringIO(), install_signal_handlers=False
        )
        transport.start()

        transport.stop()
        transport.stop()

        assert transport.wait(0)

    def test_buffer_interval_minimum(self):
        """The poll interval never drops below 1 ms."""
        transport = PollingStdioTransport(
            stdin=io.StringIO(), stdout=io.StringIO(), buffer_interval=0
        )

        assert transport.buffer_interval == 1
        transport.buffer_interval = 50
        assert transport.get_info()["buffer_interval"] == 50
