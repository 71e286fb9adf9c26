"""STDIO transports for MCP communication.

Messages are newline-delimited JSON on stdin/stdout. Logging must go to
stderr so it never corrupts the protocol stream.
"""

from __future__ import annotations

import atexit
import logging
import os
import selectors
import signal
import sys
import threading
from typing import Any, TextIO

from mcp_switchboard.transports.base import Connection, Transport

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536


class StdioConnection(Connection):
    """The single pseudo-connection of a stdio transport; writes go to stdout."""

    def __init__(self, stdout: TextIO) -> None:
        super().__init__(remote_address="stdio")
        self._stdout = stdout
        self._lock = threading.Lock()

    def _write(self, data: str) -> None:
        with self._lock:
            self._stdout.write(data + "\n")
            self._stdout.flush()


class BlockingStdioTransport(Transport):
    """Reads stdin line by line in the calling thread.

    :meth:`start` returns when stdin reaches EOF or :meth:`stop` is called
    between lines. Connect, close and error handlers are never invoked.
    """

    kind = "stdio"

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """Initialize the transport.

        Args:
            stdin: Input stream (defaults to sys.stdin).
            stdout: Output stream (defaults to sys.stdout).
        """
        super().__init__()
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self.connection = StdioConnection(self._stdout)
        self._track(self.connection)

    def read_message(self) -> str | bytes | None:
        """Read the next non-empty line.

        Lines are read as bytes when stdin exposes a binary buffer, so
        undecodable input reaches the codec as a parse error instead of
        ending the loop.

        Returns:
            Message (stripped), or None on EOF.
        """
        stream = getattr(self._stdin, "buffer", self._stdin)
        while True:
            try:
                line = stream.readline()
            except UnicodeDecodeError as e:
                logger.warning("Undecodable input on stdin: %s", e)
                return bytes(e.object)
            except (OSError, ValueError) as e:
                logger.error("Error reading stdin: %s", e)
                return None

            if not line:
                return None

            line = line.strip()
            if line:
                return line

    def start(self) -> None:
        self._mark_started()
        logger.info("Stdio transport started (blocking)")
        try:
            while self._running:
                message = self.read_message()
                if message is None:
                    logger.info("EOF received, shutting down")
                    break
                self._emit_message(message, self.connection)
        finally:
            self._mark_stopped()

    def stop(self) -> None:
        if self._running:
            logger.info("Stdio transport stopping")
        self._running = False

    def send(self, data: str) -> int:
        return 1 if self.connection.send(data) else 0

    def get_info(self) -> dict[str, Any]:
        return {"type": "stdio", "mode": "blocking", "running": self._running}


class PollingStdioTransport(Transport):
    """Non-blocking stdin reader polled on a background thread.

    stdin is switched to non-blocking mode and polled every
    ``buffer_interval`` milliseconds. Bytes are buffered until a newline
    arrives; only complete lines are dispatched. On stop (including via
    SIGTERM, SIGINT or interpreter exit) complete lines still buffered are
    dispatched before the reader exits.
    """

    kind = "stdio"

    def __init__(
        self,
        stdin: Any = None,
        stdout: TextIO | None = None,
        buffer_interval: int = 10,
        install_signal_handlers: bool = True,
    ) -> None:
        """Initialize the transport.

        Args:
            stdin: Readable object with a file descriptor (defaults to sys.stdin).
            stdout: Output stream (defaults to sys.stdout).
            buffer_interval: Poll interval in milliseconds (minimum 1).
            install_signal_handlers: Stop on SIGTERM/SIGINT when started
                from the main thread.
        """
        super().__init__()
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._buffer_interval = max(1, int(buffer_interval))
        self._install_signal_handlers = install_signal_handlers
        self._buffer = bytearray()
        self._buffer_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._fd: int | None = None
        self._was_blocking = True
        self._previous_handlers: dict[int, Any] = {}
        self._finish_lock = threading.Lock()
        self.connection = StdioConnection(self._stdout)
        self._track(self.connection)

    @property
    def buffer_interval(self) -> int:
        return self._buffer_interval

    @buffer_interval.setter
    def buffer_interval(self, value: int) -> None:
        self._buffer_interval = max(1, int(value))

    def start(self) -> None:
        if self._running:
            return
        self._fd = self._stdin.fileno()
        self._was_blocking = os.get_blocking(self._fd)
        os.set_blocking(self._fd, False)

        self._mark_started()
        atexit.register(self.stop)
        self._register_signal_handlers()

        self._thread = threading.Thread(
            target=self._poll_loop, name="mcp-stdio-reader", daemon=True
        )
        self._thread.start()
        logger.info("Stdio transport started (polling every %dms)", self._buffer_interval)

    def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stdio transport stopping")
        self._running = False

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self._buffer_interval / 1000 * 10))

        self._finish()

    def _finish(self) -> None:
        with self._finish_lock:
            if self._stopped.is_set():
                return
            self._drain_buffer()
            self._restore()
            self._mark_stopped()

    def _poll_loop(self) -> None:
        selector = selectors.DefaultSelector()
        try:
            selector.register(self._fd, selectors.EVENT_READ)
            while self._running:
                if not selector.select(timeout=self._buffer_interval / 1000):
                    continue
                if not self._read_available():
                    logger.info("EOF received, shutting down")
                    break
        except (OSError, ValueError) as e:
            logger.error("Error polling stdin: %s", e)
        finally:
            selector.close()

        self._running = False
        self._finish()

    def _read_available(self) -> bool:
        """Read whatever stdin holds and dispatch complete lines.

        Returns:
            False on EOF.
        """
        try:
            chunk = os.read(self._fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return True
        if not chunk:
            return False
        with self._buffer_lock:
            self._buffer.extend(chunk)
        self._dispatch_lines()
        return True

    def _dispatch_lines(self) -> None:
        with self._buffer_lock:
            end = self._buffer.rfind(b"\n")
            if end < 0:
                return
            complete = bytes(self._buffer[: end + 1])
            del self._buffer[: end + 1]

        # Lines stay bytes; decoding belongs to the codec
        for raw in complete.splitlines():
            line = raw.strip()
            if line:
                self._emit_message(line, self.connection)

    def _drain_buffer(self) -> None:
        if self._fd is not None:
            try:
                self._read_available()
            except OSError:
                pass
        self._dispatch_lines()
        with self._buffer_lock:
            if self._buffer.strip():
                logger.warning("Discarding %d bytes of incomplete input", len(self._buffer))
            self._buffer.clear()

    def _restore(self) -> None:
        atexit.unregister(self.stop)
        for signum, previous in self._previous_handlers.items():
            try:
                signal.signal(signum, previous)
            except ValueError:
                pass
        self._previous_handlers.clear()
        if self._fd is not None:
            try:
                os.set_blocking(self._fd, self._was_blocking)
            except OSError:
                pass

    def _register_signal_handlers(self) -> None:
        if not self._install_signal_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info("Received signal %d, shutting down", signum)
        self.stop()

    def send(self, data: str) -> int:
        return 1 if self.connection.send(data) else 0

    def get_buffer_size(self) -> int:
        with self._buffer_lock:
            return len(self._buffer)

    def get_info(self) -> dict[str, Any]:
        return {
            "type": "stdio",
            "mode": "polling",
            "buffer_interval": self._buffer_interval,
            "buffer_size": self.get_buffer_size(),
            "running": self._running,
        }
