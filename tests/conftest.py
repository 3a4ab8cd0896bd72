"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from echoserver import EchoServer, ServerConfig


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def config(free_port: int) -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=free_port,
        log_level="WARNING",
    )


@pytest.fixture
def socket_pair() -> Generator[Tuple[socket.socket, socket.socket], None, None]:
    """Connected (server side, peer side) pair; server side non-blocking."""
    server_side, peer_side = socket.socketpair()
    server_side.setblocking(False)
    peer_side.settimeout(2.0)
    yield server_side, peer_side
    for s in (server_side, peer_side):
        s.close()


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it returns True or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RunningServer:
    """Test server helper that runs in a background thread."""

    def __init__(self, server: EchoServer):
        self.server = server
        self._thread: threading.Thread = None
        self.error: BaseException = None

    @property
    def address(self) -> Tuple[str, int]:
        return self.server.address

    def _run(self):
        try:
            self.server.run()
        except BaseException as e:
            self.error = e

    def start(self):
        """Start server in background thread and wait until it accepts."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(5.0):
            raise RuntimeError(f"Server failed to start: {self.error}")

        for _ in range(50):  # 5 seconds max
            try:
                with socket.create_connection(self.address, timeout=1.0):
                    break
            except ConnectionRefusedError:
                time.sleep(0.1)
        else:
            raise RuntimeError("Server failed to start")

        # The readiness connection above is closed again; let the loop reap it
        wait_for(lambda: self.server.stats()["open_connections"] == 0)

    def connect(self, timeout: float = 5.0) -> socket.socket:
        return socket.create_connection(self.address, timeout=timeout)

    def stop(self):
        """Stop the server."""
        self.server.stop()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    """Create and start a test server."""
    test_srv = RunningServer(EchoServer(config))
    test_srv.start()

    yield test_srv

    test_srv.stop()
