"""
Unit tests for the connection registry.
"""

import time

import pytest

from echoserver.core.connection import Connection, ConnectionState
from echoserver.core.multiplexer import Multiplexer
from echoserver.core.registry import ConnectionRegistry


@pytest.fixture
def mux():
    with Multiplexer() as m:
        yield m


@pytest.fixture
def registry(mux) -> ConnectionRegistry:
    return ConnectionRegistry(mux)


@pytest.fixture
def conn(socket_pair) -> Connection:
    server_side, _ = socket_pair
    return Connection(socket=server_side, address=("127.0.0.1", 40000))


class TestConnectionRegistry:
    """Tests for ConnectionRegistry."""

    def test_register_watches(self, registry, mux, conn):
        """Test that registering watches the descriptor."""
        registry.register(conn)

        assert conn.fd in registry
        assert conn.fd in mux
        assert registry.get(conn.fd) is conn
        assert conn.state == ConnectionState.REGISTERED
        assert registry.accepted_total == 1

    def test_register_twice_fails(self, registry, conn):
        """Test that double registration is refused."""
        registry.register(conn)

        with pytest.raises(ValueError):
            registry.register(conn)

    def test_close_unwatches_then_closes(self, registry, mux, conn):
        """Test that close() deregisters and releases the socket."""
        registry.register(conn)
        fd = conn.fd

        assert registry.close(fd) is True

        assert fd not in registry
        assert fd not in mux
        assert conn.state == ConnectionState.CLOSED
        assert registry.closed_total == 1

    def test_no_double_close(self, registry, conn, monkeypatch):
        """Test that closing twice touches the socket once."""
        registry.register(conn)
        calls = []
        original = conn.close
        monkeypatch.setattr(conn, "close", lambda: (calls.append(1), original()))

        assert registry.close(conn.fd) is True
        assert registry.close(conn.fd) is False

        assert calls == [1]
        assert registry.closed_total == 1

    def test_closed_descriptor_never_reported(self, registry, mux, conn, socket_pair):
        """Test that poll() is silent about a closed connection."""
        _, peer = socket_pair
        registry.register(conn)
        fd = conn.fd

        registry.close(fd)
        peer.close()

        events = mux.poll(max_events=10, timeout=0.05)
        assert all(event.fd != fd for event in events)

    def test_close_idle(self, registry, conn):
        """Test that only idle connections are reaped."""
        registry.register(conn)
        now = time.monotonic()

        assert registry.close_idle(now, idle_timeout=60.0) == 0

        conn.last_activity = now - 120.0
        assert registry.close_idle(now, idle_timeout=60.0) == 1
        assert len(registry) == 0

    def test_next_deadline(self, registry, conn):
        """Test the earliest idle deadline."""
        assert registry.next_deadline(10.0) is None

        registry.register(conn)
        conn.last_activity = 100.0

        assert registry.next_deadline(10.0) == 110.0

    def test_close_all(self, registry, conn):
        """Test shutdown cleanup."""
        registry.register(conn)

        assert registry.close_all() == 1
        assert len(registry) == 0
        assert list(registry) == []
