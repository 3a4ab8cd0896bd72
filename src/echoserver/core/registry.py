"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

Maps descriptor numbers to Connection objects and enforces the one rule
that keeps an epoll server from corrupting itself:

    A descriptor is watched by the multiplexer IF AND ONLY IF it is open.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   register(conn)                 close(fd)                          │
    │   ──────────────                 ─────────                          │
    │   1. mux.watch(fd)               1. pop from registry               │
    │   2. store in registry           2. mux.unwatch(fd)                 │
    │   3. state = REGISTERED          3. socket.close()                  │
    │                                  4. state = CLOSED                  │
    └─────────────────────────────────────────────────────────────────────┘

Unwatching BEFORE closing matters: once a descriptor is closed the kernel
may hand the same number to the next accept(). Closing a descriptor that
is no longer registered is a no-op, so there is never a double close.

The registry belongs to the event loop thread. No locking.
=============================================================================
"""

import logging
from typing import Dict, Iterator, Optional

from .connection import Connection, ConnectionState
from .multiplexer import Multiplexer, CLIENT_INTEREST


logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Open client connections, keyed by descriptor."""

    def __init__(self, multiplexer: Multiplexer, interest: int = CLIENT_INTEREST):
        self._multiplexer = multiplexer
        self._interest = interest
        self._connections: Dict[int, Connection] = {}

        self.accepted_total = 0
        self.closed_total = 0

    def register(self, conn: Connection) -> None:
        """
        Watch a freshly accepted connection.

        Raises:
            ValueError: The descriptor is already registered.
            OSError: The multiplexer refused it. The connection is left
                in ACCEPTED state; the caller closes it.
        """
        if conn.fd in self._connections:
            raise ValueError(f"fd {conn.fd} is already registered")

        self._multiplexer.watch(conn.fd, self._interest)
        self._connections[conn.fd] = conn
        conn.state = ConnectionState.REGISTERED
        self.accepted_total += 1

    def close(self, fd: int, reason: str = "closed") -> bool:
        """
        Deregister and close one connection.

        Returns:
            True if the connection was open and is now closed, False if
            the descriptor was not registered (already closed).
        """
        conn = self._connections.pop(fd, None)
        if conn is None:
            return False

        try:
            self._multiplexer.unwatch(fd)
        except (KeyError, OSError) as e:
            logger.warning(f"Failed to unwatch client {fd}: {e}")

        conn.close()
        self.closed_total += 1
        logger.info(
            f"Closed connection from {conn.client_ip}:{conn.client_port} "
            f"(fd {fd}, {reason}, {conn.bytes_read} bytes in, {conn.bytes_written} bytes out)"
        )
        return True

    def close_idle(self, now: float, idle_timeout: float) -> int:
        """Close every connection idle for at least ``idle_timeout`` seconds."""
        idle = [
            fd for fd, conn in self._connections.items()
            if conn.idle_time(now) >= idle_timeout
        ]
        for fd in idle:
            self.close(fd, reason="idle timeout")
        return len(idle)

    def next_deadline(self, idle_timeout: float) -> Optional[float]:
        """Monotonic time at which the next connection becomes idle."""
        if not self._connections:
            return None
        return min(conn.last_activity for conn in self._connections.values()) + idle_timeout

    def close_all(self) -> int:
        """Close everything (used at shutdown)."""
        fds = list(self._connections)
        for fd in fds:
            self.close(fd, reason="server shutdown")
        return len(fds)

    def get(self, fd: int) -> Optional[Connection]:
        return self._connections.get(fd)

    def __contains__(self, fd: int) -> bool:
        return fd in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))
