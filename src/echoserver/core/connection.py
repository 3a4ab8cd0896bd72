"""
=============================================================================
CONNECTION STATE
=============================================================================

A Connection wraps one accepted client socket for the lifetime of a TCP
session. The event loop owns every Connection; nothing here blocks.

=============================================================================
EDGE-TRIGGERED READS MUST DRAIN
=============================================================================

The client descriptors are watched in edge-triggered mode. The kernel
reports "readable" once, when the socket goes from empty to non-empty:

    ┌─────────────────────────────────────────────────────────────────────┐
    │            kernel receive buffer    │ notification                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │   empty ──► 4096 bytes arrive       │ EPOLLIN (one edge)            │
    │   recv(1024) → 1024, 3072 left      │ (nothing)                     │
    │   recv(1024) → 1024, 2048 left      │ (nothing)                     │
    │   recv(1024) → 1024, 1024 left      │ (nothing)                     │
    │   recv(1024) → 1024, empty          │ (nothing)                     │
    │   recv(1024) → BlockingIOError      │ drained, safe to poll again   │
    └─────────────────────────────────────────────────────────────────────┘

Stopping after the first recv() would leave 3072 bytes in the kernel and
no further notification would ever arrive for them. drain() therefore
loops until it sees the would-block condition (or EOF, or an error).

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    ACCEPTED ──────► REGISTERED ──────► CLOSED
        │                                  ▲
        └──────────────────────────────────┘
              (registration failed)

There are no buffering states: each notification is handled to
exhaustion before the loop polls again. The only thing a connection
carries between notifications is the unsent tail of a short write.
=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Tuple

from ..errors import ConnectionFailure


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    ACCEPTED = "accepted"      # accept() returned it, not yet watched
    REGISTERED = "registered"  # watched by the multiplexer
    CLOSED = "closed"          # unwatched and socket released


@dataclass
class DrainResult:
    """
    Outcome of one drain() call.

    Attributes:
        calls: Number of successful recv() calls that returned data.
        nbytes: Total bytes read.
        eof: True if the peer performed an orderly close.
    """
    calls: int = 0
    nbytes: int = 0
    eof: bool = False


@dataclass
class Connection:
    """
    One accepted client.

    Attributes:
        socket: The non-blocking client socket.
        address: Peer (ip, port) tuple.
        fd: Descriptor number, captured at accept time (fileno() turns
            into -1 once the socket is closed).
        state: Current lifecycle state.
        created_at: Timestamp when the connection was accepted.
        last_activity: Timestamp of the last successful read or write.
        bytes_read / bytes_written: Traffic counters for logging.
    """

    socket: socket.socket
    address: Tuple[str, int]

    fd: int = field(init=False)
    state: ConnectionState = ConnectionState.ACCEPTED
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    bytes_read: int = 0
    bytes_written: int = 0

    # Unsent tail of the last reply
    _pending: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.fd = self.socket.fileno()

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def is_open(self) -> bool:
        return self.state != ConnectionState.CLOSED

    @property
    def pending(self) -> int:
        """Number of reply bytes still waiting for a writable edge."""
        return len(self._pending)

    def idle_time(self, now: float) -> float:
        """Seconds since the last activity, measured against ``now``."""
        return now - self.last_activity

    # =========================================================================
    # READING
    # =========================================================================

    def drain(self, buffer_size: int) -> DrainResult:
        """
        Read everything the kernel has buffered for this socket.

        Each recv() gets its own freshly allocated buffer of at most
        ``buffer_size`` bytes. Data is logged and then dropped.

        Returns:
            DrainResult. ``eof`` is set when recv() returned b"" and the
            caller must close the connection.

        Raises:
            ConnectionFailure: recv() failed with anything other than
                the would-block condition.
        """
        result = DrainResult()

        while True:
            try:
                data = self.socket.recv(buffer_size)
            except BlockingIOError:
                # Normal exhaustion: nothing left until the next edge
                break
            except OSError as e:
                raise ConnectionFailure(f"read failed: {e}", fd=self.fd, cause=e) from e

            if not data:
                result.eof = True
                break

            result.calls += 1
            result.nbytes += len(data)
            self.bytes_read += len(data)
            self.last_activity = time.monotonic()
            logger.info(f"Read {len(data)} bytes from client {self.fd}: {data!r}")

        return result

    # =========================================================================
    # WRITING
    # =========================================================================

    def write_reply(self, reply: bytes) -> int:
        """
        Send one reply, or finish the previous one.

        If an earlier send() was short, the remaining tail is flushed
        first and no new reply is queued on this edge. Otherwise a fresh
        copy of ``reply`` is sent. Whatever the kernel does not accept
        stays pending until the next writable edge, so the peer always
        receives whole replies.

        Returns:
            Number of bytes the kernel accepted on this call.

        Raises:
            ConnectionFailure: send() failed (peer reset, broken pipe...).
        """
        data = self._pending or reply

        try:
            sent = self.socket.send(data)
        except BlockingIOError:
            sent = 0
        except OSError as e:
            raise ConnectionFailure(f"write failed: {e}", fd=self.fd, cause=e) from e

        self._pending = data[sent:]
        self.bytes_written += sent
        if sent:
            self.last_activity = time.monotonic()

        if self._pending:
            logger.warning(
                f"Partial write to client {self.fd}: {sent}/{len(data)} bytes, "
                f"{len(self._pending)} pending"
            )
        else:
            logger.info(f"Wrote {sent} bytes to client {self.fd}: {data!r}")

        return sent

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Release the socket.

        The registry unwatches the descriptor BEFORE calling this, so the
        multiplexer never holds a closed (or reused) descriptor number.
        Calling close() twice is a no-op.
        """
        if self.state == ConnectionState.CLOSED:
            return

        try:
            self.socket.close()
        except OSError as e:
            logger.warning(f"Error closing client {self.fd}: {e}")

        self.state = ConnectionState.CLOSED
