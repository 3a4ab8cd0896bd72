"""
=============================================================================
READINESS MULTIPLEXER (epoll)
=============================================================================

Thin wrapper over ``select.epoll``: one kernel object that watches any
number of descriptors and tells us which ones are ready.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ONE THREAD, MANY SOCKETS                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   watch(listener, READABLE)                                          │
    │   watch(client_1, READABLE | WRITABLE | EDGE)                        │
    │   watch(client_2, READABLE | WRITABLE | EDGE)                        │
    │                         │                                            │
    │                         ▼                                            │
    │   poll(max_events=10)  ◄── the ONLY place the thread sleeps          │
    │                         │                                            │
    │                         ▼                                            │
    │   [ReadyEvent(fd=5, IN), ReadyEvent(fd=7, IN|OUT), ...]              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LEVEL VS EDGE TRIGGERED
=============================================================================

Level-triggered (default): poll() keeps reporting a descriptor for as long
as it is ready. Used for the listener; the accept loop empties it anyway.

Edge-triggered (EPOLLET): poll() reports a descriptor once per transition
into the ready state. Used for clients. Cheaper, but the consumer MUST
read until BlockingIOError, otherwise the leftover bytes never produce a
new notification.

EPOLLERR and EPOLLHUP are always reported, whether requested or not.
=============================================================================
"""

import select
import socket
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from ..errors import SetupError


logger = logging.getLogger(__name__)


READABLE = select.EPOLLIN
WRITABLE = select.EPOLLOUT
EDGE = select.EPOLLET

# Interest mask for accepted clients: read-or-write, edge-triggered
CLIENT_INTEREST = READABLE | WRITABLE | EDGE

FileLike = Union[int, socket.socket]


def _fd(target: FileLike) -> int:
    return target if isinstance(target, int) else target.fileno()


@dataclass(frozen=True)
class ReadyEvent:
    """One descriptor reported by poll() together with its event bits."""

    fd: int
    events: int

    @property
    def readable(self) -> bool:
        return bool(self.events & select.EPOLLIN)

    @property
    def writable(self) -> bool:
        return bool(self.events & select.EPOLLOUT)

    @property
    def hangup(self) -> bool:
        return bool(self.events & (select.EPOLLHUP | select.EPOLLRDHUP))

    @property
    def error(self) -> bool:
        return bool(self.events & select.EPOLLERR)


class Multiplexer:
    """
    Watch set plus the blocking poll() call.

    Usage:
        with Multiplexer() as mux:
            mux.watch(listener.socket, READABLE)
            for event in mux.poll(max_events=10):
                ...
    """

    def __init__(self):
        try:
            self._epoll: Optional[select.epoll] = select.epoll()
        except OSError as e:
            raise SetupError(f"Failed to create epoll instance: {e}") from e

        # fd -> interest mask
        self._watched: Dict[int, int] = {}

    @property
    def closed(self) -> bool:
        return self._epoll is None

    def fileno(self) -> int:
        return self._require_open().fileno()

    def _require_open(self) -> select.epoll:
        if self._epoll is None:
            raise SetupError("Multiplexer is closed")
        return self._epoll

    def watch(self, target: FileLike, interest: int) -> None:
        """
        Start watching a descriptor.

        Raises:
            OSError: The kernel refused the registration (already
                registered, bad descriptor, out of memory, ...). The
                caller decides whether that is fatal.
        """
        fd = _fd(target)
        self._require_open().register(fd, interest)
        self._watched[fd] = interest
        logger.debug(f"Watching fd {fd} (mask {interest:#x})")

    def unwatch(self, target: FileLike) -> None:
        """
        Stop watching a descriptor. Must be called while it is still open.

        Raises:
            KeyError: The descriptor is not being watched.
        """
        fd = _fd(target)
        if fd not in self._watched:
            raise KeyError(fd)

        del self._watched[fd]
        self._require_open().unregister(fd)
        logger.debug(f"Stopped watching fd {fd}")

    def poll(self, max_events: int, timeout: Optional[float] = None) -> List[ReadyEvent]:
        """
        Block until at least one watched descriptor is ready.

        Args:
            max_events: Upper bound on the batch size. Extra ready
                descriptors are reported by the next call.
            timeout: Seconds to wait. None waits forever.

        Returns:
            Ready events in the order the kernel returned them. Empty if
            the timeout elapsed.

        Raises:
            SetupError: epoll_wait() failed; the loop cannot go on.
        """
        try:
            ready = self._require_open().poll(
                -1 if timeout is None else timeout,
                max_events,
            )
        except OSError as e:
            raise SetupError(f"epoll_wait failed: {e}") from e

        return [ReadyEvent(fd, events) for fd, events in ready]

    def close(self):
        """Close the epoll instance. Safe to call more than once."""
        if self._epoll is None:
            return
        self._epoll.close()
        self._epoll = None
        self._watched.clear()

    def __contains__(self, target: FileLike) -> bool:
        return _fd(target) in self._watched

    def __len__(self) -> int:
        return len(self._watched)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
