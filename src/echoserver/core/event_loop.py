"""
=============================================================================
SINGLE-THREADED EVENT LOOP
=============================================================================

The heart of the echo server. One thread, one epoll instance, any number
of clients. Every socket is non-blocking, so the only place the thread
ever waits is Multiplexer.poll().

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         run_forever()                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   while not stopped:                                                 │
    │       events = mux.poll(max_events, timeout)        ◄── sleeps here  │
    │       for event in events:                                           │
    │           │                                                          │
    │           ├── listener?  ──► accept until BlockingIOError            │
    │           │                  register each client (IN|OUT|ET)        │
    │           │                                                          │
    │           ├── wake-up pipe? ──► drain it (stop() was called)         │
    │           │                                                          │
    │           └── client?                                                │
    │                 ├── IN/ERR/HUP ──► drain: recv until would-block     │
    │                 │                  b"" → close, skip the rest        │
    │                 │                  error → close, skip the rest      │
    │                 └── OUT ──────────► write one reply (or its tail)    │
    │                                    error → close                     │
    │       close idle connections (only if idle_timeout is set)           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
FAILURE HANDLING
=============================================================================

SetupError (poll failed, listener could not be registered) propagates out
of run_forever(): the server cannot make progress.

ConnectionFailure (accept/recv/send on one socket) is logged and only the
affected connection is closed. Everybody else keeps being served.

=============================================================================
STOPPING
=============================================================================

poll() may block forever, so stop() cannot just flip a flag. It also
writes one byte to a wake-up pipe that is watched like any other
descriptor, which makes poll() return immediately. stop() is safe to call
from another thread or from a signal handler.
=============================================================================
"""

import os
import time
import logging
from typing import Optional

from ..config import ServerConfig
from ..errors import ConnectionFailure, SetupError
from .listener import Listener
from .multiplexer import Multiplexer, ReadyEvent, READABLE
from .registry import ConnectionRegistry


logger = logging.getLogger(__name__)


class EventLoop:
    """
    Accepts clients and serves them from a single thread.

    Args:
        config: Batch size, buffer size, reply payload, idle timeout.
        listener: The bound listening socket.
        multiplexer: The epoll wrapper shared with the registry.
        registry: Open connections. Created on ``multiplexer`` if omitted.

    Raises:
        SetupError: The listener could not be watched.
    """

    def __init__(
        self,
        config: ServerConfig,
        listener: Listener,
        multiplexer: Multiplexer,
        registry: Optional[ConnectionRegistry] = None,
    ):
        self.config = config
        self.listener = listener
        self.multiplexer = multiplexer
        self.registry = registry if registry is not None else ConnectionRegistry(multiplexer)

        self._stop_requested = False
        self._running = False
        self.events_handled = 0

        self._wakeup_r, self._wakeup_w = os.pipe()
        os.set_blocking(self._wakeup_r, False)
        os.set_blocking(self._wakeup_w, False)

        try:
            self.multiplexer.watch(self.listener.fileno(), READABLE)
            self.multiplexer.watch(self._wakeup_r, READABLE)
        except OSError as e:
            self._close_wakeup()
            raise SetupError(f"Failed to register listener with epoll: {e}") from e

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def run_forever(self):
        """Serve until stop() is called. Blocks the calling thread."""
        self._running = True
        logger.info("Event loop started")
        try:
            while not self._stop_requested:
                self.run_once()
        finally:
            self._running = False
            logger.info("Event loop stopped")

    def run_once(self, timeout: Optional[float] = None) -> int:
        """
        Poll once and dispatch every ready event.

        Args:
            timeout: Upper bound on the wait in seconds, None = forever.
                Shortened automatically when idle_timeout is configured.

        Returns:
            Number of events returned by this poll.
        """
        events = self.multiplexer.poll(self.config.max_events, self._poll_timeout(timeout))

        for event in events:
            self._dispatch(event)

        self.events_handled += len(events)

        if self.config.idle_timeout is not None:
            self.registry.close_idle(time.monotonic(), self.config.idle_timeout)

        return len(events)

    def stop(self):
        """Ask the loop to return from run_forever(). Idempotent."""
        self._stop_requested = True
        wakeup_w = self._wakeup_w
        if wakeup_w is None:
            return
        try:
            os.write(wakeup_w, b"\x00")
        except BlockingIOError:
            # Pipe full, the loop is already awake
            pass
        except OSError as e:
            # Pipe closed by a concurrent close(); nothing left to wake
            logger.debug(f"Wake-up write skipped: {e}")

    def close(self):
        """Release the wake-up pipe. Listener and multiplexer belong to the caller."""
        if self._wakeup_r is not None and not self.multiplexer.closed and self._wakeup_r in self.multiplexer:
            self.multiplexer.unwatch(self._wakeup_r)
        self._close_wakeup()

    def _close_wakeup(self):
        # Clear before closing so stop() never sees a descriptor being closed
        fds = (self._wakeup_r, self._wakeup_w)
        self._wakeup_r = self._wakeup_w = None
        for fd in fds:
            if fd is not None:
                os.close(fd)

    def _poll_timeout(self, timeout: Optional[float]) -> Optional[float]:
        if self.config.idle_timeout is None:
            return timeout

        deadline = self.registry.next_deadline(self.config.idle_timeout)
        if deadline is None:
            return timeout

        remaining = max(0.0, deadline - time.monotonic())
        return remaining if timeout is None else min(timeout, remaining)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def _dispatch(self, event: ReadyEvent):
        if event.fd == self.listener.fileno():
            if event.readable:
                self._accept_all()
        elif event.fd == self._wakeup_r:
            self._drain_wakeup()
        else:
            self._handle_client(event)

    def _drain_wakeup(self):
        try:
            while os.read(self._wakeup_r, 4096):
                pass
        except BlockingIOError:
            pass

    def _accept_all(self):
        """Accept until the listener would block."""
        while True:
            try:
                conn = self.listener.accept_one()
            except ConnectionFailure as e:
                # The listener stays registered; anything still queued is
                # reported again by the next poll.
                logger.warning(f"Accept error: {e}")
                return

            if conn is None:
                return

            try:
                self.registry.register(conn)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to watch client {conn.fd}: {e}")
                conn.close()
                continue

            logger.info(f"New connection from {conn.client_ip}:{conn.client_port}")

    def _handle_client(self, event: ReadyEvent):
        conn = self.registry.get(event.fd)
        if conn is None:
            logger.debug(f"Ignoring event {event.events:#x} for unknown fd {event.fd}")
            return

        # ─────────────────────────────────────────────────────────────────
        # READ: drain to exhaustion (edge-triggered)
        # ─────────────────────────────────────────────────────────────────
        # ERR and HUP are folded into the read path: recv() then reports
        # the error or returns b"".

        if event.readable or event.error or event.hangup:
            try:
                result = conn.drain(self.config.buffer_size)
            except ConnectionFailure as e:
                logger.warning(f"Client {event.fd}: {e}")
                self.registry.close(event.fd, reason="read error")
                return

            if result.eof:
                self.registry.close(event.fd, reason="peer closed")
                return

        # ─────────────────────────────────────────────────────────────────
        # WRITE: one reply per writable edge
        # ─────────────────────────────────────────────────────────────────

        if event.writable and conn.is_open:
            try:
                conn.write_reply(self.config.reply)
            except ConnectionFailure as e:
                logger.warning(f"Client {event.fd}: {e}")
                self.registry.close(event.fd, reason="write error")

    def stats(self) -> dict:
        """Counters for tests and the shutdown log line."""
        return {
            "open_connections": len(self.registry),
            "accepted_total": self.registry.accepted_total,
            "closed_total": self.registry.closed_total,
            "events_handled": self.events_handled,
        }
