"""
=============================================================================
CORE MODULE
=============================================================================

The event-driven networking core of the echo server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          COMPONENTS                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   listener.py     Bound non-blocking listening socket, accept_one()  │
    │   multiplexer.py  select.epoll wrapper: watch / unwatch / poll       │
    │   connection.py   Per-client state, drain() and write_reply()        │
    │   registry.py     fd -> Connection, register / close lifecycle       │
    │   event_loop.py   The single-threaded dispatch loop                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

One thread serves every client. Nothing blocks except the poll call, so
a slow peer can never hold up the others.
=============================================================================
"""

from .listener import Listener, set_nonblocking
from .multiplexer import Multiplexer, ReadyEvent, READABLE, WRITABLE, EDGE, CLIENT_INTEREST
from .connection import Connection, ConnectionState, DrainResult
from .registry import ConnectionRegistry
from .event_loop import EventLoop

__all__ = [
    "Listener",
    "set_nonblocking",
    "Multiplexer",
    "ReadyEvent",
    "READABLE",
    "WRITABLE",
    "EDGE",
    "CLIENT_INTEREST",
    "Connection",
    "ConnectionState",
    "DrainResult",
    "ConnectionRegistry",
    "EventLoop",
]
