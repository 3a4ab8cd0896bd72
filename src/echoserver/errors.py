"""
=============================================================================
ERROR TIERS
=============================================================================

The echo server distinguishes two kinds of failure:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ Tier            │ Examples                     │ Reaction           │
    ├─────────────────────────────────────────────────────────────────────┤
    │ SetupError      │ socket(), bind(), listen(),  │ Log, stop process  │
    │ (fatal)         │ epoll create/register/wait   │ with exit code 1   │
    ├─────────────────────────────────────────────────────────────────────┤
    │ ConnectionFailure│ accept(), recv(), send()    │ Log, close that    │
    │ (recoverable)   │ errors on ONE descriptor     │ descriptor only    │
    └─────────────────────────────────────────────────────────────────────┘

A fatal error means the server cannot serve anybody. Retrying would not
help (the port is taken, the process is out of descriptors, ...).

A recoverable error affects a single client. Every other connection keeps
being served; the failed client has to reconnect.
=============================================================================
"""

from typing import Optional


class EchoServerError(Exception):
    """Base class for all echo server errors."""


class SetupError(EchoServerError):
    """The server cannot start or can no longer make progress."""


class ConnectionFailure(EchoServerError):
    """
    An I/O failure scoped to a single client descriptor.

    Attributes:
        fd: The descriptor the failure happened on (None for accept()).
        cause: The underlying OSError.
    """

    def __init__(self, message: str, fd: Optional[int] = None, cause: Optional[OSError] = None):
        super().__init__(message)
        self.fd = fd
        self.cause = cause
