"""
=============================================================================
ECHOSERVER - EDGE-TRIGGERED EPOLL ECHO SERVICE
=============================================================================

A TCP service that serves any number of clients from ONE thread, using
Linux epoll in edge-triggered mode, plus a threaded load generator.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   __main__.py    CLI: argparse → ServerConfig → EchoServer.run()     │
    │        │                                                             │
    │        ▼                                                             │
    │   server.py      EchoServer: logging, signals, setup and teardown    │
    │        │                                                             │
    │        ▼                                                             │
    │   core/          Listener → Multiplexer → Registry → EventLoop       │
    │                                                                      │
    │   client.py      K threads, connect / send / recv / close            │
    │   config.py      ServerConfig, ClientConfig                          │
    │   errors.py      SetupError (fatal), ConnectionFailure (per client)  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PROTOCOL
=============================================================================

No framing. Every time a client socket becomes writable the server sends
b"Hello from server!\\n", whatever the client sent. The client sends
b"Hello, world!", reads one reply of up to 1024 bytes and disconnects.

=============================================================================
QUICK START
=============================================================================

    python -m echoserver --port 9901
    python -m echoserver.client --port 9901 --connections 8

    from echoserver import EchoServer, ServerConfig
    EchoServer(ServerConfig(port=9901)).run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig, ClientConfig
from .errors import EchoServerError, SetupError, ConnectionFailure
from .server import EchoServer

__all__ = [
    "EchoServer",
    "ServerConfig",
    "ClientConfig",
    "EchoServerError",
    "SetupError",
    "ConnectionFailure",
    "__version__",
]
