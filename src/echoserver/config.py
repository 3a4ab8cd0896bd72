"""
=============================================================================
SERVER AND CLIENT CONFIGURATION
=============================================================================

Centralized configuration for the echo server and its load generator.

Every "magic number" of the event loop lives here instead of being baked
into the code that uses it:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHO USES WHICH SETTING?                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Listener       host, port, backlog, reuse_address                 │
    │   Multiplexer    max_events (batch size per poll)                   │
    │   Event loop     buffer_size, reply, idle_timeout                   │
    │   EchoServer     log_level                                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONFIGURATION SOURCES
=============================================================================

Priority (highest to lowest):

    1. Command-line arguments      python -m echoserver --port 9000
    2. Environment variables       ECHO_PORT=9000 python -m echoserver
    3. Default values (below)

=============================================================================
"""

import os
import socket
from dataclasses import dataclass
from typing import Optional


DEFAULT_PORT = 9901
DEFAULT_REPLY = b"Hello from server!\n"
DEFAULT_PAYLOAD = b"Hello, world!"


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class ServerConfig:
    """
    Configuration for the echo server.

    Development:
        ServerConfig(host="127.0.0.1", log_level="DEBUG")

    Load testing:
        ServerConfig(max_events=64, buffer_size=16384, log_level="WARNING")
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to.
    "0.0.0.0" accepts connections on every IPv4 interface.
    """

    port: int = DEFAULT_PORT
    """
    The TCP port to listen on. 0 lets the OS pick a free port
    (handy for tests, read the real one back from Listener.address).
    """

    backlog: int = socket.SOMAXCONN
    """
    Accept queue length handed to listen(). Defaults to the platform
    maximum so bursts of clients are not refused while the loop is busy.
    """

    reuse_address: bool = True
    """
    Set SO_REUSEADDR so a restarted server can bind while old sockets
    sit in TIME_WAIT.
    """

    # ─────────────────────────────────────────────────────────────────────
    # EVENT LOOP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_events: int = 10
    """
    Maximum number of ready events returned by one poll call.
    Anything beyond that is reported by the next poll.
    """

    buffer_size: int = 1024
    """
    Size of each recv() call in bytes. A larger burst is read with
    several successive calls within the same notification.
    """

    reply: bytes = DEFAULT_REPLY
    """
    Payload written to a client every time it becomes writable.
    """

    idle_timeout: Optional[float] = None
    """
    Close connections that saw no I/O for this many seconds.
    None = never (the poll then blocks without a timeout).
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR).
    DEBUG logs every read and write, which is very noisy under load.
    """

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        ECHO_HOST          Server host (default: 0.0.0.0)
        ECHO_PORT          Server port (default: 9901)
        ECHO_MAX_EVENTS    Events per poll (default: 10)
        ECHO_BUFFER_SIZE   Bytes per recv() (default: 1024)
        ECHO_IDLE_TIMEOUT  Idle seconds before close (default: none)
        ECHO_LOG_LEVEL     Logging level (default: INFO)
        """
        return cls(
            host=os.getenv("ECHO_HOST", "0.0.0.0"),
            port=int(os.getenv("ECHO_PORT", str(DEFAULT_PORT))),
            max_events=int(os.getenv("ECHO_MAX_EVENTS", "10")),
            buffer_size=int(os.getenv("ECHO_BUFFER_SIZE", "1024")),
            idle_timeout=_optional_float(os.getenv("ECHO_IDLE_TIMEOUT")),
            log_level=os.getenv("ECHO_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once at startup so a bad value fails immediately instead
        of surfacing as a strange socket error later.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.max_events < 1:
            raise ValueError("max_events must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if not self.reply:
            raise ValueError("reply must not be empty")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")


@dataclass
class ClientConfig:
    """Configuration for the load-generating client."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    payload: bytes = DEFAULT_PAYLOAD
    buffer_size: int = 1024

    connections: int = os.cpu_count() or 1
    """
    Number of client threads, one connect-send-read-close cycle each.
    Defaults to the number of CPUs.
    """

    timeout: Optional[float] = 5.0
    """Per-socket timeout so a dead server cannot hang a worker forever."""

    def validate(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 1-65535.")
        if self.connections < 1:
            raise ValueError("connections must be >= 1")
        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
