"""
=============================================================================
LISTENING SOCKET
=============================================================================

The Listener owns the one bound, listening, NON-BLOCKING socket of the
server and turns pending connections into Connection objects.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()         Create the TCP socket
    2. setsockopt()     SO_REUSEADDR, restart without "Address in use"
    3. bind()           Reserve host:port (default 0.0.0.0:9901)
    4. listen()         Start queueing connections (backlog = SOMAXCONN)
    5. setblocking()    Non-blocking: accept() never stalls the loop
    6. accept()         Called repeatedly until it would block
    7. close()          At shutdown

Steps 1-5 are setup. If any of them fails the server cannot serve at all,
so they raise SetupError. accept() failures only concern one client and
raise ConnectionFailure.

=============================================================================
WHY ACCEPT IN A LOOP?
=============================================================================

The listener is registered level-triggered, but a single readiness event
may stand for many queued clients. Accepting until BlockingIOError empties
the backlog in one go instead of paying one poll() per client:

    ┌─────────────────────────────────────────────────────────────────┐
    │   poll() → listener readable                                     │
    │       accept() → client A                                        │
    │       accept() → client B                                        │
    │       accept() → client C                                        │
    │       accept() → BlockingIOError   (queue empty, back to poll)   │
    └─────────────────────────────────────────────────────────────────┘
=============================================================================
"""

import socket
import logging
from typing import Optional, Tuple

from ..config import ServerConfig
from ..errors import SetupError, ConnectionFailure
from .connection import Connection


logger = logging.getLogger(__name__)


def set_nonblocking(sock: socket.socket) -> None:
    """
    Switch a socket to non-blocking mode.

    Raises:
        SetupError: The flag could not be changed.
    """
    try:
        sock.setblocking(False)
    except OSError as e:
        raise SetupError(f"Failed to set non-blocking mode on fd {sock.fileno()}: {e}") from e


class Listener:
    """
    The server's listening socket.

    Usage:
        listener = Listener.create("0.0.0.0", 9901)
        conn = listener.accept_one()   # Connection or None
        listener.close()
    """

    def __init__(self, sock: socket.socket):
        self._socket: Optional[socket.socket] = sock
        self._fd = sock.fileno()

    @classmethod
    def create(
        cls,
        host: str,
        port: int,
        backlog: int = socket.SOMAXCONN,
        reuse_address: bool = True,
    ) -> "Listener":
        """
        Create, bind and start a non-blocking listening socket.

        Raises:
            SetupError: socket(), bind() or listen() failed.
        """
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise SetupError(f"Failed to create socket: {e}") from e

        try:
            if reuse_address:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise SetupError(f"Failed to bind to {host}:{port}: {e}") from e

        try:
            sock.listen(backlog)
        except OSError as e:
            sock.close()
            raise SetupError(f"Failed to listen on {host}:{port}: {e}") from e

        try:
            set_nonblocking(sock)
        except SetupError:
            sock.close()
            raise

        listener = cls(sock)
        logger.info(f"Listening on {listener.address[0]}:{listener.address[1]}")
        return listener

    @classmethod
    def from_config(cls, config: ServerConfig) -> "Listener":
        return cls.create(
            config.host,
            config.port,
            backlog=config.backlog,
            reuse_address=config.reuse_address,
        )

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (ip, port). Resolves port 0 to the real port."""
        if self._socket is None:
            raise SetupError("Listener is closed")
        return self._socket.getsockname()[:2]

    @property
    def socket(self) -> socket.socket:
        if self._socket is None:
            raise SetupError("Listener is closed")
        return self._socket

    def fileno(self) -> int:
        return self._fd

    def accept_one(self) -> Optional[Connection]:
        """
        Accept one pending client.

        Returns:
            A Connection wrapping a non-blocking client socket, or None
            when no connection is waiting (the would-block condition).

        Raises:
            ConnectionFailure: accept() failed for another reason
                (ECONNABORTED, EMFILE, ...). The listener stays usable.
        """
        try:
            client_socket, client_address = self.socket.accept()
        except BlockingIOError:
            return None
        except OSError as e:
            raise ConnectionFailure(f"accept failed: {e}", cause=e) from e

        try:
            client_socket.setblocking(False)
        except OSError as e:
            client_socket.close()
            raise ConnectionFailure(f"Failed to set non-blocking mode: {e}", cause=e) from e

        return Connection(socket=client_socket, address=client_address[:2])

    def close(self):
        """Close the listening socket. Safe to call more than once."""
        if self._socket is None:
            return
        self._socket.close()
        self._socket = None
        logger.debug("Listener closed")
