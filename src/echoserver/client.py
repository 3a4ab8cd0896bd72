"""
=============================================================================
LOAD-GENERATING CLIENT
=============================================================================

A disposable client that hammers the echo server with short sessions:

    ┌─────────────────────────────────────────────────────────────────┐
    │   thread 1..K   (K = number of CPUs by default)                  │
    │       connect()       127.0.0.1:9901                             │
    │       sendall()       b"Hello, world!"                           │
    │       recv(1024)      b"Hello from server!\\n"                     │
    │       close()                                                    │
    │       print 0 (success) or -1 (any step failed)                  │
    └─────────────────────────────────────────────────────────────────┘

The threads share nothing but the result list. This is a test aid for the
server, not part of its concurrency model.

Usage:
    python -m echoserver.client
    python -m echoserver.client --port 9000 --connections 64
    echoserver-client -n 8 -m "ping"
=============================================================================
"""

import argparse
import logging
import socket
import sys
import threading
from typing import List, Optional, Sequence

from .config import ClientConfig, DEFAULT_PORT


logger = logging.getLogger(__name__)

SUCCESS = 0
FAILURE = -1


def round_trip(config: ClientConfig) -> int:
    """
    Connect, send the payload, read one reply, close.

    Returns:
        0 on success, -1 if creating the socket, connecting, writing or
        reading failed (an empty read counts as a failed read).
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as e:
        logger.error(f"Failed to create socket: {e}")
        return FAILURE

    with sock:
        sock.settimeout(config.timeout)

        try:
            sock.connect((config.host, config.port))
        except OSError as e:
            logger.error(f"Failed to connect to {config.host}:{config.port}: {e}")
            return FAILURE
        logger.info("Connected to server")

        try:
            sock.sendall(config.payload)
        except OSError as e:
            logger.error(f"Failed to write to socket: {e}")
            return FAILURE
        logger.info(f"Sent: {config.payload!r}")

        try:
            data = sock.recv(config.buffer_size)
        except OSError as e:
            logger.error(f"Failed to read from socket: {e}")
            return FAILURE

        if not data:
            logger.error("Failed to read from socket: connection closed by server")
            return FAILURE
        logger.info(f"Received: {data!r}")

    return SUCCESS


def run_clients(config: ClientConfig) -> List[int]:
    """
    Run ``config.connections`` round trips concurrently, one thread each.

    Returns:
        One result code per thread, in completion order.
    """
    results: List[int] = []
    lock = threading.Lock()

    def worker():
        code = round_trip(config)
        with lock:
            results.append(code)
        print(code, flush=True)

    threads = [
        threading.Thread(target=worker, name=f"echo-client-{i}")
        for i in range(config.connections)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Load generator for the epoll echo server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m echoserver.client                    # One connection per CPU
  python -m echoserver.client -n 100             # 100 concurrent connections
  python -m echoserver.client -p 9000 -m ping    # Custom port and payload
        """
    )
    parser.add_argument("--host", "-H", default="127.0.0.1",
                        help="Server address (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=DEFAULT_PORT,
                        help=f"Server port (default: {DEFAULT_PORT})")
    parser.add_argument("--connections", "-n", type=int, default=None,
                        help="Number of concurrent connections (default: CPU count)")
    parser.add_argument("--message", "-m", default="Hello, world!",
                        help="Payload to send (default: 'Hello, world!')")
    parser.add_argument("--timeout", "-t", type=float, default=5.0,
                        help="Socket timeout in seconds (default: 5)")
    parser.add_argument("--log-level", "-l", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default="WARNING", help="Logging level (default: WARNING)")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(threadName)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = ClientConfig(
        host=args.host,
        port=args.port,
        payload=args.message.encode(),
        timeout=args.timeout,
    )
    if args.connections is not None:
        config.connections = args.connections

    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))

    results = run_clients(config)
    failed = results.count(FAILURE)
    print(f"{len(results) - failed}/{len(results)} round trips succeeded", file=sys.stderr)
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
