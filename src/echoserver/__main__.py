"""
=============================================================================
ECHO SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (0.0.0.0:9901)
    python -m echoserver

    # Custom port, verbose
    python -m echoserver --port 9000 --log-level DEBUG

    # Bigger epoll batches and read buffer
    python -m echoserver --max-events 64 --buffer-size 16384

    # Drop clients that stay silent for 30 seconds
    python -m echoserver --idle-timeout 30

Environment variables (ECHO_PORT, ECHO_LOG_LEVEL, ...) provide the
defaults, command-line flags override them.

Exit status: 0 after a signal-initiated shutdown, 1 if the server could
not start (port in use, epoll unavailable, ...) or poll() failed.
=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .config import ServerConfig
from .errors import SetupError
from .server import EchoServer


logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    """Parse arguments, build the config, run the server."""
    env_error = None
    try:
        defaults = ServerConfig.from_env()
    except ValueError as e:
        env_error = e
        defaults = ServerConfig()

    parser = argparse.ArgumentParser(
        description="Single-threaded edge-triggered epoll echo server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m echoserver                        # Run with defaults
  python -m echoserver --port 9000            # Custom port
  python -m echoserver --host 127.0.0.1       # Loopback only
  python -m echoserver --max-events 64        # Larger poll batches
  python -m echoserver --idle-timeout 30      # Reap idle clients
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # EVENT LOOP ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--max-events", "-e",
        type=int,
        default=defaults.max_events,
        help=f"Maximum events per poll call (default: {defaults.max_events})"
    )

    parser.add_argument(
        "--buffer-size", "-b",
        type=int,
        default=defaults.buffer_size,
        help=f"Bytes per recv() call (default: {defaults.buffer_size})"
    )

    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=defaults.idle_timeout,
        help="Close connections idle for this many seconds (default: never)"
    )

    parser.add_argument(
        "--reply",
        default=None,
        help="Reply sent on every writable notification (default: 'Hello from server!\\n')"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level.upper()})"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"echoserver {__version__}"
    )

    args = parser.parse_args(argv)

    if env_error is not None:
        parser.error(f"invalid environment: {env_error}")

    config = ServerConfig(
        host=args.host,
        port=args.port,
        max_events=args.max_events,
        buffer_size=args.buffer_size,
        idle_timeout=args.idle_timeout,
        log_level=args.log_level,
    )
    if args.reply is not None:
        config.reply = args.reply.encode()

    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))

    server = EchoServer(config)

    try:
        server.run()
    except SetupError as e:
        logger.error(f"Server failed to start: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"Server failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
