"""
=============================================================================
ECHO SERVER
=============================================================================

The application object. Builds the core components from a ServerConfig,
runs the event loop and tears everything down again.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      EchoServer.run()                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   _setup_logging()                                                   │
    │   start()                                                            │
    │       ├──► config.validate()                                         │
    │       ├──► Listener.from_config()   socket/bind/listen (fatal)       │
    │       ├──► Multiplexer()            epoll_create (fatal)             │
    │       └──► EventLoop(...)           watch listener (fatal)           │
    │   _setup_signals()                  SIGINT/SIGTERM → stop()          │
    │   loop.run_forever()                ◄── blocks here                  │
    │   _shutdown()                                                        │
    │       ├──► close every client                                        │
    │       ├──► close wake-up pipe, epoll, listener                       │
    │       └──► restore signal handlers                                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Usage:
    server = EchoServer(ServerConfig(port=9901))
    server.run()   # until Ctrl+C

From a test (background thread):
    server = EchoServer(ServerConfig(host="127.0.0.1", port=0))
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    server.wait_until_ready(5.0)
    ...
    server.stop()
=============================================================================
"""

import signal
import logging
import threading
from typing import Optional, Tuple

from .config import ServerConfig
from .core import EventLoop, Listener, Multiplexer


logger = logging.getLogger(__name__)


class EchoServer:
    """
    Single-threaded epoll echo server.

    Args:
        config: Server configuration. Defaults to ServerConfig().
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()

        self._listener: Optional[Listener] = None
        self._multiplexer: Optional[Multiplexer] = None
        self._loop: Optional[EventLoop] = None

        self._bound_address: Optional[Tuple[str, int]] = None
        self._stop_requested = False
        self._ready = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._loop is not None and self._loop.is_running

    @property
    def address(self) -> Tuple[str, int]:
        """The address actually bound (port 0 resolved)."""
        if self._bound_address is None:
            return (self.config.host, self.config.port)
        return self._bound_address

    @property
    def loop(self) -> Optional[EventLoop]:
        return self._loop

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """
        Create listener, multiplexer and event loop without serving yet.

        Raises:
            ValueError: Invalid configuration.
            SetupError: socket/bind/listen/epoll failure.
        """
        self.config.validate()

        self._listener = Listener.from_config(self.config)
        self._bound_address = self._listener.address
        try:
            self._multiplexer = Multiplexer()
            self._loop = EventLoop(self.config, self._listener, self._multiplexer)
        except Exception:
            self._release()
            raise

        if self._stop_requested:
            self._loop.stop()

        self._ready.set()

    def run(self):
        """
        Start the server and serve until stop() or SIGINT/SIGTERM.

        Raises:
            SetupError: The server could not start, or poll() failed.
        """
        self._setup_logging()
        self.start()

        self._setup_signals()
        self._print_startup_banner()

        try:
            self._loop.run_forever()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def stop(self):
        """Request shutdown. Safe from other threads and signal handlers."""
        self._stop_requested = True
        if self._loop is not None:
            self._loop.stop()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the listener is bound and the loop is built."""
        return self._ready.wait(timeout)

    def stats(self) -> dict:
        if self._loop is None:
            return {"open_connections": 0, "accepted_total": 0, "closed_total": 0, "events_handled": 0}
        return self._loop.stats()

    # =========================================================================
    # SETUP HELPERS
    # =========================================================================

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("echoserver").setLevel(level)

    def _setup_signals(self):
        """
        Turn SIGINT (Ctrl+C) and SIGTERM (kill, docker stop) into stop().

        Signal handlers can only be installed from the main thread; a
        server running in a background thread (tests) skips this.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.stop()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def _print_startup_banner(self):
        host, port = self.address
        print()
        print("╔══════════════════════════════════════════════════════════════╗")
        print(f"  echoserver listening on {host}:{port}")
        print(f"  epoll batch: {self.config.max_events} events, read buffer: {self.config.buffer_size} bytes")
        print("  Press Ctrl+C to stop")
        print("╚══════════════════════════════════════════════════════════════╝")
        print()

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def _shutdown(self):
        logger.info("Shutting down server...")
        stats = self.stats()

        if self._loop is not None:
            self._loop.registry.close_all()

        self._release()
        self._restore_signals()

        logger.info(
            f"Server stopped ({stats['accepted_total']} connections accepted, "
            f"{stats['events_handled']} events handled)"
        )

    def _release(self):
        """Close loop, multiplexer and listener, in that order."""
        if self._loop is not None:
            self._loop.close()
        if self._multiplexer is not None:
            self._multiplexer.close()
        if self._listener is not None:
            self._listener.close()
