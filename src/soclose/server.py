"""
=============================================================================
SOCLOSE SERVER
=============================================================================

The orchestrator that ties the components together.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SOCLOSE ARCHITECTURE                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                      ┌─────────────────┐                             │
    │                      │  SoCloseServer  │                             │
    │                      └────────┬────────┘                             │
    │                               │                                      │
    │          ┌────────────────────┼────────────────────┐                 │
    │          ▼                    ▼                    ▼                 │
    │   ┌──────────────┐   ┌──────────────────┐  ┌──────────────┐         │
    │   │ SocketServer │   │ResponseTemplate  │  │ TimingPolicy │         │
    │   │ (accept loop)│   │ (head bytes)     │  │ (delays)     │         │
    │   └──────┬───────┘   └────────┬─────────┘  └──────┬───────┘         │
    │          │                    └─────────┬─────────┘                  │
    │          ▼                              ▼                            │
    │   ┌──────────────┐  thread per  ┌───────────────────┐                │
    │   │  Connection  │ ───────────► │ ConnectionHandler │                │
    │   └──────────────┘  connection  └───────────────────┘                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONCURRENCY
=============================================================================

Every accepted connection gets its own daemon thread. The threads share
the template, the timing policy and the handler, all of which are
immutable after __init__, so there is no lock anywhere on the data path.

A connection that sleeps (throttle, idle phase) or blocks on a client
that never reads only ties up its own thread. The accept loop and every
other connection keep going.

Daemon threads also mean in-flight connections are simply abandoned
when the process exits. There is no graceful shutdown: soclose runs
until it is killed.

=============================================================================
"""

import logging
import threading
from typing import Optional

from .config import ServerConfig
from .core import SocketServer, Connection, ConnectionHandler
from .errors import ProtocolError
from .response import ResponseTemplate
from .timing import TimingPolicy


logger = logging.getLogger(__name__)


class SoCloseServer:
    """
    HTTP responder that promises more data than it sends.

    Usage:
        config = ServerConfig(file_size=100 * MiB, send=95 * MiB, port=8080)
        server = SoCloseServer(config)
        server.run()  # Blocks; only a bind error ever comes back out
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        """
        Build the immutable per-server state.

        Args:
            config: Server configuration. Uses defaults if not provided.

        Raises:
            ConfigError: If the configuration is invalid.
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        # Computed once, shared read-only by all connection threads
        self.template = ResponseTemplate.from_config(self.config)
        self.timing = TimingPolicy.from_config(self.config)
        self._handler = ConnectionHandler(self.template, self.timing)

        self._socket_server = SocketServer(self.config, io_timeout=self.timing.io_deadline)

        # Only created when a connection cap is configured
        self._slots: Optional[threading.BoundedSemaphore] = None
        if self.config.max_connections is not None:
            self._slots = threading.BoundedSemaphore(self.config.max_connections)

    @property
    def address(self):
        """The bound (host, port), once listening."""
        return self._socket_server.address

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def run(self, setup_logging: bool = True) -> None:
        """
        Start the server (blocking).

        Runs the accept loop in the calling thread. It has no normal
        return: it ends only when the process is killed or, for tests and
        embedding code, when shutdown() is called from another thread.

        Raises:
            OSError: If the address cannot be bound.
        """
        if setup_logging:
            self._setup_logging()

        self._log_parameters()
        self._socket_server.start(self._dispatch)

    def shutdown(self) -> None:
        """Stop accepting connections. Running connections are left alone."""
        self._socket_server.shutdown()

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_listening(timeout)

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("soclose").setLevel(level)

    def _log_parameters(self):
        timing = self.timing
        logger.info(
            f"Declaring {self.template.declared_size} bytes, sending "
            f"{timing.block_count} x {timing.block_size} = {timing.body_size} bytes"
        )
        if timing.inter_block_delay:
            logger.info(
                f"Throttled to {self.config.throttle} bytes/s "
                f"({timing.inter_block_delay * 1000:.3f} ms after each block)"
            )
        if timing.idle_after_send:
            logger.info(f"Holding connections open for {timing.idle_after_send}s after the body")
        if timing.io_deadline is None:
            logger.info("I/O deadline disabled")
        else:
            logger.info(f"I/O deadline: {timing.io_deadline}s per read/write")

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _dispatch(self, conn: Connection):
        """
        Hand a new connection to its own thread.

        Called by SocketServer in the accept thread, so it must not block.
        """
        if self._slots is not None and not self._slots.acquire(blocking=False):
            logger.warning(
                f"[{conn.id}] Connection limit ({self.config.max_connections}) reached, "
                f"closing connection from {conn.client_ip}:{conn.client_port}"
            )
            conn.close(drain=False)
            return

        thread = threading.Thread(
            target=self._process_connection,
            args=(conn,),
            name=f"conn-{conn.id}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            # "can't start new thread": out of threads, drop this one only
            logger.error(f"[{conn.id}] Could not start handler thread: {e}")
            conn.close(drain=False)
            if self._slots is not None:
                self._slots.release()

    def _process_connection(self, conn: Connection):
        """
        Run the protocol on one connection (runs in its own thread).

        This is the ONLY place per-connection errors are caught. Nothing
        raised here reaches the accept loop or another connection.
        """
        logger.info(f"[{conn.id}] Handling connection from {conn.client_ip}:{conn.client_port} …")

        try:
            with conn:  # Context manager ensures the socket is closed
                self._handler.handle(conn)
        except ProtocolError as e:
            logger.info(f"[{conn.id}] Connection closed due to error: {e}")
        except OSError as e:
            logger.info(f"[{conn.id}] Connection closed due to error: {str(e) or type(e).__name__}")
        except Exception as e:
            logger.exception(f"[{conn.id}] Unexpected handler error: {e}")
        else:
            logger.info(f"[{conn.id}] All data sent.")
        finally:
            if self._slots is not None:
                self._slots.release()
