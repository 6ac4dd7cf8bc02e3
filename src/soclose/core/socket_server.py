"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Binds the listening socket and runs the accept loop. Think of it as the
"ears" of soclose: it accepts connections and hands each one off, and
never looks at what travels over them.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create a socket (AF_INET or AF_INET6 from the host)
    2. bind()      Associate the socket with IP:PORT   ← fatal on failure
    3. listen()    Let the OS queue incoming connections
    4. accept()    Wait for a client, get a NEW socket for it
                   └─ repeated forever; a failed accept is skipped

=============================================================================
ACCEPT LOOP FAILURES
=============================================================================

accept() can fail for reasons that say nothing about the server itself:

    ECONNABORTED   Client reset the connection while it sat in the backlog
    EMFILE/ENFILE  Too many open files (connections are still draining)
    ENOBUFS        Kernel short on memory

All of them are logged and, after a short back-off so a persistent
EMFILE does not spin the loop, it goes on. Only a failure of the
listening socket itself (closed by shutdown()) ends the loop.

=============================================================================
"""

import socket
import time
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP socket server.

    Manages the listening socket and connection acceptance.
    Designed to be used by the higher-level SoCloseServer.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(callback)                                                   │
    │        │                                                             │
    │        ├──► _create_socket()   socket() + SO_REUSEADDR               │
    │        ├──► bind()             raises on failure                     │
    │        ├──► listen()                                                 │
    │        │                                                             │
    │        └──► _accept_loop()     BLOCKS here                           │
    │                 │                                                    │
    │                 └──► while running:                                  │
    │                         accept()                                     │
    │                         Connection(sock, addr, timeout)              │
    │                         callback(conn)                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        def handle_connection(conn: Connection):
            ...  # must return quickly; run the protocol elsewhere

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks
    """

    # accept() wakes up this often to notice shutdown()
    POLL_INTERVAL = 0.5

    # Pause after a failed accept() before trying again
    ACCEPT_ERROR_BACKOFF = 0.1

    def __init__(self, config: ServerConfig, io_timeout: Optional[float] = None):
        """
        Initialize the socket server.

        Args:
            config: Server configuration containing host, port, backlog.
            io_timeout: Per-operation deadline given to every Connection.

        Note: This does NOT create the socket. That happens in start().
        """
        self.config = config
        self.io_timeout = io_timeout

        self._socket: Optional[socket.socket] = None
        self._running = False

        # Set once the socket is listening, so tests can wait on it
        self._listening = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        """
        The address actually bound.

        Differs from the configured one when port 0 asked the OS for an
        ephemeral port.
        """
        if self._socket is not None:
            return self._socket.getsockname()[:2]
        return self.config.address

    def _create_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # SO_REUSEADDR: avoid "Address already in use" while old
        # connections sit in TIME_WAIT after a restart
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Timeout on accept() only, so the loop can check _running
        sock.settimeout(self.POLL_INTERVAL)

        return sock

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen, and accept connections until shutdown().

        Args:
            connection_handler: Called in the accept thread for every new
                                connection. It must not block; hand the
                                connection to another thread.

        Raises:
            OSError: If the address cannot be bound (in use, not local,
                     permission denied). This is fatal for the process.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._cleanup()
            raise

        self._running = True
        self._listening.set()

        host, port = self.address
        logger.info(f"Server listening on {host}:{port}")

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running:
                    break  # Listening socket closed by shutdown()
                logger.warning(f"Accept error (skipped): {e}")
                # EMFILE and friends persist until connections close
                time.sleep(self.ACCEPT_ERROR_BACKOFF)
                continue

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            try:
                # Connection sets the per-operation deadline, replacing the
                # accept() poll timeout the socket may have inherited
                conn = Connection(
                    socket=client_socket,
                    address=client_address,
                    timeout=self.io_timeout,
                )
            except OSError as e:
                logger.warning(f"Could not set up connection from {client_address[0]}: {e}")
                client_socket.close()
                continue

            connection_handler(conn)

    def shutdown(self):
        """
        Stop the accept loop.

        Connections already handed off are NOT touched. There is no way to
        abort a running connection from outside; it ends on its own or with
        the process.
        """
        logger.info("Shutting down socket server...")
        self._running = False

    def _cleanup(self):
        self._running = False
        self._listening.clear()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass  # Already closed
            self._socket = None

        logger.info("Socket server stopped")

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the socket is bound and listening.

        Useful for tests that start the server in a background thread.

        Returns:
            True once listening, False on timeout.
        """
        return self._listening.wait(timeout)
