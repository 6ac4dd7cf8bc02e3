"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps an accepted client socket with the small API the
connection handler needs: read an exact number of bytes, write a whole
buffer, and close properly no matter how the handler exits.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Client sends:
        send("GET / HTTP/1.1\\r\\n...")

    Server might receive ANY of these:
        recv() → "GET / HTTP/1.1..."   (everything)
        recv() → "GE"                  (partial!)
        recv() → "T / HTTP/1.1..."     (the rest)

So even "read the first 4 bytes" needs a loop: read_exact() keeps calling
recv() until it has exactly the bytes it asked for, or the peer hangs up.

The same is true for writing. send() may accept only part of a buffer when
the client is slow to read, so send_all() uses sendall(), which keeps
writing until every byte is in the kernel.

=============================================================================
DEADLINES
=============================================================================

socket.settimeout(t) applies to EACH blocking call separately:

    recv()  ──── up to t ────►  data       (window resets)
    recv()  ──── up to t ────►  data       (window resets)
    send()  ──── up to t ────►  TimeoutError

A connection is therefore never killed for being slow overall, only for a
single read or write that makes no progress for `t` seconds. Sleeping
between calls does not count against the deadline.

=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid

from ..errors import IncompleteRequestError


logger = logging.getLogger(__name__)

# Upper bounds on request bytes discarded while closing, and on the time spent
DRAIN_LIMIT = 64 * 1024
DRAIN_TIMEOUT = 0.5


class ConnectionState(Enum):
    """
    Connection lifecycle states.

    A handled connection walks these strictly in order, ending in either
    CLOSED (success) or ABORTED (any failure):

        NEW → AWAIT_REQUEST → SEND_HEAD → SEND_BODY → IDLE → CLOSED
                   │              │           │
                   └──────────────┴───────────┴──────────► ABORTED
    """
    NEW = "new"                      # Just accepted
    AWAIT_REQUEST = "await_request"  # Reading the method token
    SEND_HEAD = "send_head"          # Writing the response head
    SEND_BODY = "send_body"          # Writing body blocks
    IDLE = "idle"                    # Body done, holding the socket open
    CLOSED = "closed"                # Protocol finished, socket released
    ABORTED = "aborted"              # Protocol failed, socket released


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's address tuple (ip, port[, flowinfo, scope_id]).
        id: Short connection identifier (for logging).
        state: Current protocol state.
        created_at: Timestamp when connection was accepted.
        bytes_sent: Total bytes written, head included.
        timeout: Per-operation deadline, or None for blocking I/O.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    bytes_sent: int = 0

    # Configuration (passed from TimingPolicy)
    timeout: Optional[float] = None

    _closed: bool = field(default=False, repr=False)

    def __post_init__(self):
        # settimeout(None) puts the socket in plain blocking mode
        self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    @property
    def is_closed(self) -> bool:
        return self._closed

    # =========================================================================
    # I/O
    # =========================================================================

    def read_exact(self, size: int) -> bytes:
        """
        Read exactly `size` bytes.

        Raises:
            IncompleteRequestError: If the peer closes the connection first.
            TimeoutError: If a single recv() exceeds the deadline.
            OSError: On any other socket error.
        """
        buffer = b""
        while len(buffer) < size:
            chunk = self.socket.recv(size - len(buffer))
            if not chunk:
                raise IncompleteRequestError(expected=size, received=len(buffer))
            buffer += chunk
        return buffer

    def send_all(self, data: bytes) -> None:
        """
        Write the whole buffer.

        Unlike a plain send(), sendall() loops until the kernel accepted
        every byte. Errors propagate: a handler must stop writing to a
        connection the moment one write fails.
        """
        self.socket.sendall(data)
        self.bytes_sent += len(data)

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self, drain: bool = True):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): send FIN so the client sees end-of-response.
        2. Drain what the client sent. We only ever read the first 4 bytes
           of the request; closing with unread data makes the kernel answer
           with RST, which can destroy data still in flight to the client
           (a 405, or the tail of the body). At most DRAIN_LIMIT bytes are
           read, for at most DRAIN_TIMEOUT seconds in total.
        3. close(): release the file descriptor.

        Args:
            drain: Skip step 2 when False, for callers that must not wait
                   (the accept thread rejecting a connection).
        """
        if self._closed:
            return
        self._closed = True

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        if drain:
            self._drain()

        try:
            self.socket.close()
        except OSError:
            pass

        if self.state != ConnectionState.ABORTED:
            self.state = ConnectionState.CLOSED
        logger.debug(
            f"[{self.id}] Connection closed after {self.bytes_sent} bytes "
            f"in {self.age:.3f}s ({self.state.value})"
        )

    def _drain(self):
        # DRAIN_TIMEOUT bounds the whole drain, so a client trickling bytes
        # cannot keep the connection (and its thread) alive
        deadline = time.monotonic() + DRAIN_TIMEOUT
        drained = 0
        try:
            while drained < DRAIN_LIMIT:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                chunk = self.socket.recv(4096)
                if not chunk:
                    break
                drained += len(chunk)
        except OSError:
            pass

    # =========================================================================
    # CONTEXT MANAGER: For use with 'with' statement
    # =========================================================================

    def __enter__(self):
        """
        Allows using Connection with 'with' statement for automatic cleanup:

            with conn:
                handler.handle(conn)
            # Connection closed here, on success AND on exception
        """
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.state = ConnectionState.ABORTED
        self.close()
        return False  # Don't suppress exceptions
