"""
=============================================================================
CONNECTION HANDLER
=============================================================================

Runs the soclose protocol on one accepted connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     Per-Connection Protocol                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   AWAIT_REQUEST   read exactly 4 bytes                               │
    │        │          └── not b"GET " → write 405, raise                 │
    │        ▼                                                             │
    │   SEND_HEAD       sendall(template.head)                             │
    │        │                                                             │
    │        ▼                                                             │
    │   SEND_BODY       repeat block_count times:                          │
    │        │              sendall(8192 zero bytes)                       │
    │        │              sleep(inter_block_delay)                       │
    │        ▼                                                             │
    │   IDLE            sleep(idle_after_send), no I/O                     │
    │        │                                                             │
    │        ▼                                                             │
    │   return          caller's `with conn:` closes the socket            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Only the method token is inspected. The path, the version and the headers
of the request are never read: the interesting behavior of this server is
what it does AFTER the request, not how well it parses it.

Any failure (bad method, client hang-up, write error, deadline) raises out
of handle(). The handler never catches its own errors; containment is the
dispatcher's job, so one place decides how failures are logged.

=============================================================================
"""

import logging
import time

from ..errors import MethodNotAllowedError
from ..response import ResponseTemplate, METHOD_NOT_ALLOWED
from ..timing import TimingPolicy, BLOCK
from .connection import Connection, ConnectionState


logger = logging.getLogger(__name__)

REQUEST_PREFIX = b"GET "


class ConnectionHandler:
    """
    Stateless protocol runner.

    One instance is shared by every connection thread. It only holds
    references to the immutable template and policy, so concurrent calls to
    handle() need no locking.

    Usage:
        handler = ConnectionHandler(template, timing)
        with conn:
            handler.handle(conn)
    """

    def __init__(self, template: ResponseTemplate, timing: TimingPolicy):
        self.template = template
        self.timing = timing

    def handle(self, conn: Connection) -> None:
        """
        Serve one connection to completion.

        Raises:
            MethodNotAllowedError: The request did not start with "GET ".
            IncompleteRequestError: The client hung up before 4 bytes.
            OSError: Any socket failure, TimeoutError included.
        """
        try:
            self._await_request(conn)
            self._send_head(conn)
            self._send_body(conn)
            self._idle(conn)
        except Exception:
            conn.state = ConnectionState.ABORTED
            raise

    def _await_request(self, conn: Connection) -> None:
        conn.state = ConnectionState.AWAIT_REQUEST

        prefix = conn.read_exact(len(REQUEST_PREFIX))
        if prefix != REQUEST_PREFIX:
            conn.send_all(METHOD_NOT_ALLOWED)
            raise MethodNotAllowedError(prefix)

    def _send_head(self, conn: Connection) -> None:
        conn.state = ConnectionState.SEND_HEAD
        conn.send_all(self.template.head)

    def _send_body(self, conn: Connection) -> None:
        conn.state = ConnectionState.SEND_BODY

        delay = self.timing.inter_block_delay
        for _ in range(self.timing.block_count):
            conn.send_all(BLOCK)
            # Also after the last block: the final block gets its full
            # share of the throttle budget before the idle phase starts.
            if delay:
                time.sleep(delay)

    def _idle(self, conn: Connection) -> None:
        conn.state = ConnectionState.IDLE
        if self.timing.idle_after_send:
            logger.debug(f"[{conn.id}] Body sent, idling for {self.timing.idle_after_send}s")
            time.sleep(self.timing.idle_after_send)
